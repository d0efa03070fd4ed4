"""Data store tools built on :class:`ConnectionRegistry`."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar

from ..base import BaseTool, ToolContext, ToolFamily, ToolOutput
from ..errors import ValidationToolError
from .backend import CredentialMode, DataStoreTarget


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def _require(params: dict[str, Any], *keys: str) -> None:
    for key in keys:
        if not str(params.get(key, "")).strip():
            raise ValidationToolError(message=f"'{key}' must not be empty", parameter=key)


@dataclass
class SqlConnectTool(BaseTool):
    """Open a session against a SQL Server database."""

    name: ClassVar[str] = "sql_connect"
    family: ClassVar[ToolFamily] = ToolFamily.DATASTORE

    trust_server_certificate: bool = False

    def validate(self, params: dict[str, Any]) -> None:
        _require(params, "server", "database")
        if params.get("auth_method") == CredentialMode.EXPLICIT.value:
            _require(params, "username")
            if params.get("password") is None:
                raise ValidationToolError(
                    message="'password' is required for 'sql' authentication",
                    parameter="password",
                )

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        registry = context.require_connections()
        target = DataStoreTarget(
            server=params["server"].strip(),
            database=params["database"].strip(),
            trust_server_certificate=self.trust_server_certificate,
        )
        handle = await registry.connect(
            target,
            params["auth_method"],
            username=params.get("username"),
            password=params.get("password"),
        )
        return ToolOutput(
            text=(
                f"Connected to {target.describe()} "
                f"(auth: {handle.credential_mode.value}). connection_id: {handle.connection_id}"
            ),
            data=handle.describe(),
        )


@dataclass
class SqlQueryTool(BaseTool):
    """Run a read-only SELECT statement."""

    name: ClassVar[str] = "sql_query"
    family: ClassVar[ToolFamily] = ToolFamily.DATASTORE

    def validate(self, params: dict[str, Any]) -> None:
        _require(params, "query")

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        registry = context.require_connections()
        result = await registry.query(params.get("connection_id"), params["query"])
        payload = result.to_dict()
        text = _dumps(payload)
        if result.truncated:
            text += f"\n(result truncated to {result.row_count} rows)"
        return ToolOutput(text=text, data=payload)


@dataclass
class SqlListTablesTool(BaseTool):
    name: ClassVar[str] = "sql_list_tables"
    family: ClassVar[ToolFamily] = ToolFamily.DATASTORE

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        registry = context.require_connections()
        objects = await registry.list_objects(params.get("connection_id"))
        lines = [f"{item['schema']}.{item['name']} ({item['kind']})" for item in objects]
        return ToolOutput(
            text="\n".join(lines) if lines else "(no tables or views)",
            data={"objects": objects},
        )


@dataclass
class SqlDescribeTableTool(BaseTool):
    """Return column metadata for a table or view."""

    name: ClassVar[str] = "sql_describe_table"
    family: ClassVar[ToolFamily] = ToolFamily.DATASTORE

    def validate(self, params: dict[str, Any]) -> None:
        _require(params, "table")

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        registry = context.require_connections()
        schema = params.get("schema") or None
        columns = await registry.describe_object(params.get("connection_id"), schema, params["table"])
        return ToolOutput(text=_dumps(columns), data={"columns": columns})


@dataclass
class SqlDisconnectTool(BaseTool):
    name: ClassVar[str] = "sql_disconnect"
    family: ClassVar[ToolFamily] = ToolFamily.DATASTORE

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        registry = context.require_connections()
        handle = registry.resolve(params.get("connection_id"))
        await registry.disconnect(handle.connection_id)
        return ToolOutput(
            text=f"Connection {handle.connection_id} closed",
            data={"connection_id": handle.connection_id},
        )


__all__ = [
    "SqlConnectTool",
    "SqlDescribeTableTool",
    "SqlDisconnectTool",
    "SqlListTablesTool",
    "SqlQueryTool",
]
