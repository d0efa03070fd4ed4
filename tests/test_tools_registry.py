"""Tests for the capability registry and parameter schemas."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

import pytest

from hostpilot.ai.tools.base import BaseTool, ToolContext, ToolFamily, ToolOutput
from hostpilot.ai.tools.catalog import (
    FILE_LIST_SCHEMA,
    MAP_OPEN_SCHEMA,
    SQL_CONNECT_SCHEMA,
    build_default_registry,
)
from hostpilot.ai.tools.errors import ValidationToolError
from hostpilot.ai.tools.tool_registry import (
    ParameterSchema,
    RegistrationError,
    ToolRegistry,
    ToolSchema,
)


@dataclass
class EchoTool(BaseTool):
    name: ClassVar[str] = "echo"
    family: ClassVar[ToolFamily] = ToolFamily.SYSTEM

    def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        return ToolOutput(text=str(params.get("text", "")))


ECHO_SCHEMA = ToolSchema(
    name="echo",
    description="Echo text back.",
    parameters=[
        ParameterSchema(name="text", type="string", description="Text.", required=True),
        ParameterSchema(name="times", type="integer", description="Repeat count."),
    ],
)


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


class TestRegistration:
    def test_register_and_lookup(self) -> None:
        registry = ToolRegistry()
        registry.register(EchoTool(), schema=ECHO_SCHEMA)

        assert registry.lookup("echo") is ECHO_SCHEMA
        assert isinstance(registry.get_tool("echo"), EchoTool)
        assert "echo" in registry
        assert len(registry) == 1
        assert registry.lookup("missing") is None

    def test_duplicate_name_is_rejected(self) -> None:
        registry = ToolRegistry()
        registry.register(EchoTool(), schema=ECHO_SCHEMA)

        with pytest.raises(RegistrationError, match="already registered"):
            registry.register(EchoTool(), schema=ECHO_SCHEMA)

    def test_frozen_registry_refuses_registration(self) -> None:
        registry = ToolRegistry()
        registry.freeze()

        with pytest.raises(RegistrationError, match="frozen"):
            registry.register(EchoTool(), schema=ECHO_SCHEMA)
        assert registry.frozen

    def test_implementation_name_must_match_schema(self) -> None:
        registry = ToolRegistry()
        schema = ToolSchema(name="other", description="x")

        with pytest.raises(RegistrationError, match="implementation is named 'echo'"):
            registry.register(EchoTool(), schema=schema)

    def test_family_must_match_implementation(self) -> None:
        registry = ToolRegistry()
        schema = ToolSchema(name="echo", description="x", family=ToolFamily.WEB)

        with pytest.raises(RegistrationError, match="family"):
            registry.register(EchoTool(), schema=schema)

    def test_list_tools_by_family(self) -> None:
        registry = build_default_registry()

        assert registry.list_tools(family=ToolFamily.WEB) == [
            "browser_open",
            "web_search",
            "map_open",
            "youtube_search",
        ]
        assert "sql_query" in registry.list_tools(family=ToolFamily.DATASTORE)


class TestDefaultRegistry:
    def test_contains_every_builtin_tool(self) -> None:
        registry = build_default_registry()

        assert set(registry.list_tools()) == {
            "shell_execute",
            "file_read",
            "file_write",
            "file_list",
            "process_list",
            "system_info",
            "browser_open",
            "web_search",
            "map_open",
            "youtube_search",
            "sql_connect",
            "sql_query",
            "sql_list_tables",
            "sql_describe_table",
            "sql_disconnect",
        }
        assert registry.frozen

    def test_only_shell_and_file_write_are_dangerous(self) -> None:
        registry = build_default_registry()

        dangerous = {name for name in registry.list_tools() if registry.is_dangerous(name)}

        assert dangerous == {"shell_execute", "file_write"}

    def test_unfrozen_registry_accepts_extra_tools(self) -> None:
        registry = build_default_registry(freeze=False)

        registry.register(EchoTool(), schema=ECHO_SCHEMA)

        assert registry.has_tool("echo")


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


class TestValidation:
    def test_valid_arguments_pass(self) -> None:
        ECHO_SCHEMA.validate_arguments({"text": "hi", "times": 2})

    def test_missing_required_parameter(self) -> None:
        with pytest.raises(ValidationToolError) as excinfo:
            ECHO_SCHEMA.validate_arguments({})

        assert excinfo.value.parameter == "text"
        assert "Missing required parameter" in excinfo.value.message

    def test_unknown_parameter(self) -> None:
        with pytest.raises(ValidationToolError) as excinfo:
            ECHO_SCHEMA.validate_arguments({"text": "hi", "colour": "red"})

        assert excinfo.value.parameter == "colour"

    def test_wrong_type_reports_expected(self) -> None:
        with pytest.raises(ValidationToolError) as excinfo:
            ECHO_SCHEMA.validate_arguments({"text": 5})

        assert excinfo.value.parameter == "text"
        assert excinfo.value.expected == "string"

    def test_enum_is_enforced(self) -> None:
        with pytest.raises(ValidationToolError) as excinfo:
            MAP_OPEN_SCHEMA.validate_arguments({"location": "Oslo", "mode": "teleport"})

        assert excinfo.value.parameter == "mode"

    def test_boolean_parameter_type(self) -> None:
        FILE_LIST_SCHEMA.validate_arguments({"path": "/tmp", "recursive": True})
        with pytest.raises(ValidationToolError):
            FILE_LIST_SCHEMA.validate_arguments({"path": "/tmp", "recursive": "yes"})

    def test_json_schema_shape(self) -> None:
        schema = SQL_CONNECT_SCHEMA.to_json_schema()

        assert schema["type"] == "object"
        assert schema["additionalProperties"] is False
        assert schema["required"] == ["server", "database", "auth_method"]
        assert schema["properties"]["auth_method"]["enum"] == ["windows", "sql"]


def test_markdown_flags_dangerous_tools() -> None:
    registry = build_default_registry()

    shell = registry.lookup("shell_execute")
    listing = registry.lookup("file_list")
    assert shell is not None and listing is not None

    assert "requires operator confirmation" in shell.to_markdown()
    assert "requires operator confirmation" not in listing.to_markdown()
    assert "`path` (string, required)" in listing.to_markdown()
