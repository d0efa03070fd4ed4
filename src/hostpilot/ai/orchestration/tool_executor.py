"""Tool execution and result handling."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time

from ..tools.base import ToolContext, ToolFamily, ToolResult
from ..tools.errors import (
    ExecutionToolError,
    PermissionDeniedError,
    TimeoutToolError,
    UnknownToolError,
    ValidationToolError,
)
from ..tools.tool_registry import ToolRegistry
from .types import Decision, ToolCall

LOGGER = logging.getLogger(__name__)

__all__ = ["DEFAULT_TOOL_TIMEOUT", "ToolExecutor"]

DEFAULT_TOOL_TIMEOUT = 60.0


class ToolExecutor:
    """Dispatches one call to its registered handler and settles it as a :class:`ToolResult`.

    Checks run in a fixed order and each one short-circuits:

    1. the tool must be registered (``unknown_tool``),
    2. a dangerous tool needs an approved :class:`Decision` for this exact
       call id (``permission_denied``),
    3. parameters must validate against the schema (``validation_error``),
    4. the handler runs under the configured deadline (``timeout``).

    :meth:`execute` never raises.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        context: ToolContext,
        *,
        timeout: float | None = DEFAULT_TOOL_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._context = context
        self._timeout = timeout
        self._verify_families()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def timeout(self) -> float | None:
        return self._timeout

    def _verify_families(self) -> None:
        known = set(ToolFamily)
        for registration in self._registry:
            family = registration.schema.family
            impl_family = getattr(registration.impl, "family", None)
            if family not in known or impl_family is not family:
                raise ValueError(
                    f"Tool '{registration.name}' declares family {family!r} "
                    f"but its implementation is {impl_family!r}"
                )
        if self._context.connections is None and self._registry.list_tools(family=ToolFamily.DATASTORE):
            LOGGER.warning("Data store tools are registered but no connection registry is configured")

    async def execute(self, call: ToolCall, *, decision: Decision | None = None) -> ToolResult:
        """Execute ``call`` and return its result."""
        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000.0

        registration = self._registry.get_registration(call.tool_name)
        if registration is None:
            LOGGER.info("Unknown tool requested: %s", call.tool_name)
            return ToolResult.failure(
                call.tool_name,
                UnknownToolError(message=f"Tool '{call.tool_name}' is not registered", tool_name=call.tool_name),
                call_id=call.call_id,
                duration_ms=elapsed(),
            )

        schema = registration.schema
        if schema.dangerous and not self._approved(call, decision):
            LOGGER.info("Refusing dangerous tool %s without approval (%s)", call.tool_name, call.call_id)
            return ToolResult.failure(
                call.tool_name,
                PermissionDeniedError(
                    tool_name=call.tool_name,
                    details={"reason": decision.reason} if decision and decision.reason else {},
                ),
                call_id=call.call_id,
                duration_ms=elapsed(),
            )

        try:
            schema.validate_arguments(call.parameters)
        except ValidationToolError as exc:
            return ToolResult.failure(call.tool_name, exc, call_id=call.call_id, duration_ms=elapsed())

        context = dataclasses.replace(self._context, request_id=call.call_id)
        LOGGER.debug("Executing %s (%s)", call.tool_name, call.call_id)
        try:
            result = await asyncio.wait_for(
                registration.impl.run(context, call.parameters),
                self._timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Tool %s exceeded %ss deadline", call.tool_name, self._timeout)
            return ToolResult.failure(
                call.tool_name,
                TimeoutToolError(
                    message=f"Tool '{call.tool_name}' did not finish within {self._timeout} seconds",
                    timeout_seconds=self._timeout,
                ),
                call_id=call.call_id,
                duration_ms=elapsed(),
            )
        except Exception as exc:
            LOGGER.exception("Tool %s raised past its handler", call.tool_name)
            return ToolResult.failure(
                call.tool_name,
                ExecutionToolError(message=f"{type(exc).__name__}: {exc}"),
                call_id=call.call_id,
                duration_ms=elapsed(),
            )

        result.call_id = call.call_id
        result.duration_ms = elapsed()
        LOGGER.info(
            "Tool %s finished: success=%s kind=%s (%.1f ms)",
            call.tool_name,
            result.success,
            result.error_kind,
            result.duration_ms,
        )
        return result

    @staticmethod
    def _approved(call: ToolCall, decision: Decision | None) -> bool:
        return decision is not None and decision.approved and decision.call_id == call.call_id
