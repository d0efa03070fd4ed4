"""Confirmation gate for dangerous tool calls.

The gate suspends the runner on an :class:`asyncio.Future` keyed by the call
id until the operator decides. Decisions arrive either from an ``approver``
callback supplied at construction or from an external caller (a UI) invoking
:meth:`ConfirmationGate.decide` after being notified through the listener's
``on_confirmation_required`` hook.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from ..tools.tool_registry import ToolSchema
from .types import Decision, PendingConfirmation, ToolCall

LOGGER = logging.getLogger(__name__)

__all__ = ["Approver", "ConfirmationGate", "GateState"]

Approver = Callable[[PendingConfirmation], "bool | None | Awaitable[bool | None]"]


class GateState(Enum):
    IDLE = "idle"
    AWAITING_DECISION = "awaiting_decision"
    RESOLVED = "resolved"


class ConfirmationGate:
    """Per-call approval state machine: IDLE -> AWAITING_DECISION -> RESOLVED.

    Without an approver or a listener able to surface the request, every
    request is denied at once. ``decision_timeout`` turns operator silence
    into a denial.
    """

    def __init__(
        self,
        *,
        approver: Approver | None = None,
        listener: Any | None = None,
        decision_timeout: float | None = None,
    ) -> None:
        self._approver = approver
        self._listener = listener
        self._decision_timeout = decision_timeout
        self._futures: dict[str, asyncio.Future[Decision]] = {}
        self._pending: PendingConfirmation | None = None
        self._state = GateState.IDLE
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def pending(self) -> PendingConfirmation | None:
        return self._pending

    @property
    def has_operator(self) -> bool:
        return self._approver is not None or callable(
            getattr(self._listener, "on_confirmation_required", None)
        )

    def attach_listener(self, listener: Any | None) -> None:
        self._listener = listener

    # ------------------------------------------------------------------
    # Request / decide
    # ------------------------------------------------------------------

    async def request(self, call: ToolCall, schema: ToolSchema | None = None) -> Decision:
        """Ask the operator about ``call`` and wait for the verdict."""
        if not self.has_operator:
            LOGGER.info("No operator attached; denying %s (%s)", call.tool_name, call.call_id)
            self._state = GateState.RESOLVED
            return Decision(call.call_id, False, "no operator available to approve")

        self._loop = asyncio.get_running_loop()
        future: asyncio.Future[Decision] = self._loop.create_future()
        self._futures[call.call_id] = future
        pending = PendingConfirmation(
            call_id=call.call_id,
            tool_name=call.tool_name,
            parameters=dict(call.parameters),
            description=schema.description if schema is not None else "",
        )
        self._pending = pending
        self._state = GateState.AWAITING_DECISION
        LOGGER.info("Awaiting confirmation for %s (%s)", call.tool_name, call.call_id)

        try:
            await self._notify_listener(pending)
            await self._ask_approver(pending)
            try:
                return await asyncio.wait_for(future, self._decision_timeout)
            except asyncio.TimeoutError:
                LOGGER.info("No decision for %s within %ss", call.call_id, self._decision_timeout)
                return Decision(call.call_id, False, "no decision before timeout")
        finally:
            self._futures.pop(call.call_id, None)
            self._pending = None
            self._state = GateState.RESOLVED

    def decide(self, call_id: str, approved: bool, reason: str = "") -> bool:
        """Resolve the pending request for ``call_id``.

        Returns False (and changes nothing) when that call is not pending.
        """
        future = self._futures.get(call_id)
        if future is None or future.done():
            LOGGER.debug("Ignoring decision for non-pending call %s", call_id)
            return False
        future.set_result(Decision(call_id, bool(approved), reason))
        return True

    def decide_threadsafe(self, call_id: str, approved: bool, reason: str = "") -> None:
        """Variant of :meth:`decide` for callers living on another thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.decide, call_id, approved, reason)

    def deny_all(self, reason: str = "session closed") -> int:
        """Deny every outstanding request. Returns how many were pending."""
        denied = 0
        for call_id in list(self._futures):
            if self.decide(call_id, False, reason):
                denied += 1
        return denied

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _notify_listener(self, pending: PendingConfirmation) -> None:
        hook = getattr(self._listener, "on_confirmation_required", None)
        if not callable(hook):
            return
        try:
            result = hook(pending)
            if inspect.isawaitable(result):
                await result
        except Exception:  # pragma: no cover - listener bugs must not break the loop
            LOGGER.debug("on_confirmation_required hook failed", exc_info=True)

    async def _ask_approver(self, pending: PendingConfirmation) -> None:
        if self._approver is None:
            return
        try:
            verdict = self._approver(pending)
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except Exception:
            LOGGER.warning("Approver failed for %s; denying", pending.call_id, exc_info=True)
            self.decide(pending.call_id, False, "approver error")
            return
        if verdict is not None:
            self.decide(pending.call_id, bool(verdict), "approver")
