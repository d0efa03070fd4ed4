"""Agent loop controller.

One :meth:`AgentRunner.run` call drives the loop

    turn -> extract -> (gate -> execute)* -> feedback -> turn | done

until the model stops requesting tools or the iteration budget runs out.
Every accepted call yields exactly one :class:`ToolResult`, appended to the
conversation as a hidden system turn before the next call is considered.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from ..tools.base import ToolResult
from ..tools.errors import PermissionDeniedError
from .extractor import ToolCallExtractor
from .gate import ConfirmationGate
from .tool_executor import ToolExecutor
from .types import (
    AgentOutcome,
    AgentSession,
    Conversation,
    Decision,
    ParseFailure,
    PendingConfirmation,
    SessionState,
    ToolCall,
)

__all__ = [
    "AgentRunner",
    "BATCH_CANCELLED_MESSAGE",
    "DEFAULT_MAX_ITERATIONS",
    "ModelTurnProvider",
    "RunnerConfig",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5
BATCH_CANCELLED_MESSAGE = "not executed: batch cancelled"


class ModelTurnProvider(Protocol):
    """Produces the next assistant message for a conversation."""

    async def complete(self, messages: Sequence[Mapping[str, Any]]) -> str: ...


@dataclass(slots=True, frozen=True)
class RunnerConfig:
    """Configuration for the agent runner.

    Attributes:
        max_iterations: Maximum number of cycles that execute tool calls.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS


class AgentRunner:
    """Drives the model/tool loop for one conversation.

    The conversation persists across :meth:`run` calls so follow-up
    messages keep their context; each call gets a fresh
    :class:`AgentSession` and iteration budget. The runner is not
    re-entrant.

    Example:
        >>> runner = AgentRunner(client, executor, gate, system_prompt=prompt)
        >>> outcome = await runner.run("List the files in /tmp")
        >>> print(outcome.reply)
    """

    def __init__(
        self,
        provider: ModelTurnProvider,
        executor: ToolExecutor,
        gate: ConfirmationGate,
        *,
        config: RunnerConfig | None = None,
        system_prompt: str | None = None,
        conversation: Conversation | None = None,
        extractor: ToolCallExtractor | None = None,
        listener: Any | None = None,
    ) -> None:
        self._provider = provider
        self._executor = executor
        self._gate = gate
        self._config = config or RunnerConfig()
        self._conversation = conversation or Conversation(system_prompt)
        self._extractor = extractor or ToolCallExtractor()
        self._listener = listener
        self._session: AgentSession | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def session(self) -> AgentSession | None:
        """Session of the current (or most recent) run."""
        return self._session

    @property
    def running(self) -> bool:
        return self._running

    @property
    def config(self) -> RunnerConfig:
        return self._config

    def set_listener(self, listener: Any | None) -> None:
        self._listener = listener
        self._gate.attach_listener(listener)

    def reset(self) -> None:
        """Start a new conversation with the same system prompt."""
        if self._running:
            raise RuntimeError("Cannot reset while a run is in progress")
        self._conversation = Conversation(self._conversation.system_prompt)
        self._session = None

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, user_message: str) -> AgentOutcome:
        """Process one user message to completion.

        Raises:
            RuntimeError: If another run is in progress on this runner.
            Exception: Whatever the model-turn provider raises, unchanged.
        """
        if self._running:
            raise RuntimeError("AgentRunner.run() is already in progress")
        self._running = True
        try:
            return await self._run(user_message)
        finally:
            self._running = False

    async def _run(self, user_message: str) -> AgentOutcome:
        session = AgentSession(self._config.max_iterations)
        self._session = session
        await self._emit("on_turn", self._conversation.add_user(user_message))
        notice: str | None = None

        while True:
            reply = await self._provider.complete(self._conversation.to_chat_params())
            reply = reply or ""
            await self._emit("on_turn", self._conversation.add_assistant(reply))

            extraction = self._extractor.extract(reply)
            if extraction.errors:
                session.parse_failures.extend(extraction.errors)
                await self._report_parse_failures(extraction.errors)

            if not extraction.calls:
                session.state = SessionState.DONE
                break

            session.pending.extend(extraction.calls)
            await self._drain(session)
            cycle = session.complete_cycle()
            LOGGER.debug("Completed cycle %d/%d", cycle, session.max_iterations)

            if session.exhausted:
                notice = (
                    f"Tool iteration limit reached ({session.max_iterations} cycles). "
                    "Stopping before requesting another response."
                )
                await self._emit("on_turn", self._conversation.add_system(notice))
                session.state = SessionState.ITERATION_LIMIT_EXCEEDED
                LOGGER.info("Session stopped at iteration limit %d", session.max_iterations)
                break

        last_reply = self._conversation.last("assistant")
        outcome = AgentOutcome(
            state=session.state,
            reply=last_reply.content if last_reply else "",
            iterations=session.iteration_count,
            results=tuple(session.results),
            parse_failures=tuple(session.parse_failures),
            notice=notice,
        )
        await self._emit("on_session_end", outcome)
        return outcome

    async def _drain(self, session: AgentSession) -> None:
        """Settle every pending call strictly in order."""
        while session.pending:
            call = session.pending.popleft()
            schema = self._executor.registry.lookup(call.tool_name)
            decision: Decision | None = None

            if schema is not None and schema.dangerous:
                session.state = SessionState.AWAITING_CONFIRMATION
                session.awaiting_confirmation = PendingConfirmation(
                    call_id=call.call_id,
                    tool_name=call.tool_name,
                    parameters=dict(call.parameters),
                    description=schema.description,
                )
                try:
                    decision = await self._gate.request(call, schema)
                finally:
                    session.awaiting_confirmation = None
                    session.state = SessionState.RUNNING

                if not decision.approved:
                    LOGGER.info("Operator denied %s (%s); cancelling batch", call.tool_name, call.call_id)
                    await self._record(
                        session,
                        call,
                        ToolResult.failure(
                            call.tool_name,
                            PermissionDeniedError(
                                tool_name=call.tool_name,
                                details={"reason": decision.reason} if decision.reason else {},
                            ),
                            call_id=call.call_id,
                        ),
                    )
                    await self._cancel_remaining(session)
                    return

            await self._emit("on_tool_start", call)
            result = await self._executor.execute(call, decision=decision)
            await self._record(session, call, result)

    async def _cancel_remaining(self, session: AgentSession) -> None:
        cancelled = list(session.pending)
        session.pending.clear()
        for call in cancelled:
            await self._record(
                session,
                call,
                ToolResult.failure(
                    call.tool_name,
                    PermissionDeniedError(message=BATCH_CANCELLED_MESSAGE, tool_name=call.tool_name),
                    call_id=call.call_id,
                ),
            )

    async def _record(self, session: AgentSession, call: ToolCall, result: ToolResult) -> None:
        session.results.append(result)
        turn = self._conversation.add_system(result.to_message())
        await self._emit("on_tool_result", call, result)
        await self._emit("on_turn", turn)

    async def _report_parse_failures(self, failures: Sequence[ParseFailure]) -> None:
        lines = ["**Tool call parse errors** (these blocks were ignored):"]
        for failure in failures:
            lines.append(f"- {failure.message}")
        lines.append('Use exactly: ```json {"tool": "<name>", "parameters": {...}} ```')
        turn = self._conversation.add_system("\n".join(lines))
        await self._emit("on_turn", turn)

    async def _emit(self, hook_name: str, *args: Any) -> None:
        hook = getattr(self._listener, hook_name, None)
        if not callable(hook):
            return
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:  # pragma: no cover - listener bugs must not break the loop
            LOGGER.debug("Listener hook %s failed", hook_name, exc_info=True)
