"""Core type definitions for the agent loop.

Calls, conversation turns and session state flow between the extractor, the
confirmation gate, the executor and the runner. Records that cross stage
boundaries are frozen so they can be shared safely.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Mapping, Protocol

if TYPE_CHECKING:
    from ..tools.base import ToolResult

__all__ = [
    "AgentListener",
    "AgentOutcome",
    "AgentSession",
    "Conversation",
    "ConversationTurn",
    "Decision",
    "Extraction",
    "ParseFailure",
    "PendingConfirmation",
    "SessionState",
    "ToolCall",
]


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Extraction
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """One tool invocation requested by the model.

    Attributes:
        call_id: Unique id minted by the extractor.
        tool_name: Name of the requested tool (may be unknown to the registry).
        parameters: Parameter mapping exactly as the model sent it.
        raw_text: Source JSON text of the block.
        span: ``(start, end)`` offsets of the block in the model response.
    """

    call_id: str
    tool_name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    raw_text: str = ""
    span: tuple[int, int] = (0, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool": self.tool_name,
            "parameters": dict(self.parameters),
        }


@dataclass(slots=True, frozen=True)
class ParseFailure:
    """A tool-call block that could not be turned into a :class:`ToolCall`."""

    message: str
    raw_text: str
    span: tuple[int, int] = (0, 0)
    kind: str = "parse_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, "raw": self.raw_text}


@dataclass(slots=True, frozen=True)
class Extraction:
    """Extractor output: calls in block order plus blocks that failed to parse."""

    calls: tuple[ToolCall, ...] = ()
    errors: tuple[ParseFailure, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.calls or self.errors)


# -----------------------------------------------------------------------------
# Conversation
# -----------------------------------------------------------------------------

TurnRole = Literal["system", "user", "assistant"]


@dataclass(slots=True, frozen=True)
class ConversationTurn:
    """One message in the conversation.

    ``hidden`` turns are sent to the model but are not meant for display
    (tool results, loop notices).
    """

    role: TurnRole
    content: str
    hidden: bool = False
    timestamp: datetime = field(default_factory=_utcnow)

    def to_chat_param(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


class Conversation:
    """Append-only sequence of :class:`ConversationTurn` objects."""

    def __init__(self, system_prompt: str | None = None) -> None:
        self._system_prompt = system_prompt
        self._turns: list[ConversationTurn] = []

    @property
    def system_prompt(self) -> str | None:
        return self._system_prompt

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def visible_turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(turn for turn in self._turns if not turn.hidden)

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        self._turns.append(turn)
        return turn

    def add_user(self, content: str) -> ConversationTurn:
        return self.append(ConversationTurn(role="user", content=content))

    def add_assistant(self, content: str) -> ConversationTurn:
        return self.append(ConversationTurn(role="assistant", content=content))

    def add_system(self, content: str, *, hidden: bool = True) -> ConversationTurn:
        return self.append(ConversationTurn(role="system", content=content, hidden=hidden))

    def last(self, role: TurnRole | None = None) -> ConversationTurn | None:
        for turn in reversed(self._turns):
            if role is None or turn.role == role:
                return turn
        return None

    def to_chat_params(self) -> list[dict[str, Any]]:
        """Render the conversation as chat-completion messages."""
        messages: list[dict[str, Any]] = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.extend(turn.to_chat_param() for turn in self._turns)
        return messages

    def __len__(self) -> int:
        return len(self._turns)


# -----------------------------------------------------------------------------
# Confirmation
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PendingConfirmation:
    """A dangerous call waiting for an operator decision."""

    call_id: str
    tool_name: str
    parameters: Mapping[str, Any]
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool": self.tool_name,
            "parameters": dict(self.parameters),
            "description": self.description,
        }


@dataclass(slots=True, frozen=True)
class Decision:
    """Operator verdict for exactly one call."""

    call_id: str
    approved: bool
    reason: str = ""


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------


class SessionState(Enum):
    RUNNING = "running"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    DONE = "done"
    ITERATION_LIMIT_EXCEEDED = "iteration_limit_exceeded"


class AgentSession:
    """Mutable bookkeeping for one :meth:`AgentRunner.run` invocation.

    ``max_iterations`` is fixed at construction; ``iteration_count`` only
    grows, so ``remaining_iterations`` only shrinks.
    """

    def __init__(self, max_iterations: int) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._max_iterations = max_iterations
        self._iteration_count = 0
        self.state = SessionState.RUNNING
        self.pending: deque[ToolCall] = deque()
        self.awaiting_confirmation: PendingConfirmation | None = None
        self.results: list[ToolResult] = []
        self.parse_failures: list[ParseFailure] = []

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @property
    def iteration_count(self) -> int:
        return self._iteration_count

    @property
    def remaining_iterations(self) -> int:
        return self._max_iterations - self._iteration_count

    @property
    def exhausted(self) -> bool:
        return self._iteration_count >= self._max_iterations

    def complete_cycle(self) -> int:
        """Record one executed cycle and return the new count."""
        if self.exhausted:
            raise RuntimeError("iteration budget already exhausted")
        self._iteration_count += 1
        return self._iteration_count


@dataclass(slots=True, frozen=True)
class AgentOutcome:
    """Terminal result of one agent run.

    Attributes:
        state: ``DONE`` or ``ITERATION_LIMIT_EXCEEDED``.
        reply: Content of the last assistant turn.
        iterations: Number of executed cycles.
        results: Every tool result produced, in execution order.
        parse_failures: Every block the extractor rejected.
        notice: Terminal notice when the iteration budget ran out.
    """

    state: SessionState
    reply: str
    iterations: int
    results: tuple[ToolResult, ...] = ()
    parse_failures: tuple[ParseFailure, ...] = ()
    notice: str | None = None

    @property
    def limit_exceeded(self) -> bool:
        return self.state is SessionState.ITERATION_LIMIT_EXCEEDED


# -----------------------------------------------------------------------------
# Listener
# -----------------------------------------------------------------------------


class AgentListener(Protocol):
    """Observer of agent progress. Every hook is optional.

    Hooks may be plain functions or coroutines. Exceptions raised by a hook
    are logged and otherwise ignored.
    """

    def on_turn(self, turn: ConversationTurn) -> Any: ...

    def on_tool_start(self, call: ToolCall) -> Any: ...

    def on_tool_result(self, call: ToolCall, result: ToolResult) -> Any: ...

    def on_confirmation_required(self, pending: PendingConfirmation) -> Any: ...

    def on_session_end(self, outcome: AgentOutcome) -> Any: ...
