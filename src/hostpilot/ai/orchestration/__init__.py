"""Agent loop orchestration: extraction, confirmation, execution and the runner."""

from .extractor import ToolCallExtractor, extract_tool_calls
from .gate import Approver, ConfirmationGate, GateState
from .runner import AgentRunner, ModelTurnProvider, RunnerConfig
from .tool_executor import ToolExecutor
from .types import (
    AgentListener,
    AgentOutcome,
    AgentSession,
    Conversation,
    ConversationTurn,
    Decision,
    Extraction,
    ParseFailure,
    PendingConfirmation,
    SessionState,
    ToolCall,
)

__all__ = [
    "AgentListener",
    "AgentOutcome",
    "AgentRunner",
    "AgentSession",
    "Approver",
    "ConfirmationGate",
    "Conversation",
    "ConversationTurn",
    "Decision",
    "Extraction",
    "GateState",
    "ModelTurnProvider",
    "ParseFailure",
    "PendingConfirmation",
    "RunnerConfig",
    "SessionState",
    "ToolCall",
    "ToolCallExtractor",
    "ToolExecutor",
    "extract_tool_calls",
]
