"""Read-only data store access: statement guard, sessions and tools."""

from .backend import (
    CredentialMode,
    DataStoreBackend,
    DataStoreTarget,
    QueryResult,
    SqlAlchemyBackend,
    json_safe,
)
from .connections import ConnectionHandle, ConnectionRegistry
from .guard import MUTATING_KEYWORDS, StatementVerdict, classify, ensure_read_only
from .tools import (
    SqlConnectTool,
    SqlDescribeTableTool,
    SqlDisconnectTool,
    SqlListTablesTool,
    SqlQueryTool,
)

__all__ = [
    "ConnectionHandle",
    "ConnectionRegistry",
    "CredentialMode",
    "DataStoreBackend",
    "DataStoreTarget",
    "MUTATING_KEYWORDS",
    "QueryResult",
    "SqlAlchemyBackend",
    "SqlConnectTool",
    "SqlDescribeTableTool",
    "SqlDisconnectTool",
    "SqlListTablesTool",
    "SqlQueryTool",
    "StatementVerdict",
    "classify",
    "ensure_read_only",
    "json_safe",
]
