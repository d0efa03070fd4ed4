"""Built-in tool schemas and default registry construction."""

from __future__ import annotations

import logging

from .base import ToolFamily
from .files import FileListTool, FileReadTool, FileWriteTool
from .shell import ShellExecuteTool
from .sql.tools import (
    SqlConnectTool,
    SqlDescribeTableTool,
    SqlDisconnectTool,
    SqlListTablesTool,
    SqlQueryTool,
)
from .system import ProcessListTool, SystemInfoTool
from .tool_registry import ParameterSchema, ToolRegistry, ToolSchema
from .web import BrowserOpenTool, MapOpenTool, WebSearchTool, YoutubeSearchTool

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Common Parameters
# -----------------------------------------------------------------------------

PATH_PARAM = ParameterSchema(
    name="path",
    type="string",
    description="Absolute path, or a path relative to the working directory.",
    required=True,
    min_length=1,
)

QUERY_PARAM = ParameterSchema(
    name="query",
    type="string",
    description="Search terms.",
    required=True,
    min_length=1,
)

CONNECTION_ID_PARAM = ParameterSchema(
    name="connection_id",
    type="string",
    description="Id returned by sql_connect. Defaults to the most recent connection.",
    required=False,
)


# -----------------------------------------------------------------------------
# Tool Schema Definitions
# -----------------------------------------------------------------------------

# Shell & files

SHELL_EXECUTE_SCHEMA = ToolSchema(
    name="shell_execute",
    description="Run a shell command on the host and return its output.",
    parameters=[
        ParameterSchema(
            name="command",
            type="string",
            description="The command line to execute.",
            required=True,
            min_length=1,
        ),
    ],
    family=ToolFamily.SHELL,
    dangerous=True,
)

FILE_READ_SCHEMA = ToolSchema(
    name="file_read",
    description="Read the content of a text file.",
    parameters=[PATH_PARAM],
    family=ToolFamily.FILES,
)

FILE_WRITE_SCHEMA = ToolSchema(
    name="file_write",
    description="Write content to a file, creating or overwriting it.",
    parameters=[
        PATH_PARAM,
        ParameterSchema(
            name="content",
            type="string",
            description="Full content to write.",
            required=True,
        ),
    ],
    family=ToolFamily.FILES,
    dangerous=True,
)

FILE_LIST_SCHEMA = ToolSchema(
    name="file_list",
    description="List the entries of a directory.",
    parameters=[
        PATH_PARAM,
        ParameterSchema(
            name="recursive",
            type="boolean",
            description="Walk subdirectories (up to 5 levels deep).",
            required=False,
            default=False,
        ),
    ],
    family=ToolFamily.FILES,
)

# System

PROCESS_LIST_SCHEMA = ToolSchema(
    name="process_list",
    description="List running processes (top 50 by CPU and memory).",
    parameters=[],
    family=ToolFamily.SYSTEM,
)

SYSTEM_INFO_SCHEMA = ToolSchema(
    name="system_info",
    description="Show operating system, CPU, memory and disk information.",
    parameters=[],
    family=ToolFamily.SYSTEM,
)

# Web

BROWSER_OPEN_SCHEMA = ToolSchema(
    name="browser_open",
    description="Open an http or https URL in the default browser.",
    parameters=[
        ParameterSchema(
            name="url",
            type="string",
            description="Full URL to open.",
            required=True,
            min_length=1,
        ),
    ],
    family=ToolFamily.WEB,
)

WEB_SEARCH_SCHEMA = ToolSchema(
    name="web_search",
    description="Open a Google search for the query in the browser.",
    parameters=[QUERY_PARAM],
    family=ToolFamily.WEB,
)

MAP_OPEN_SCHEMA = ToolSchema(
    name="map_open",
    description="Open Google Maps on a place, or directions to it.",
    parameters=[
        ParameterSchema(
            name="location",
            type="string",
            description="Place name, address or coordinates.",
            required=True,
            min_length=1,
        ),
        ParameterSchema(
            name="mode",
            type="string",
            description="'search' (default) or 'directions'.",
            required=False,
            default="search",
            enum=["search", "directions"],
        ),
    ],
    family=ToolFamily.WEB,
)

YOUTUBE_SEARCH_SCHEMA = ToolSchema(
    name="youtube_search",
    description="Open a YouTube search for the query in the browser.",
    parameters=[QUERY_PARAM],
    family=ToolFamily.WEB,
)

# Data store

SQL_CONNECT_SCHEMA = ToolSchema(
    name="sql_connect",
    description="Connect to a SQL Server database. Returns a connection_id.",
    parameters=[
        ParameterSchema(
            name="server",
            type="string",
            description="Server name or address (optionally host\\instance or host,port).",
            required=True,
            min_length=1,
        ),
        ParameterSchema(
            name="database",
            type="string",
            description="Database name.",
            required=True,
            min_length=1,
        ),
        ParameterSchema(
            name="auth_method",
            type="string",
            description="'windows' for integrated authentication or 'sql' for username/password.",
            required=True,
            enum=["windows", "sql"],
        ),
        ParameterSchema(
            name="username",
            type="string",
            description="SQL login (auth_method 'sql' only).",
            required=False,
        ),
        ParameterSchema(
            name="password",
            type="string",
            description="SQL password (auth_method 'sql' only).",
            required=False,
        ),
    ],
    family=ToolFamily.DATASTORE,
)

SQL_QUERY_SCHEMA = ToolSchema(
    name="sql_query",
    description="Run a read-only SELECT query. Any write operation is rejected.",
    parameters=[
        CONNECTION_ID_PARAM,
        ParameterSchema(
            name="query",
            type="string",
            description="A single SELECT (or WITH ... SELECT) statement.",
            required=True,
            min_length=1,
        ),
    ],
    family=ToolFamily.DATASTORE,
)

SQL_LIST_TABLES_SCHEMA = ToolSchema(
    name="sql_list_tables",
    description="List the tables and views of the connected database.",
    parameters=[CONNECTION_ID_PARAM],
    family=ToolFamily.DATASTORE,
)

SQL_DESCRIBE_TABLE_SCHEMA = ToolSchema(
    name="sql_describe_table",
    description="Show the columns of a table or view.",
    parameters=[
        CONNECTION_ID_PARAM,
        ParameterSchema(
            name="schema",
            type="string",
            description="Schema name (for example dbo).",
            required=True,
        ),
        ParameterSchema(
            name="table",
            type="string",
            description="Table or view name.",
            required=True,
            min_length=1,
        ),
    ],
    family=ToolFamily.DATASTORE,
)

SQL_DISCONNECT_SCHEMA = ToolSchema(
    name="sql_disconnect",
    description="Close a SQL connection.",
    parameters=[CONNECTION_ID_PARAM],
    family=ToolFamily.DATASTORE,
)


# -----------------------------------------------------------------------------
# Registry construction
# -----------------------------------------------------------------------------


def build_default_registry(
    *,
    sql_trust_server_certificate: bool = False,
    freeze: bool = True,
) -> ToolRegistry:
    """Register every built-in tool and (by default) freeze the registry."""
    registry = ToolRegistry()
    registry.register(ShellExecuteTool(), schema=SHELL_EXECUTE_SCHEMA)
    registry.register(FileReadTool(), schema=FILE_READ_SCHEMA)
    registry.register(FileWriteTool(), schema=FILE_WRITE_SCHEMA)
    registry.register(FileListTool(), schema=FILE_LIST_SCHEMA)
    registry.register(ProcessListTool(), schema=PROCESS_LIST_SCHEMA)
    registry.register(SystemInfoTool(), schema=SYSTEM_INFO_SCHEMA)
    registry.register(BrowserOpenTool(), schema=BROWSER_OPEN_SCHEMA)
    registry.register(WebSearchTool(), schema=WEB_SEARCH_SCHEMA)
    registry.register(MapOpenTool(), schema=MAP_OPEN_SCHEMA)
    registry.register(YoutubeSearchTool(), schema=YOUTUBE_SEARCH_SCHEMA)
    registry.register(
        SqlConnectTool(trust_server_certificate=sql_trust_server_certificate),
        schema=SQL_CONNECT_SCHEMA,
    )
    registry.register(SqlQueryTool(), schema=SQL_QUERY_SCHEMA)
    registry.register(SqlListTablesTool(), schema=SQL_LIST_TABLES_SCHEMA)
    registry.register(SqlDescribeTableTool(), schema=SQL_DESCRIBE_TABLE_SCHEMA)
    registry.register(SqlDisconnectTool(), schema=SQL_DISCONNECT_SCHEMA)
    if freeze:
        registry.freeze()
    LOGGER.debug("Default registry ready with %d tools", len(registry))
    return registry


__all__ = [
    "BROWSER_OPEN_SCHEMA",
    "FILE_LIST_SCHEMA",
    "FILE_READ_SCHEMA",
    "FILE_WRITE_SCHEMA",
    "MAP_OPEN_SCHEMA",
    "PROCESS_LIST_SCHEMA",
    "SHELL_EXECUTE_SCHEMA",
    "SQL_CONNECT_SCHEMA",
    "SQL_DESCRIBE_TABLE_SCHEMA",
    "SQL_DISCONNECT_SCHEMA",
    "SQL_LIST_TABLES_SCHEMA",
    "SQL_QUERY_SCHEMA",
    "SYSTEM_INFO_SCHEMA",
    "WEB_SEARCH_SCHEMA",
    "YOUTUBE_SEARCH_SCHEMA",
    "build_default_registry",
]
