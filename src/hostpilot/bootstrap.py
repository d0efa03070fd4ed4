"""Runtime wiring: settings -> client, registry, executor, gate and runner."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from .ai.client import AIClient, ClientSettings
from .ai.orchestration import AgentRunner, Approver, ConfirmationGate, RunnerConfig, ToolExecutor
from .ai.prompts import system_prompt
from .ai.tools import (
    AsyncProcessRunner,
    ProcessRunner,
    ToolContext,
    ToolRegistry,
    UrlOpener,
    build_default_registry,
    open_in_browser,
)
from .ai.tools.shell import default_shell
from .ai.tools.sql import ConnectionRegistry, DataStoreBackend, SqlAlchemyBackend
from .services.settings import Settings, SettingsStore
from .utils import logging as logging_utils

__all__ = ["AgentRuntime", "build_runtime", "configure_logging", "load_settings"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentRuntime:
    """Everything one agent conversation needs, wired together."""

    settings: Settings
    client: AIClient
    registry: ToolRegistry
    connections: ConnectionRegistry
    executor: ToolExecutor
    gate: ConfirmationGate
    runner: AgentRunner

    async def aclose(self) -> None:
        """Deny outstanding confirmations, close data store connections and the HTTP client."""
        self.gate.deny_all("runtime shutting down")
        try:
            await self.connections.close_all()
        finally:
            await self.client.aclose()


def configure_logging(
    debug: bool = False,
    *,
    force: bool = False,
    console: bool = True,
    secrets: tuple[str, ...] = (),
) -> None:
    """Configure logging for the process."""
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=console, secrets=secrets, force=force)
    LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Read settings through ``store``; a broken file yields the defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_runtime(
    settings: Settings,
    *,
    approver: Approver | None = None,
    listener: Any | None = None,
    client: AIClient | None = None,
    process_runner: ProcessRunner | None = None,
    url_opener: UrlOpener | None = None,
    backend: DataStoreBackend | None = None,
) -> AgentRuntime:
    """Construct an :class:`AgentRuntime` from ``settings``.

    Collaborators can be injected for tests or alternative front ends; the
    defaults spawn real processes, open the system browser and talk to SQL
    Server through SQLAlchemy.
    """

    client = client or AIClient(_client_settings(settings))
    registry = build_default_registry(sql_trust_server_certificate=settings.sql_trust_server_certificate)
    connections = ConnectionRegistry(
        backend
        or SqlAlchemyBackend(
            driver=settings.sql_driver,
            trust_server_certificate=settings.sql_trust_server_certificate,
        ),
        query_timeout=settings.sql_query_timeout,
        max_rows=settings.sql_max_rows,
    )
    shell = settings.shell or default_shell()
    working_directory = settings.working_directory or os.getcwd()
    context = ToolContext(
        process_runner=process_runner or AsyncProcessRunner(),
        url_opener=url_opener or open_in_browser,
        connections=connections,
        working_directory=working_directory,
        shell=shell,
    )
    executor = ToolExecutor(registry, context, timeout=settings.tool_timeout)
    gate = ConfirmationGate(
        approver=approver,
        listener=listener,
        decision_timeout=settings.confirmation_timeout,
    )
    max_iterations = _iteration_ceiling(settings)
    runner = AgentRunner(
        client,
        executor,
        gate,
        config=RunnerConfig(max_iterations=max_iterations),
        system_prompt=system_prompt(
            registry,
            shell=shell,
            working_directory=working_directory,
            max_iterations=max_iterations,
        ),
        listener=listener,
    )
    LOGGER.info(
        "Runtime ready: model=%s endpoint=%s tools=%d max_iterations=%d",
        settings.model,
        settings.base_url,
        len(registry),
        max_iterations,
    )
    return AgentRuntime(
        settings=settings,
        client=client,
        registry=registry,
        connections=connections,
        executor=executor,
        gate=gate,
        runner=runner,
    )


def _client_settings(settings: Settings) -> ClientSettings:
    # Every ClientSettings field has a namesake on Settings.
    return ClientSettings(**{item.name: getattr(settings, item.name) for item in fields(ClientSettings)})


def _iteration_ceiling(settings: Settings) -> int:
    """Tool rounds per message, kept within 1..50."""
    try:
        ceiling = int(settings.max_tool_iterations)
    except (TypeError, ValueError):
        LOGGER.warning("max_tool_iterations=%r is not a number, using 5", settings.max_tool_iterations)
        ceiling = 5
    return min(max(ceiling, 1), 50)
