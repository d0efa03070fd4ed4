"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from hostpilot.ai.tools.base import ToolContext
from hostpilot.ai.tools.sql.connections import ConnectionRegistry
from tests.helpers import FakeBackend, FakeProcessRunner, RecordingOpener, sequential_ids


@pytest.fixture
def process_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def url_opener() -> RecordingOpener:
    return RecordingOpener()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def connections(fake_backend: FakeBackend) -> ConnectionRegistry:
    return ConnectionRegistry(fake_backend, id_factory=sequential_ids())


@pytest.fixture
def tool_context(
    process_runner: FakeProcessRunner,
    url_opener: RecordingOpener,
    connections: ConnectionRegistry,
    tmp_path: Path,
) -> ToolContext:
    return ToolContext(
        process_runner=process_runner,
        url_opener=url_opener,
        connections=connections,
        working_directory=str(tmp_path),
        shell="bash",
    )
