"""Tests covering the console front end."""

from __future__ import annotations

import asyncio
import io
import json
import os
from pathlib import Path
from typing import Any

import pytest

from hostpilot import app
from hostpilot.ai.orchestration.types import AgentOutcome, PendingConfirmation, SessionState, ToolCall
from hostpilot.ai.tools.base import ToolResult
from hostpilot.ai.tools.errors import TimeoutToolError
from hostpilot.services.settings import SecretVault, Settings, SettingsStore


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("HOSTPILOT_"):
            monkeypatch.delenv(name, raising=False)


def test_cli_overrides_are_coerced_to_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "model=qwen2.5",
            "max_tool_iterations=9",
            "temperature=0.7",
            "debug_logging=yes",
            "tool_timeout=none",
            "default_headers={\"X-Env\": \"dev\"}",
        ]
    )

    assert overrides == {
        "model": "qwen2.5",
        "max_tool_iterations": 9,
        "temperature": 0.7,
        "debug_logging": True,
        "tool_timeout": None,
        "default_headers": {"X-Env": "dev"},
    }


@pytest.mark.parametrize(
    "entry",
    ["model", "=value", "theme=dark", "max_tool_iterations=many", "debug_logging=maybe", "metadata=[1]"],
)
def test_invalid_cli_overrides_raise(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_dump_settings_redacts_api_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOSTPILOT_MODEL", "env-model")
    store = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))
    buffer = io.StringIO()

    app._dump_settings(Settings(api_key="sk-abcdef12"), store, overrides={"model": "x"}, stream=buffer)

    payload = json.loads(buffer.getvalue())
    assert payload["settings"]["api_key"] == "sk*******12"
    assert payload["meta"]["path"] == str(tmp_path / "settings.json")
    assert payload["meta"]["secret_backend"] == "fernet"
    assert payload["meta"]["cli_overrides"] == ["model"]
    assert payload["meta"]["environment_variables"] == ["HOSTPILOT_MODEL"]


def test_main_dump_settings(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    path = tmp_path / "settings.json"

    app.main(["--settings-path", str(path), "--set", "model=mistral", "--dump-settings"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["settings"]["model"] == "mistral"
    assert payload["meta"]["path"] == str(path)


def test_main_rejects_bad_override(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["--settings-path", str(tmp_path / "s.json"), "--set", "nonsense", "--dump-settings"])

    assert excinfo.value.code == 2
    assert "Invalid --set override" in capsys.readouterr().err


def test_console_listener_prints_tool_activity() -> None:
    buffer = io.StringIO()
    listener = app.ConsoleListener(buffer)
    call = ToolCall(call_id="c1", tool_name="file_read", parameters={"path": "notes.txt"})

    listener.on_tool_start(call)
    listener.on_tool_result(call, ToolResult(tool_name="file_read", success=True, output="hi"))
    listener.on_tool_result(call, ToolResult.failure("file_read", TimeoutToolError(timeout_seconds=1.0)))
    listener.on_session_end(
        AgentOutcome(state=SessionState.ITERATION_LIMIT_EXCEEDED, reply="", iterations=5, notice="limit hit")
    )

    assert buffer.getvalue().splitlines() == [
        '-> file_read {"path": "notes.txt"}',
        "<- file_read: ok",
        "<- file_read: failed (timeout)",
        "!! limit hit",
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(("answer", "expected"), [("y", True), (" YES ", True), ("", False), ("no", False)])
async def test_console_approver_reads_stdin(monkeypatch: pytest.MonkeyPatch, answer: str, expected: bool) -> None:
    prompts: list[str] = []

    def fake_input(prompt: str) -> str:
        prompts.append(prompt)
        return answer

    monkeypatch.setattr("builtins.input", fake_input)
    pending = PendingConfirmation(call_id="c1", tool_name="shell_execute", parameters={"command": "ls"})

    assert await app.console_approver(pending) is expected
    assert "shell_execute" in prompts[0]


@pytest.mark.asyncio
async def test_answer_reports_provider_failures(capsys: pytest.CaptureFixture[str]) -> None:
    class FailingRunner:
        async def run(self, message: str) -> Any:
            raise ConnectionError("endpoint unreachable")

    class EchoRunner:
        async def run(self, message: str) -> Any:
            await asyncio.sleep(0)
            return AgentOutcome(state=SessionState.DONE, reply=f"echo: {message}", iterations=0)

    await app._answer(FailingRunner(), "hello")
    await app._answer(EchoRunner(), "hello")

    captured = capsys.readouterr()
    assert "error: endpoint unreachable" in captured.err
    assert "hostpilot> echo: hello" in captured.out
