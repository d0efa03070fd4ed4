"""Tests for the agent loop controller."""

from __future__ import annotations

import asyncio
import json
import random
from collections import deque
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import pytest

from hostpilot.ai.orchestration.gate import ConfirmationGate
from hostpilot.ai.orchestration.runner import BATCH_CANCELLED_MESSAGE, AgentRunner, RunnerConfig
from hostpilot.ai.orchestration.tool_executor import ToolExecutor
from hostpilot.ai.orchestration.types import PendingConfirmation, SessionState
from hostpilot.ai.tools.base import ProcessOutput, ToolContext
from hostpilot.ai.tools.catalog import build_default_registry
from hostpilot.ai.tools.errors import ErrorCode
from tests.helpers import FakeProcessRunner

FENCE = "`" * 3


def tool_block(tool: str, **parameters: Any) -> str:
    return f"{FENCE}json\n{json.dumps({'tool': tool, 'parameters': parameters})}\n{FENCE}"


class ScriptedProvider:
    """Model-turn provider replaying canned replies."""

    def __init__(self, replies: Iterable[str | BaseException], *, fallback: str | None = "All done.") -> None:
        self._replies = deque(replies)
        self._fallback = fallback
        self.requests: list[list[Mapping[str, Any]]] = []

    async def complete(self, messages: Sequence[Mapping[str, Any]]) -> str:
        self.requests.append([dict(message) for message in messages])
        if not self._replies:
            if self._fallback is None:
                raise AssertionError("provider called more often than scripted")
            return self._fallback
        reply = self._replies.popleft()
        if isinstance(reply, BaseException):
            raise reply
        return reply


class RecordingListener:
    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def on_turn(self, turn: Any) -> None:
        self.events.append(("turn", turn.role))

    def on_tool_start(self, call: Any) -> None:
        self.events.append(("start", call.tool_name))

    def on_tool_result(self, call: Any, result: Any) -> None:
        self.events.append(("result", result.tool_name))

    def on_session_end(self, outcome: Any) -> None:
        self.events.append(("end", outcome.state))

    def names(self, kind: str) -> list[Any]:
        return [value for event, value in self.events if event == kind]


def make_runner(
    context: ToolContext,
    replies: Iterable[str | BaseException],
    *,
    approver: Any = None,
    max_iterations: int = 5,
    listener: Any = None,
    fallback: str | None = "All done.",
) -> tuple[AgentRunner, ScriptedProvider]:
    provider = ScriptedProvider(replies, fallback=fallback)
    executor = ToolExecutor(build_default_registry(), context)
    gate = ConfirmationGate(approver=approver)
    runner = AgentRunner(
        provider,
        executor,
        gate,
        config=RunnerConfig(max_iterations=max_iterations),
        system_prompt="You are a test agent.",
        listener=listener,
    )
    return runner, provider


# -----------------------------------------------------------------------------
# Scenarios
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_single_safe_call_finishes_in_one_cycle(tool_context: ToolContext, tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("hi", encoding="utf-8")
    (tmp_path / "src").mkdir()
    listener = RecordingListener()
    runner, provider = make_runner(
        tool_context,
        [f"Looking.\n{tool_block('file_list', path=str(tmp_path))}", "There is notes.txt and src."],
        listener=listener,
    )

    outcome = await runner.run("What is in my folder?")

    assert outcome.state is SessionState.DONE
    assert outcome.iterations == 1
    assert outcome.reply == "There is notes.txt and src."
    assert len(outcome.results) == 1
    result = outcome.results[0]
    assert result.success is True
    assert {Path(entry["path"]).name for entry in result.data["entries"]} == {"notes.txt", "src"}

    # The second model call saw the tool result as a system message.
    second_request = provider.requests[1]
    assert second_request[0] == {"role": "system", "content": "You are a test agent."}
    assert any(
        message["role"] == "system" and "**Tool result:** file_list" in message["content"]
        for message in second_request
    )
    assert listener.names("start") == ["file_list"]
    assert listener.names("end") == [SessionState.DONE]


@pytest.mark.asyncio
async def test_unapproved_dangerous_call_spawns_nothing(
    tool_context: ToolContext, process_runner: FakeProcessRunner
) -> None:
    runner, _ = make_runner(
        tool_context,
        [tool_block("shell_execute", command="rm -rf /tmp/x"), "Understood, I will not delete it."],
    )

    outcome = await runner.run("Clean up /tmp/x")

    assert outcome.results[0].error_kind == ErrorCode.PERMISSION_DENIED
    assert process_runner.calls == []
    assert outcome.state is SessionState.DONE


@pytest.mark.asyncio
async def test_approved_dangerous_call_runs(tool_context: ToolContext) -> None:
    spawner = FakeProcessRunner([ProcessOutput(returncode=0, stdout="ok\n", stderr="")])
    tool_context.process_runner = spawner
    prompts: list[PendingConfirmation] = []

    def approver(pending: PendingConfirmation) -> bool:
        prompts.append(pending)
        return True

    runner, _ = make_runner(
        tool_context,
        [tool_block("shell_execute", command="echo ok"), "It printed ok."],
        approver=approver,
    )

    outcome = await runner.run("say ok")

    assert outcome.results[0].success is True
    assert prompts[0].parameters == {"command": "echo ok"}
    assert spawner.calls[0].argv[-1] == "echo ok"
    assert runner.session is not None and runner.session.awaiting_confirmation is None


@pytest.mark.asyncio
async def test_plain_answer_needs_no_cycle(tool_context: ToolContext) -> None:
    runner, provider = make_runner(tool_context, ["Hello there!"])

    outcome = await runner.run("hi")

    assert outcome.state is SessionState.DONE
    assert outcome.iterations == 0
    assert outcome.results == ()
    assert len(provider.requests) == 1


# -----------------------------------------------------------------------------
# Ordering and batches
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_calls_run_in_block_order(tool_context: ToolContext, url_opener: Any) -> None:
    reply = "\n".join(
        [
            tool_block("web_search", query="first"),
            tool_block("youtube_search", query="second"),
            tool_block("map_open", location="third"),
        ]
    )
    runner, _ = make_runner(tool_context, [reply, "Opened all three."])

    outcome = await runner.run("open stuff")

    assert [result.tool_name for result in outcome.results] == ["web_search", "youtube_search", "map_open"]
    assert [url.rsplit("=", 1)[-1] for url in url_opener.urls] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_denial_cancels_the_rest_of_the_batch(tool_context: ToolContext, url_opener: Any) -> None:
    reply = "\n".join(
        [
            tool_block("web_search", query="before"),
            tool_block("file_write", path="out.txt", content="x"),
            tool_block("web_search", query="after"),
            tool_block("system_info"),
        ]
    )
    runner, _ = make_runner(tool_context, [reply, "Okay."], approver=lambda pending: False)

    outcome = await runner.run("do things")

    kinds = [(result.tool_name, result.error_kind) for result in outcome.results]
    assert kinds == [
        ("web_search", None),
        ("file_write", ErrorCode.PERMISSION_DENIED),
        ("web_search", ErrorCode.PERMISSION_DENIED),
        ("system_info", ErrorCode.PERMISSION_DENIED),
    ]
    assert outcome.results[2].error_message == BATCH_CANCELLED_MESSAGE
    assert url_opener.urls == ["https://www.google.com/search?q=before"]
    assert not (Path(tool_context.working_directory or ".") / "out.txt").exists()
    assert runner.session is not None and not runner.session.pending


@pytest.mark.asyncio
async def test_every_call_yields_exactly_one_result_turn(tool_context: ToolContext) -> None:
    reply = tool_block("system_info") + tool_block("nonexistent_tool") + tool_block("web_search")
    runner, _ = make_runner(tool_context, [reply, "done"])

    outcome = await runner.run("go")

    assert [result.error_kind for result in outcome.results] == [
        None,
        ErrorCode.UNKNOWN_TOOL,
        ErrorCode.VALIDATION_ERROR,
    ]
    result_turns = [
        turn for turn in runner.conversation.turns if turn.role == "system" and "**Tool result:**" in turn.content
    ]
    assert len(result_turns) == 3
    assert all(turn.hidden for turn in result_turns)


@pytest.mark.asyncio
async def test_parse_failures_are_reported_to_the_model(tool_context: ToolContext) -> None:
    broken = f"{FENCE}json\n{{not json}}\n{FENCE}"
    runner, provider = make_runner(tool_context, [broken + tool_block("system_info"), "fine"])

    outcome = await runner.run("go")

    assert len(outcome.parse_failures) == 1
    assert outcome.results[0].tool_name == "system_info"
    assert any("parse errors" in message["content"] for message in provider.requests[1])


# -----------------------------------------------------------------------------
# Iteration budget
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_iteration_ceiling_stops_the_loop(tool_context: ToolContext) -> None:
    always_call = [tool_block("system_info") for _ in range(10)]
    runner, provider = make_runner(tool_context, always_call, max_iterations=3, fallback=None)

    outcome = await runner.run("loop forever")

    assert outcome.state is SessionState.ITERATION_LIMIT_EXCEEDED
    assert outcome.limit_exceeded
    assert outcome.iterations == 3
    assert len(provider.requests) == 3
    assert outcome.notice and "iteration limit" in outcome.notice.lower()
    last = runner.conversation.last()
    assert last is not None and last.role == "system" and last.content == outcome.notice


@pytest.mark.asyncio
async def test_each_run_gets_a_fresh_budget(tool_context: ToolContext) -> None:
    runner, _ = make_runner(
        tool_context,
        [tool_block("system_info"), tool_block("system_info"), tool_block("system_info"), "second"],
        max_iterations=2,
    )

    first = await runner.run("one")
    second = await runner.run("two")

    assert first.state is SessionState.ITERATION_LIMIT_EXCEEDED
    assert second.state is SessionState.DONE
    assert second.iterations == 1
    # Context is kept between runs.
    assert [turn.content for turn in runner.conversation.turns if turn.role == "user"] == ["one", "two"]


# -----------------------------------------------------------------------------
# Failures and lifecycle
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_provider_failure_propagates(tool_context: ToolContext) -> None:
    runner, _ = make_runner(tool_context, [RuntimeError("model endpoint unreachable")])

    with pytest.raises(RuntimeError, match="unreachable"):
        await runner.run("hi")

    assert runner.running is False


@pytest.mark.asyncio
async def test_provider_failure_mid_session_keeps_results(tool_context: ToolContext) -> None:
    runner, _ = make_runner(tool_context, [tool_block("system_info"), ConnectionError("dropped")])

    with pytest.raises(ConnectionError):
        await runner.run("hi")

    assert runner.session is not None
    assert len(runner.session.results) == 1


@pytest.mark.asyncio
async def test_run_is_not_reentrant(tool_context: ToolContext) -> None:
    gate_open = asyncio.Event()

    class SlowProvider:
        async def complete(self, messages: Sequence[Mapping[str, Any]]) -> str:
            await gate_open.wait()
            return "done"

    runner = AgentRunner(
        SlowProvider(),
        ToolExecutor(build_default_registry(), tool_context),
        ConfirmationGate(),
    )
    first = asyncio.create_task(runner.run("one"))
    await asyncio.sleep(0)

    with pytest.raises(RuntimeError, match="already in progress"):
        await runner.run("two")

    gate_open.set()
    assert (await first).reply == "done"


@pytest.mark.asyncio
async def test_reset_starts_a_new_conversation(tool_context: ToolContext) -> None:
    runner, _ = make_runner(tool_context, ["hello"])
    await runner.run("hi")

    runner.reset()

    assert len(runner.conversation) == 0
    assert runner.conversation.system_prompt == "You are a test agent."
    assert runner.session is None


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_the_loop(tool_context: ToolContext) -> None:
    class BrokenListener:
        def on_turn(self, turn: Any) -> None:
            raise ValueError("ui gone")

    runner, _ = make_runner(tool_context, [tool_block("system_info"), "done"], listener=BrokenListener())

    outcome = await runner.run("go")

    assert outcome.state is SessionState.DONE


# -----------------------------------------------------------------------------
# Randomized approve/deny interleavings
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(8))
async def test_random_batches_settle_every_call(tool_context: ToolContext, seed: int) -> None:
    rng = random.Random(seed)
    pool = [
        ("system_info", {}),
        ("web_search", {"query": "q"}),
        ("shell_execute", {"command": "echo hi"}),
        ("file_write", {"path": "f.txt", "content": "x"}),
        ("bogus_tool", {}),
    ]
    replies: list[str] = []
    for _ in range(3):
        picks = [rng.choice(pool) for _ in range(rng.randint(1, 5))]
        replies.append("".join(tool_block(name, **params) for name, params in picks))
    replies.append("finished")
    verdicts = [rng.random() < 0.5 for _ in range(50)]
    verdict_iter = iter(verdicts)
    spawner = FakeProcessRunner([ProcessOutput(0, "hi\n", "")] * 50)
    tool_context.process_runner = spawner

    runner, _ = make_runner(tool_context, replies, approver=lambda pending: next(verdict_iter), max_iterations=3)
    outcome = await runner.run("random work")

    assert outcome.iterations == 3
    assert outcome.state is SessionState.ITERATION_LIMIT_EXCEEDED
    requested = sum(reply.count(FENCE) // 2 for reply in replies[:3])
    assert len(outcome.results) == requested
    for result in outcome.results:
        assert result.success or result.error_kind is not None
    # Once a dangerous call is denied, nothing later in that batch ran.
    assert runner.session is not None and not runner.session.pending
    denied = [r for r in outcome.results if r.error_message == BATCH_CANCELLED_MESSAGE]
    assert all(r.error_kind == ErrorCode.PERMISSION_DENIED for r in denied)
    approved_shell = sum(
        1 for r in outcome.results if r.tool_name == "shell_execute" and r.success
    )
    assert len(spawner.calls) == approved_shell
