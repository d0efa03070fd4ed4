"""Console front end for HostPilot."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import types
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence, TextIO, Union, get_args, get_origin, get_type_hints

from .ai.orchestration import AgentOutcome, PendingConfirmation, ToolCall
from .ai.tools import ToolResult
from .bootstrap import build_runtime, configure_logging, load_settings
from .services.settings import Settings, SettingsStore, redact_secret

__all__ = ["ConsoleListener", "console_approver", "main"]

_EXIT_COMMANDS = {"exit", "quit", ":q"}
_NULL_WORDS = {"none", "null"}
_BOOL_WORDS = {
    **dict.fromkeys(("1", "true", "yes", "on", "debug"), True),
    **dict.fromkeys(("0", "false", "no", "off", "disabled"), False),
}


class ConsoleListener:
    """Prints tool activity to the terminal."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    def on_tool_start(self, call: ToolCall) -> None:
        self._write(f"-> {call.tool_name} {json.dumps(call.parameters, ensure_ascii=False)}")

    def on_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        status = "ok" if result.success else f"failed ({result.error_kind})"
        self._write(f"<- {call.tool_name}: {status}")

    def on_session_end(self, outcome: AgentOutcome) -> None:
        if outcome.notice:
            self._write(f"!! {outcome.notice}")

    def _write(self, line: str) -> None:
        self._stream.write(line + "\n")
        self._stream.flush()


async def console_approver(pending: PendingConfirmation) -> bool:
    """Ask the operator on stdin whether a dangerous call may run."""

    prompt = (
        f"\n[confirm] {pending.tool_name} wants to run with\n"
        f"{json.dumps(pending.parameters, indent=2, ensure_ascii=False)}\n"
        "Allow? [y/N] "
    )
    answer = await asyncio.to_thread(input, prompt)
    return answer.strip().lower() in {"y", "yes"}


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point of the ``hostpilot`` console script."""

    args = _build_parser().parse_args(argv)
    location = args.settings_path or os.environ.get("HOSTPILOT_SETTINGS_PATH")
    path = Path(location).expanduser() if location else None
    store = SettingsStore(path)
    try:
        overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(path, store=store, overrides=overrides or None)
    if args.dump_settings:
        _dump_settings(settings, store, overrides=overrides)
        return

    configure_logging(settings.debug_logging, console=False, secrets=(settings.api_key,))
    try:
        asyncio.run(_repl(settings, one_shot=args.message))
    except KeyboardInterrupt:
        print()


async def _repl(settings: Settings, *, one_shot: str | None = None) -> None:
    runtime = build_runtime(settings, approver=console_approver, listener=ConsoleListener())
    try:
        if one_shot:
            await _answer(runtime.runner, one_shot)
            return
        print(f"HostPilot ({settings.model} @ {settings.base_url}). Type 'exit' to quit.")
        while True:
            message = (await asyncio.to_thread(input, "\nyou> ")).strip()
            if not message:
                continue
            if message.lower() in _EXIT_COMMANDS:
                break
            if message == "/reset":
                runtime.runner.reset()
                print("Conversation cleared.")
                continue
            await _answer(runtime.runner, message)
    except EOFError:
        pass
    finally:
        await runtime.aclose()


async def _answer(runner: Any, message: str) -> None:
    try:
        outcome = await runner.run(message)
    except Exception as exc:  # noqa: BLE001 - provider failures end the turn, not the session
        print(f"error: {exc}", file=sys.stderr)
        return
    print(f"\nhostpilot> {outcome.reply}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostpilot", description="Chat with a local model that can act on this machine.")
    parser.add_argument("message", nargs="?", help="answer this one message and exit")
    parser.add_argument("--dump-settings", action="store_true", help="print the resolved settings as JSON, key masked")
    parser.add_argument("--settings-path", metavar="PATH", help="settings file (default ~/.hostpilot/settings.json)")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="change one setting for this run only; may be repeated",
    )
    return parser


# -----------------------------------------------------------------------------
# --set parsing
# -----------------------------------------------------------------------------


def _parse_bool(raw: str) -> bool:
    try:
        return _BOOL_WORDS[raw.lower()]
    except KeyError:
        raise ValueError(f"{raw!r} is not a yes/no value") from None


def _parse_object(raw: str) -> dict:
    try:
        payload = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"{raw!r} is not JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError("expected a JSON object")
    return payload


_PARSERS: Mapping[type, Callable[[str], Any]] = {
    bool: _parse_bool,
    int: lambda raw: int(raw, 10),
    float: float,
    dict: _parse_object,
}


def _concrete_type(annotation: Any) -> Any:
    """Reduce ``X | None`` and parametrised generics such as ``dict[str, str]`` to a plain class."""
    while get_origin(annotation) is not None:
        origin = get_origin(annotation)
        if origin is Union or origin is types.UnionType:
            annotation = next(arg for arg in get_args(annotation) if arg is not type(None))
        else:
            annotation = origin
    return annotation


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    hints = get_type_hints(Settings)
    coerced: Dict[str, Any] = {}
    for item in items:
        name, equals, raw = item.partition("=")
        name, raw = name.strip(), raw.strip()
        if not equals:
            raise ValueError(f"expected KEY=VALUE, got {item!r}")
        if not name:
            raise ValueError(f"{item!r} names no setting")
        if name not in hints:
            raise ValueError(f"there is no setting called {name!r}")
        kind = _concrete_type(hints[name])
        if kind is not str and raw.lower() in _NULL_WORDS:
            coerced[name] = None
            continue
        parse = _PARSERS.get(kind)
        coerced[name] = parse(raw) if parse else raw
    return coerced


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    out = stream or sys.stdout
    document = {
        "settings": {**asdict(settings), "api_key": redact_secret(settings.api_key)},
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.strategy,
            "cli_overrides": sorted(overrides),
            "environment_variables": sorted(name for name in os.environ if name.startswith("HOSTPILOT_")),
        },
    }
    out.write(json.dumps(document, indent=2) + "\n")


if __name__ == "__main__":  # pragma: no cover
    main()
