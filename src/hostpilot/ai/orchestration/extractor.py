"""Tool-call extraction from model text.

The model requests a tool by emitting a fenced block holding one JSON object::

    ```json
    {"tool": "file_list", "parameters": {"path": "/tmp"}}
    ```

The ``json`` info string is optional and ``tool`` is accepted as well. Fences
with any other info string (``python``, ``bash``...) are ordinary prose and are
skipped. A bare fence is only considered when its body starts with ``{``.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Callable

from .types import Extraction, ParseFailure, ToolCall

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ALLOWED_KEYS",
    "FENCED_BLOCK_RE",
    "ToolCallExtractor",
    "extract_tool_calls",
]

FENCED_BLOCK_RE = re.compile(r"```(?P<info>[A-Za-z0-9_+-]*)(?P<body>.*?)```", re.DOTALL)

ALLOWED_KEYS = frozenset({"tool", "parameters"})
_TOOL_INFO_STRINGS = frozenset({"json", "tool"})


def _default_call_id(index: int) -> str:
    return f"call_{index}_{uuid.uuid4().hex[:8]}"


class ToolCallExtractor:
    """Turns untrusted model text into :class:`ToolCall` records.

    Extraction never raises: malformed blocks become :class:`ParseFailure`
    entries and scanning continues with the next block.
    """

    def __init__(self, *, id_factory: Callable[[int], str] | None = None) -> None:
        self._id_factory = id_factory or _default_call_id

    def extract(self, text: str) -> Extraction:
        if not text or not isinstance(text, str):
            return Extraction()

        calls: list[ToolCall] = []
        errors: list[ParseFailure] = []
        for match in FENCED_BLOCK_RE.finditer(text):
            info = match.group("info").lower()
            body = match.group("body").strip()
            if info not in _TOOL_INFO_STRINGS and not (info == "" and body.startswith("{")):
                continue

            span = (match.start(), match.end())
            outcome = self._parse_block(body, span, len(calls))
            if isinstance(outcome, ToolCall):
                calls.append(outcome)
            else:
                LOGGER.debug("Rejected tool block at %s: %s", span, outcome.message)
                errors.append(outcome)

        return Extraction(calls=tuple(calls), errors=tuple(errors))

    def _parse_block(self, body: str, span: tuple[int, int], index: int) -> ToolCall | ParseFailure:
        try:
            payload: Any = json.loads(body)
        except json.JSONDecodeError as exc:
            return ParseFailure(f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})", body, span)

        if not isinstance(payload, dict):
            return ParseFailure("Tool block must contain a JSON object", body, span)

        extra = sorted(set(payload) - ALLOWED_KEYS)
        if extra:
            return ParseFailure(f"Unexpected keys in tool block: {', '.join(extra)}", body, span)

        tool_name = payload.get("tool")
        if not isinstance(tool_name, str) or not tool_name.strip():
            return ParseFailure("'tool' must be a non-empty string", body, span)

        parameters = payload.get("parameters", {})
        if not isinstance(parameters, dict):
            return ParseFailure("'parameters' must be a JSON object", body, span)

        return ToolCall(
            call_id=self._id_factory(index),
            tool_name=tool_name.strip(),
            parameters=parameters,
            raw_text=body,
            span=span,
        )


def extract_tool_calls(text: str) -> Extraction:
    """Convenience wrapper around a default :class:`ToolCallExtractor`."""
    return ToolCallExtractor().extract(text)
