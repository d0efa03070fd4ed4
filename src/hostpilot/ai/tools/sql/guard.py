"""Read-only statement guard for the data store tools.

Every query text is classified here before it is handed to a live session.
A statement is accepted only when

1. after stripping leading whitespace, comments and opening parentheses, its
   first keyword is ``SELECT`` or ``WITH`` (a ``WITH`` statement must also
   contain ``SELECT``), and
2. none of the mutating keywords in :data:`MUTATING_KEYWORDS`, nor any
   ``sp_*``/``xp_*`` procedure name, occurs as a whole word anywhere in the
   raw text.

Known weakness: this is a keyword blacklist, not a tokenizer. The scan runs
over the raw text, so keywords inside string literals, quoted identifiers or
comments are *not* exempted. That makes the guard reject some harmless
queries (``SELECT 'drop' AS word``) in exchange for never having to reason
about literal or comment boundaries. Replacing the scan with a real T-SQL
tokenizer would remove the false rejections; until then the guard errs
towards refusing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ..errors import WriteOperationRejected

LOGGER = logging.getLogger(__name__)

READ_ONLY_VERBS = frozenset({"SELECT", "WITH"})

MUTATING_KEYWORDS: tuple[str, ...] = (
    "insert",
    "update",
    "delete",
    "drop",
    "create",
    "alter",
    "truncate",
    "exec",
    "execute",
    "merge",
    "bulk",
    "into",
    "grant",
    "revoke",
    "writetext",
    "updatetext",
)

_MUTATING_PATTERN = re.compile(
    r"\b(" + "|".join(MUTATING_KEYWORDS) + r")\b|\b((?:sp|xp)_\w*)",
    re.IGNORECASE,
)
_LEADING_NOISE = re.compile(r"\A(?:\s+|--[^\n]*(?:\n|\Z)|/\*.*?(?:\*/|\Z)|\()", re.DOTALL)
_FIRST_WORD = re.compile(r"[A-Za-z_]+")
_SELECT_WORD = re.compile(r"\bselect\b", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class StatementVerdict:
    """Outcome of classifying one query text."""

    read_only: bool
    reason: str = ""
    keyword: str | None = None


def _strip_leading(query: str) -> str:
    text = query
    while True:
        match = _LEADING_NOISE.match(text)
        if match is None or not match.group(0):
            return text
        text = text[match.end():]


def classify(query: str) -> StatementVerdict:
    """Classify ``query`` as read-only or not. Pure function."""
    if not query or not query.strip():
        return StatementVerdict(False, "Query is empty")

    head = _strip_leading(query)
    first = _FIRST_WORD.match(head)
    verb = first.group(0).upper() if first else ""
    if verb not in READ_ONLY_VERBS:
        return StatementVerdict(
            False,
            "Query must start with SELECT or WITH",
            keyword=verb or None,
        )
    if verb == "WITH" and not _SELECT_WORD.search(head):
        return StatementVerdict(False, "A WITH statement must resolve to a SELECT", keyword="WITH")

    mutating = _MUTATING_PATTERN.search(query)
    if mutating is not None:
        keyword = (mutating.group(1) or mutating.group(2)).upper()
        return StatementVerdict(
            False,
            f"Query contains the write operation '{keyword}'",
            keyword=keyword,
        )

    return StatementVerdict(True)


def ensure_read_only(query: str) -> None:
    """Raise :class:`WriteOperationRejected` unless ``query`` is read-only."""
    verdict = classify(query)
    if verdict.read_only:
        return
    LOGGER.warning("Rejected statement: %s", verdict.reason)
    raise WriteOperationRejected(
        message=f"{verdict.reason}. Only read-only SELECT statements are allowed.",
        keyword=verdict.keyword,
    )


__all__ = [
    "MUTATING_KEYWORDS",
    "READ_ONLY_VERBS",
    "StatementVerdict",
    "classify",
    "ensure_read_only",
]
