"""Text file helpers used by the file tools and the settings store."""

from __future__ import annotations

import codecs
import locale
import os
import tempfile
from pathlib import Path

__all__ = ["looks_binary", "read_text", "write_text"]

# Longest marks first: the UTF-32 LE mark starts with the UTF-16 LE one.
_BYTE_ORDER_MARKS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)
_SNIFF_BYTES = 8192


def _guess_encoding(raw: bytes) -> str:
    for mark, encoding in _BYTE_ORDER_MARKS:
        if raw.startswith(mark):
            return encoding
    candidates = dict.fromkeys(["utf-8", locale.getpreferredencoding(False) or "utf-8"])
    for candidate in candidates:
        try:
            raw.decode(candidate)
        except (UnicodeDecodeError, LookupError):
            continue
        return candidate
    # latin-1 maps every byte, so it never fails
    return "latin-1"


def read_text(path: Path | str, *, encoding: str | None = None, errors: str = "strict") -> str:
    """Decode a file using ``encoding`` or, when omitted, its byte-order mark or content."""
    raw = Path(path).read_bytes()
    text = raw.decode(encoding or _guess_encoding(raw), errors=errors)
    return text.removeprefix("\ufeff")


def write_text(path: Path | str, content: str, *, encoding: str = "utf-8", atomic: bool = True) -> int:
    """Write ``content`` and return the number of bytes written.

    Missing parent directories are created. With ``atomic`` the data goes to a
    temporary sibling that then replaces the target, so readers never observe
    a half-written file.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = content.encode(encoding)

    if not atomic:
        target.write_bytes(payload)
        return len(payload)

    fd, staging = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staging, target)
    except BaseException:
        Path(staging).unlink(missing_ok=True)
        raise
    return len(payload)


def looks_binary(raw: bytes) -> bool:
    """True when the leading block holds NUL bytes and no UTF-16/32 byte-order mark explains them."""
    if any(raw.startswith(mark) for mark, _ in _BYTE_ORDER_MARKS):
        return False
    return b"\x00" in raw[:_SNIFF_BYTES]
