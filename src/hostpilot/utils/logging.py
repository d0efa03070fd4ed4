"""Logging setup for HostPilot.

Records go to a rotating ``hostpilot.log`` under ``~/.hostpilot/logs`` (or
``$HOSTPILOT_LOG_DIR``) and, when asked, to stderr. Every handler carries a
:class:`RedactingFilter`, so a ``PWD=...`` fragment of a connection string or
a registered API key never reaches disk.
"""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

__all__ = ["RedactingFilter", "get_log_path", "get_logger", "setup_logging"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DEFAULT_DIRECTORY = Path.home() / ".hostpilot" / "logs"
# Chatty third-party loggers held at WARNING unless the root is stricter.
_THIRD_PARTY = ("asyncio", "httpx", "httpcore", "openai", "sqlalchemy.engine")
_CREDENTIAL = re.compile(
    r"(?P<key>\b(?:password|pwd|api[_-]?key|secret|token)\b\s*[=:]\s*)(?P<value>[^\s;,&\"']+)",
    re.IGNORECASE,
)
_MIN_SECRET_LENGTH = 4
MASK = "***"

_active_log: Path | None = None


class RedactingFilter(logging.Filter):
    """Masks credential-looking ``key=value`` pairs and known secret values."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        for secret in secrets:
            self.add_secret(secret)

    def add_secret(self, secret: str | None) -> None:
        # Very short values would mask ordinary words.
        if secret and len(secret) >= _MIN_SECRET_LENGTH:
            self._secrets.add(secret)

    def redact(self, text: str) -> str:
        masked = _CREDENTIAL.sub(lambda match: match.group("key") + MASK, text)
        for secret in self._secrets:
            masked = masked.replace(secret, MASK)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            rendered = record.getMessage()
        except (TypeError, ValueError):  # pragma: no cover - let the formatter report it
            return True
        masked = self.redact(rendered)
        if masked != rendered:
            record.msg, record.args = masked, None
        return True


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    secrets: Iterable[str] = (),
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the HostPilot handlers on the root logger and return the log file.

    Repeated calls are no-ops unless ``force`` is set.
    """
    global _active_log
    if _active_log is not None and not force:
        return _active_log

    directory = Path(log_dir or os.environ.get("HOSTPILOT_LOG_DIR") or _DEFAULT_DIRECTORY).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / "hostpilot.log"

    handlers: list[logging.Handler] = [
        RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler())

    redactor = RedactingFilter(secrets)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    for name in _THIRD_PARTY:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _active_log = log_file
    return log_file


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """The file chosen by the last :func:`setup_logging` call, if any."""
    return _active_log
