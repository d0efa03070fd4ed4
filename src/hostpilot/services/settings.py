"""Persistent HostPilot configuration.

Settings live in ``~/.hostpilot/settings.json``. The model API key is never
written in clear text: it is stored as a ``fernet:<token>`` string produced by
:class:`SecretVault`, with the Fernet key kept next to the settings file.
Values are resolved in this order, later sources winning:

1. defaults on :class:`Settings`
2. the JSON file
3. overrides passed to :meth:`SettingsStore.load` (``--set KEY=VALUE``)
4. ``HOSTPILOT_*`` environment variables
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..utils.file_io import read_text, write_text

__all__ = [
    "FernetSecretProvider",
    "SecretProvider",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

HOSTPILOT_HOME = Path.home() / ".hostpilot"
SCHEMA_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"


def _flag(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on", "debug"}


# Environment variable -> (settings field, converter)
_ENVIRONMENT: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "HOSTPILOT_API_KEY": ("api_key", str),
    "HOSTPILOT_BASE_URL": ("base_url", str),
    "HOSTPILOT_MODEL": ("model", str),
    "HOSTPILOT_SHELL": ("shell", str),
    "HOSTPILOT_WORKING_DIRECTORY": ("working_directory", str),
    "HOSTPILOT_SQL_DRIVER": ("sql_driver", str),
    "HOSTPILOT_DEBUG_LOGGING": ("debug_logging", _flag),
    "HOSTPILOT_SQL_TRUST_SERVER_CERTIFICATE": ("sql_trust_server_certificate", _flag),
    "HOSTPILOT_TEMPERATURE": ("temperature", float),
    "HOSTPILOT_REQUEST_TIMEOUT": ("request_timeout", float),
    "HOSTPILOT_TOOL_TIMEOUT": ("tool_timeout", float),
    "HOSTPILOT_CONFIRMATION_TIMEOUT": ("confirmation_timeout", float),
    "HOSTPILOT_SQL_QUERY_TIMEOUT": ("sql_query_timeout", float),
    "HOSTPILOT_MAX_RETRIES": ("max_retries", int),
    "HOSTPILOT_MAX_TOOL_ITERATIONS": ("max_tool_iterations", int),
    "HOSTPILOT_SQL_MAX_ROWS": ("sql_max_rows", int),
}


@dataclass(slots=True)
class Settings:
    """Everything a HostPilot runtime needs to start.

    The defaults target a local Ollama server through its OpenAI-compatible
    endpoint, so a fresh install works without an API key.
    """

    # Model endpoint
    base_url: str = "http://localhost:11434/v1"
    api_key: str = ""
    model: str = "llama3.1"
    temperature: float = 0.2
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    # Agent loop
    max_tool_iterations: int = 5
    tool_timeout: float | None = 60.0
    confirmation_timeout: float | None = None
    shell: str | None = None
    working_directory: str | None = None

    # Data store
    sql_driver: str = "ODBC Driver 18 for SQL Server"
    sql_query_timeout: float | None = 30.0
    sql_max_rows: int = 500
    sql_trust_server_certificate: bool = False

    debug_logging: bool = False


_FIELD_NAMES = frozenset(item.name for item in fields(Settings))


# -----------------------------------------------------------------------------
# Secrets
# -----------------------------------------------------------------------------


class SecretProvider(ABC):
    """Reversible encoding for secrets kept in the settings file."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        ...

    @abstractmethod
    def decrypt(self, token: str) -> str:
        ...


class FernetSecretProvider(SecretProvider):
    """Fernet encryption with a key file created on first use (mode 0600 on POSIX)."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self.key_path = key_path or HOSTPILOT_HOME / "settings.key"
        self._cipher: Fernet | None = None

    @property
    def cipher(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_or_generate_key())
        return self._cipher

    def encrypt(self, secret: str) -> str:
        return self.cipher.encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        return self.cipher.decrypt(token.encode("ascii")).decode("utf-8")

    def _read_or_generate_key(self) -> bytes:
        if self.key_path.exists():
            return self.key_path.read_bytes().strip()
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        staging = self.key_path.with_name(self.key_path.name + ".new")
        staging.write_bytes(key)
        if os.name == "posix":
            staging.chmod(0o600)
        staging.replace(self.key_path)
        LOGGER.info("Generated settings key at %s", self.key_path)
        return key


class SecretVault:
    """Wraps a :class:`SecretProvider` and tags tokens with its name."""

    def __init__(self, *, key_path: Path | None = None, provider: SecretProvider | None = None) -> None:
        self._provider = provider if provider is not None else FernetSecretProvider(key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        return f"{self.strategy}:{self._provider.encrypt(secret)}" if secret else ""

    def decrypt(self, token: str | None) -> str:
        """Return the secret inside ``token``.

        Raises:
            ValueError: The token was made by another provider or is corrupt.
        """
        if not token:
            return ""
        backend, separator, body = token.partition(":")
        if not separator or backend != self.strategy:
            raise ValueError(f"Secret was not produced by the {self.strategy} backend")
        try:
            return self._provider.decrypt(body)
        except (InvalidToken, ValueError) as exc:
            raise ValueError(f"Corrupt {self.strategy} token") from exc


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or HOSTPILOT_HOME / "settings.json"
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        stored = self._read()
        api_key, plaintext_found = self._stored_api_key(stored)
        known = {key: value for key, value in stored.items() if key in _FIELD_NAMES and key != "api_key"}
        try:
            settings = Settings(**known)
        except TypeError as exc:
            LOGGER.warning("Ignoring malformed settings in %s: %s", self._path, exc)
            settings = Settings()
        if api_key:
            settings = replace(settings, api_key=api_key)

        if plaintext_found:
            LOGGER.info("Re-saving %s with the API key encrypted", self._path)
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directory
                LOGGER.warning("Could not rewrite %s: %s", self._path, exc)

        settings = _merge(settings, overrides or {}, source="command line")
        return _merge(settings, _environment_overrides(), source="environment")

    def save(self, settings: Settings) -> Path:
        document = asdict(settings)
        secret = document.pop("api_key") or ""
        if secret:
            document[_CIPHERTEXT_KEY] = self._vault.encrypt(secret)
        document.update(version=SCHEMA_VERSION, secret_backend=self._vault.strategy)
        write_text(self._path, json.dumps(document, indent=2, sort_keys=True))
        LOGGER.debug("Wrote settings to %s", self._path)
        return self._path

    def _read(self) -> Dict[str, Any]:
        try:
            document = json.loads(read_text(self._path))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring %s, it is not valid JSON: %s", self._path, exc)
            return {}
        return document if isinstance(document, dict) else {}

    def _stored_api_key(self, document: Mapping[str, Any]) -> tuple[str, bool]:
        """Return ``(api_key, stored_in_plaintext)``."""
        token = document.get(_CIPHERTEXT_KEY)
        if token:
            try:
                return self._vault.decrypt(token), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        legacy = document.get("api_key")
        return (legacy, True) if legacy else ("", False)


def _merge(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    changes = {key: value for key, value in overrides.items() if key in _FIELD_NAMES and value is not None}
    if isinstance(changes.get("metadata"), Mapping):
        changes["metadata"] = {**settings.metadata, **changes["metadata"]}
    if not changes:
        return settings
    LOGGER.debug("Settings overridden from %s: %s", source, ", ".join(sorted(changes)))
    return replace(settings, **changes)


def _environment_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for variable, (name, convert) in _ENVIRONMENT.items():
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            overrides[name] = convert(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", variable, raw, convert.__name__)
    return overrides


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters (everything when short)."""
    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]
