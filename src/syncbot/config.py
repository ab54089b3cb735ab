"""Identity and configuration for a sync agent.

Defaults live in :mod:`src.common.constants`.  Values are layered as
defaults < ``SYNCBOT_*`` environment < explicit overrides (CLI flags or
keyword arguments) and frozen once built.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import quote

from src.common.constants import (
    DEFAULT_CONNECTION_TIMEOUT,
    DEFAULT_DEPLOY_PATH,
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_EXEC_COMMAND,
    DEFAULT_INTERNAL_CODE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_INTERVAL,
    ENV_PREFIX,
    MAX_SIGNAL_POLLS,
    PING_PATH,
)


class ConfigError(ValueError):
    """Raised for missing or invalid configuration values."""


@dataclass(frozen=True)
class Identity:
    """Who this agent is and where its coordination service lives."""

    bot_id: str              # e.g. "LataUnid_Proyecto-Rob1"
    base_url: str            # coordination service root, no trailing slash

    def __post_init__(self) -> None:
        bot_id = (self.bot_id or "").strip()
        base_url = (self.base_url or "").strip().rstrip("/")
        if not bot_id:
            raise ConfigError("bot_id must not be empty")
        if not base_url:
            raise ConfigError("base_url must not be empty")
        object.__setattr__(self, "bot_id", bot_id)
        object.__setattr__(self, "base_url", base_url)

    def url(self, path: str) -> str:
        """Absolute URL for a coordination-service *path*."""
        return f"{self.base_url}{path}"

    def url_for_self(self, path: str) -> str:
        """Absolute URL for *path* carrying ``?botId=<own id>``."""
        return f"{self.url(path)}?botId={quote(self.bot_id, safe='')}"


@dataclass(frozen=True)
class SyncConfig:
    """Pairing, signal and deploy settings (immutable once built)."""

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    internal_code: int = DEFAULT_INTERNAL_CODE
    ping_url: str = ""
    artifact_urls: tuple[str, ...] = ()
    exec_command: str = DEFAULT_EXEC_COMMAND
    deploy_path: Path = DEFAULT_DEPLOY_PATH
    max_signal_polls: int = MAX_SIGNAL_POLLS
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT

    def validate(self) -> None:
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.max_signal_polls < 1:
            raise ConfigError(f"max_signal_polls must be >= 1, got {self.max_signal_polls}")
        if self.retry_interval < 0:
            raise ConfigError(f"retry_interval must be >= 0, got {self.retry_interval}")
        for name in ("connection_timeout", "download_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        if not self.exec_command.strip():
            raise ConfigError("exec_command must not be empty")


_FIELDS = {f.name for f in dataclasses.fields(SyncConfig)}


def build_config(identity: Identity, overrides: Mapping[str, Any] | None = None) -> SyncConfig:
    """Merge *overrides* onto the defaults and derive the ping URL.

    Unknown keys raise :class:`ConfigError` instead of being ignored.
    """
    overrides = dict(overrides or {})
    unknown = set(overrides) - _FIELDS
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    if "artifact_urls" in overrides:
        overrides["artifact_urls"] = tuple(overrides["artifact_urls"])
    if "deploy_path" in overrides:
        overrides["deploy_path"] = Path(overrides["deploy_path"])
    if not overrides.get("ping_url"):
        overrides["ping_url"] = identity.url_for_self(PING_PATH)

    config = SyncConfig(**overrides)
    config.validate()
    return config


# env suffix -> (config field, parser)
_ENV_FIELDS: dict[str, tuple[str, Any]] = {
    "MAX_RETRIES": ("max_retries", int),
    "RETRY_INTERVAL": ("retry_interval", float),
    "CONNECTION_TIMEOUT": ("connection_timeout", float),
    "INTERNAL_CODE": ("internal_code", int),
    "PING_URL": ("ping_url", str),
    "ARTIFACT_URLS": (
        "artifact_urls",
        lambda v: tuple(u.strip() for u in v.split(",") if u.strip()),
    ),
    "EXEC_COMMAND": ("exec_command", str),
    "DEPLOY_PATH": ("deploy_path", Path),
    "DOWNLOAD_TIMEOUT": ("download_timeout", float),
}


def config_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect ``SYNCBOT_*`` variables into a dict of overrides.

    ``SYNCBOT_BOT_ID`` and ``SYNCBOT_BASE_URL`` are returned under the
    ``bot_id``/``base_url`` keys; they belong to :class:`Identity`, not
    :class:`SyncConfig`.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for key in ("BOT_ID", "BASE_URL"):
        raw = env.get(f"{ENV_PREFIX}{key}", "").strip()
        if raw:
            values[key.lower()] = raw
    for suffix, (name, parse) in _ENV_FIELDS.items():
        raw = env.get(f"{ENV_PREFIX}{suffix}", "").strip()
        if not raw:
            continue
        try:
            values[name] = parse(raw)
        except ValueError as exc:
            raise ConfigError(f"{ENV_PREFIX}{suffix}={raw!r}: {exc}") from exc
    return values


def load_dotenv(env_path: Path) -> list[str]:
    """Load variables from a .env file into os.environ (no overwrite).

    Returns the names that were set.
    """
    if not env_path.is_file():
        return []
    written: list[str] = []
    with open(env_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            value = value.strip().strip("\"'")
            if key and key not in os.environ:
                os.environ[key] = value
                written.append(key)
    return written
