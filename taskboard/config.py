"""Configuration loading for the taskboard service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from taskboard.constants import DEFAULT_TOKEN_TTL_SECONDS

LOG_FORMATS = {"json", "console"}


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class AppConfig:
    store_path: Path
    token_key: str
    token_ttl_seconds: int
    index_url: str | None
    log_format: str


def _read_dotenv_value(dotenv_path: Path, key: str) -> str | None:
    """Read a single key from a .env file without mutating the environment."""
    if not dotenv_path.is_file():
        return None
    try:
        content = dotenv_path.read_text(encoding="utf-8")
    except OSError:
        return None

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export ") :].strip()
        if "=" not in stripped:
            continue
        name, value = stripped.split("=", 1)
        name = name.strip()
        if name != key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        return value or None
    return None


def _read_setting(dotenv_path: Path, key: str) -> str | None:
    raw_value = os.environ.get(key)
    if raw_value is None:
        raw_value = _read_dotenv_value(dotenv_path, key)
    if raw_value is None:
        return None
    raw_value = raw_value.strip()
    return raw_value or None


def _read_positive_int(raw_value: str | None, *, default: int, key: str) -> int:
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except ValueError:
        raise ConfigError(f"{key} must be an integer.") from None
    if value <= 0:
        raise ConfigError(f"{key} must be a positive integer.")
    return value


def load_config() -> AppConfig:
    """Load required configuration from the environment."""
    dotenv_path = Path.cwd() / ".env"

    store_key = "TASKBOARD_STORE_PATH"
    raw_path = _read_setting(dotenv_path, store_key)
    if not raw_path:
        raise ConfigError(
            "TASKBOARD_STORE_PATH is required; set it to the task store file path."
        )

    token_key_name = "TASKBOARD_TOKEN_KEY"
    token_key = _read_setting(dotenv_path, token_key_name)
    if not token_key:
        raise ConfigError(
            "TASKBOARD_TOKEN_KEY is required; set it to a Fernet key."
        )

    ttl_key = "TASKBOARD_TOKEN_TTL_SECONDS"
    token_ttl_seconds = _read_positive_int(
        _read_setting(dotenv_path, ttl_key),
        default=DEFAULT_TOKEN_TTL_SECONDS,
        key=ttl_key,
    )

    index_url = _read_setting(dotenv_path, "TASKBOARD_INDEX_URL")

    log_format_key = "TASKBOARD_LOG_FORMAT"
    log_format = (_read_setting(dotenv_path, log_format_key) or "json").lower()
    if log_format not in LOG_FORMATS:
        raise ConfigError(f"{log_format_key} must be one of: json, console.")

    return AppConfig(
        store_path=Path(raw_path).resolve(),
        token_key=token_key,
        token_ttl_seconds=token_ttl_seconds,
        index_url=index_url,
        log_format=log_format,
    )
