"""Configuration management for devkb.

This module contains all configurable settings for the service. Settings are
resolved once at startup into a ServiceConfig, which is then passed
explicitly to the knowledge base and the HTTP layer.

Resolution order (later wins):
    1. Defaults below
    2. <data_dir>/devkb.yaml
    3. DEVKB_* environment variables
    4. Explicit overrides (CLI options, tests)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError

CONFIG_FILENAME = "devkb.yaml"

# Data directory, relative to the working directory unless absolute
DEFAULT_DATA_DIR = ".devkb"

# The editor client defaults to http://localhost:3001
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001

# Most recent search-history records kept (oldest evicted first)
DEFAULT_HISTORY_LIMIT = 100

# Number of top search matches quoted in an /api/ask answer
DEFAULT_ASK_SOURCES = 3

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Environment variable -> config field
ENV_VARS = {
    "DEVKB_DATA_DIR": "data_dir",
    "DEVKB_HOST": "host",
    "DEVKB_PORT": "port",
    "DEVKB_HISTORY_LIMIT": "history_limit",
    "DEVKB_SEARCH_LIMIT": "search_limit",
    "DEVKB_ASK_SOURCES": "ask_sources",
    "DEVKB_LOG_LEVEL": "log_level",
}


class ServiceConfig(BaseModel):
    """Startup configuration for the devkb service."""

    data_dir: Path = Path(DEFAULT_DATA_DIR)
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    history_limit: int = Field(default=DEFAULT_HISTORY_LIMIT, ge=1)
    search_limit: int | None = Field(default=None, ge=1)  # None = no cap
    ask_sources: int = Field(default=DEFAULT_ASK_SOURCES, ge=1)
    log_level: LogLevel = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @property
    def api_url(self) -> str:
        return f"http://{self.host}:{self.port}"


def _read_config_file(data_dir: Path) -> dict[str, Any]:
    path = data_dir / CONFIG_FILENAME
    if not path.exists():
        return {}

    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e

    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"{path} must contain a mapping of settings")
    if "data_dir" in payload:
        # The file lives inside the data directory, so it cannot relocate it
        raise ConfigurationError(
            f"data_dir cannot be set in {path}; use --data-dir or DEVKB_DATA_DIR"
        )

    unknown = set(payload) - set(ServiceConfig.model_fields)
    if unknown:
        raise ConfigurationError(
            f"Unknown settings in {path}: {', '.join(sorted(unknown))}"
        )
    return payload


def _read_env() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for var, field_name in ENV_VARS.items():
        raw = os.environ.get(var)
        if raw is not None and raw.strip():
            values[field_name] = raw.strip()
    return values


def load_config(data_dir: str | Path | None = None, **overrides: Any) -> ServiceConfig:
    """Resolve the service configuration.

    Args:
        data_dir: Data directory. Falls back to DEVKB_DATA_DIR, then .devkb.
        **overrides: Field values that take precedence over every other source.
            None values are ignored so CLI options can be passed straight through.

    Returns:
        The validated ServiceConfig.

    Raises:
        ConfigurationError: If the config file or any value is invalid.
    """
    env = _read_env()

    if data_dir is None:
        data_dir = env.get("data_dir", DEFAULT_DATA_DIR)
    resolved_dir = Path(data_dir).expanduser()

    values: dict[str, Any] = {}
    values.update(_read_config_file(resolved_dir))
    values.update(env)
    values.update({k: v for k, v in overrides.items() if v is not None})
    values["data_dir"] = resolved_dir

    try:
        return ServiceConfig.model_validate(values)
    except PydanticValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        raise ConfigurationError("Invalid configuration:\n" + "\n".join(errors)) from e
