"""Engine and block configuration."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

DEFAULT_LOG_DIR = Path.cwd() / "logs"


class EngineConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    log_dir: Path = Field(
        default=DEFAULT_LOG_DIR,
        description="Directory for JSONL run logs (TASKTREE_LOG_DIR)",
    )
    log_level: str = Field(
        default="INFO",
        description="Python logging level for the CLI (TASKTREE_LOG_LEVEL)",
    )
    lua_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Maximum time a definition file may run (TASKTREE_LUA_TIMEOUT)",
    )
    frame_interval: float = Field(
        default=1.0 / 60.0,
        gt=0,
        description="Tick delta for simulated runs, in seconds (TASKTREE_FRAME_INTERVAL)",
    )
    max_run_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Simulated runs are aborted after this much run time (TASKTREE_MAX_RUN_SECONDS)",
    )
    flush_every: int = Field(
        default=64,
        ge=1,
        description="Logger nodes flush after this many records (TASKTREE_FLUSH_EVERY)",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Optional[str]) -> str:
        if value is None:
            return "INFO"
        level = str(value).upper().strip()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if level not in allowed:
            raise ValueError(f"TASKTREE_LOG_LEVEL must be one of {sorted(allowed)}, got: {value!r}")
        return level

    @field_validator("log_dir", mode="before")
    @classmethod
    def _normalize_log_dir(cls, value: str | Path | None) -> Path:
        if value is None or value == "":
            return DEFAULT_LOG_DIR
        return Path(value).expanduser().resolve()


class BlockConfig(BaseModel):
    """Per-block settings, merged over the task's settings.

    Unknown keys are rejected so typos in a definition file surface early.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    background: str = Field(default="gray", description="Background colour")
    flush_every: Optional[int] = Field(
        default=None,
        ge=1,
        description="Override of EngineConfig.flush_every for this block",
    )
    log_prefix: str = Field(default="", description="Prefix of the block's log file name")
    verify_assets: bool = Field(
        default=False,
        description="Check every image asset before the block starts",
    )
    trace: bool = Field(default=False, description="Record node lifecycle transitions")

    @classmethod
    def merged(cls, *layers: Optional[Dict[str, Any]]) -> "BlockConfig":
        """Build from several config dicts; later layers win.

        Raises:
            ConfigError: On unknown keys or invalid values (E4007).
        """
        data: Dict[str, Any] = {}
        for layer in layers:
            if layer:
                data.update(layer)
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid block config: {e}", code="E4007") from None


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


def _read_float(key: str, default: float) -> float:
    raw = _read_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
    """Load and cache engine configuration."""
    flush_every_str = _read_env("TASKTREE_FLUSH_EVERY", "64")
    try:
        flush_every = int(flush_every_str)
    except ValueError:
        flush_every = 64

    return EngineConfig(
        log_dir=_read_env("TASKTREE_LOG_DIR", str(DEFAULT_LOG_DIR)),
        log_level=_read_env("TASKTREE_LOG_LEVEL", "INFO"),
        lua_timeout_seconds=_read_float("TASKTREE_LUA_TIMEOUT", 5.0),
        frame_interval=_read_float("TASKTREE_FRAME_INTERVAL", 1.0 / 60.0),
        max_run_seconds=_read_float("TASKTREE_MAX_RUN_SECONDS", 3600.0),
        flush_every=flush_every,
    )


def reload_config() -> EngineConfig:
    """Clear cached config so subsequent calls re-read the environment."""
    get_config.cache_clear()
    return get_config()


__all__ = ["BlockConfig", "EngineConfig", "get_config", "reload_config"]
