"""Configuration management for epic-swarm."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

COMPLEXITY_LEVELS = ("trivial", "simple", "complex")


class SwarmSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    metadata_dir: Path = Field(
        default=Path("~/.config/epic-swarm/workspaces"), validation_alias="SWARM_METADATA_DIR"
    )
    worker_path: str | None = Field(default=None, validation_alias="WORKER_PATH")
    worker_default_model: str | None = Field(default=None, validation_alias="WORKER_DEFAULT_MODEL")
    max_parallel: int = Field(default=4, validation_alias="SWARM_MAX_PARALLEL")
    child_timeout: float | None = Field(default=None, validation_alias="SWARM_CHILD_TIMEOUT")
    poll_interval: float = Field(default=5.0, validation_alias="SWARM_POLL_INTERVAL")
    branch_prefix: str = Field(default="issue/", validation_alias="SWARM_BRANCH_PREFIX")
    log_level: str = Field(default="INFO", validation_alias="SWARM_LOG_LEVEL")
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="SWARM_PROFILE_PATHS"
    )
    worker_profile: str = Field(default="swarm-worker", validation_alias="SWARM_WORKER_PROFILE")
    tasks_file: Path = Field(default=Path("tasks.yaml"), validation_alias="SWARM_TASKS_FILE")
    default_complexity: str = Field(default="simple", validation_alias="SWARM_DEFAULT_COMPLEXITY")
    telemetry_enabled: bool = Field(default=True, validation_alias="SWARM_TELEMETRY_ENABLED")
    events_path: Path = Field(default=Path("./storage/chroma"), validation_alias="SWARM_EVENTS_PATH")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SWARM_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("profile_paths", mode="before")
    @classmethod
    def _parse_profile_paths(cls, value):
        if value is None or value == "":
            return (Path("profiles"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("profiles"),)
        raise TypeError("SWARM_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("max_parallel")
    @classmethod
    def _validate_max_parallel(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SWARM_MAX_PARALLEL must be >= 1")
        return value

    @field_validator("child_timeout")
    @classmethod
    def _validate_child_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("SWARM_CHILD_TIMEOUT must be a positive number of seconds")
        return value

    @field_validator("poll_interval")
    @classmethod
    def _validate_poll_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SWARM_POLL_INTERVAL must be > 0")
        return value

    @field_validator("default_complexity")
    @classmethod
    def _validate_complexity(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in COMPLEXITY_LEVELS:
            raise ValueError(
                f"SWARM_DEFAULT_COMPLEXITY must be one of {', '.join(COMPLEXITY_LEVELS)}"
            )
        return normalized


@lru_cache(maxsize=1)
def get_settings() -> SwarmSettings:
    """Return cached settings instance."""

    settings = SwarmSettings()
    settings.metadata_dir = settings.metadata_dir.expanduser().resolve()
    settings.events_path = settings.events_path.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["COMPLEXITY_LEVELS", "SwarmSettings", "get_settings"]
