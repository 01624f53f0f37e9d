"""Configuration management for Overseer MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class OverseerSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    worker_path: str | None = Field(default=None, validation_alias="OVERSEER_WORKER_PATH")
    worker_default_model: str | None = Field(default=None, validation_alias="OVERSEER_DEFAULT_MODEL")
    output_streams_path: Path = Field(
        default=Path("./output_streams"), validation_alias="OVERSEER_OUTPUT_STREAMS_PATH"
    )
    reports_path: Path = Field(default=Path("./reports"), validation_alias="OVERSEER_REPORTS_PATH")
    plan_progress_path: Path = Field(
        default=Path("./plan_and_progress"), validation_alias="OVERSEER_PLAN_PROGRESS_PATH"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    profile_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("profiles"),), validation_alias="OVERSEER_PROFILE_PATHS"
    )
    log_level: str = Field(default="INFO", validation_alias="OVERSEER_LOG_LEVEL")
    permission_cache_ttl: float = Field(default=300.0, validation_alias="OVERSEER_PERMISSION_CACHE_TTL")
    validation_timeout: float = Field(default=900.0, validation_alias="OVERSEER_VALIDATION_TIMEOUT")
    development_timeout: float = Field(default=3600.0, validation_alias="OVERSEER_DEVELOPMENT_TIMEOUT")
    mcp_server_name: str = Field(default="overseer", validation_alias="OVERSEER_MCP_SERVER_NAME")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "OVERSEER_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
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
        raise TypeError("OVERSEER_PROFILE_PATHS must be a list of paths or a path-separated string")

    @field_validator("permission_cache_ttl")
    @classmethod
    def _validate_cache_ttl(cls, value: float) -> float:
        if value < 0:
            raise ValueError("OVERSEER_PERMISSION_CACHE_TTL must be >= 0")
        return value

    @field_validator("validation_timeout", "development_timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Worker timeouts must be positive")
        return value

    @field_validator("mcp_server_name")
    @classmethod
    def _validate_server_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("OVERSEER_MCP_SERVER_NAME must not be empty")
        return normalized

    def timeout_for(self, role_class: str) -> float:
        """Return the wall-clock budget for a worker role class."""

        if role_class == "validation":
            return self.validation_timeout
        return self.development_timeout


@lru_cache(maxsize=1)
def get_settings() -> OverseerSettings:
    """Return cached settings instance."""

    settings = OverseerSettings()
    settings.output_streams_path = settings.output_streams_path.expanduser().resolve()
    settings.reports_path = settings.reports_path.expanduser().resolve()
    settings.plan_progress_path = settings.plan_progress_path.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.profile_paths = tuple(path.expanduser().resolve() for path in settings.profile_paths)
    return settings


__all__ = ["OverseerSettings", "get_settings"]
