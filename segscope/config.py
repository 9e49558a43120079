from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from segscope import __version__


class Settings(BaseSettings):
    """Application configuration loaded from environment variables or .env files."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_prefix="SEGSCOPE_",
        populate_by_name=True,
    )

    work_dir: Path | None = None
    log_dir: Path = Path("./audit-logs")
    audit_enabled: bool = True
    min_index_major: int = 7
    max_index_major: int = 10
    app_version: str = Field(
        default=__version__,
        validation_alias=AliasChoices("SEGSCOPE_APP_VERSION", "APP_VERSION"),
    )
    git_sha: str = Field(
        default="unknown",
        validation_alias=AliasChoices("SEGSCOPE_GIT_SHA", "GIT_SHA"),
    )

    @field_validator("log_dir", mode="after")
    @classmethod
    def ensure_directory(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("work_dir", mode="after")
    @classmethod
    def ensure_work_dir(cls, value: Path | None) -> Path | None:
        if value is not None:
            value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("app_version", "git_sha", mode="before")
    @classmethod
    def blank_as_unknown(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return "unknown"
        return value

    @field_validator("min_index_major")
    @classmethod
    def validate_min_major(cls, value: int) -> int:
        if value <= 0:
            msg = "min_index_major must be positive"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_major_range(self) -> Settings:
        if self.max_index_major < self.min_index_major:
            msg = "max_index_major must not be lower than min_index_major"
            raise ValueError(msg)
        return self


settings = Settings()


__all__ = ["Settings", "settings"]
