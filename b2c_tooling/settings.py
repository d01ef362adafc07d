"""Environment-backed settings.

Three groups, one prefix each: instance connection (``SFCC_``), watch timing
(``SFCC_UPLOAD_``) and logging (``SFCC_LOG_``). Keyword arguments win over the
environment.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_ACCOUNT_MANAGER_HOST = "account.demandware.com"

LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "silent")


class InstanceSettings(BaseSettings):
    """Connection and credential settings for a B2C instance."""

    model_config = SettingsConfigDict(env_prefix="SFCC_", extra="ignore")

    server: str | None = None
    webdav_server: str | None = None
    code_version: str | None = None
    username: str | None = None
    password: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    oauth_scopes: Annotated[list[str] | None, NoDecode] = None
    account_manager_host: str = DEFAULT_ACCOUNT_MANAGER_HOST

    @field_validator("oauth_scopes", mode="before")
    @classmethod
    def split_scopes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [scope for scope in value.replace(",", " ").split() if scope]
        return value


class WatchSettings(BaseSettings):
    """Timing settings for the cartridge watch pipeline."""

    model_config = SettingsConfigDict(env_prefix="SFCC_UPLOAD_", extra="ignore")

    debounce_time: int = Field(default=100, description="Milliseconds")
    error_cooldown: int = Field(default=5000, description="Milliseconds")

    @field_validator("debounce_time")
    @classmethod
    def validate_debounce_time(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("debounce_time must be positive")
        return value

    @field_validator("error_cooldown")
    @classmethod
    def validate_error_cooldown(cls, value: int) -> int:
        if value < 0:
            raise ValueError("error_cooldown must be >= 0")
        return value


class LoggingSettings(BaseSettings):
    """Log level and destination."""

    model_config = SettingsConfigDict(env_prefix="SFCC_LOG_", extra="ignore")

    level: str = "silent"
    to_stdout: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized == "warning":
            normalized = "warn"
        if normalized not in LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}")
        return normalized
