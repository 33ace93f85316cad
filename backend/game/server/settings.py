"""Sync server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class SyncServerSettings(BaseSettings):
    model_config = {"env_prefix": "SYNC_"}

    string_list_fields: ClassVar[frozenset[str]] = frozenset({"cors_origins"})

    log_dir: str = Field(default="backend/logs/sync", min_length=1)
    cors_origins: list[str] = ["http://localhost:5173"]
    # Documents are restored from and saved to this file when set.
    snapshot_path: str | None = None
    session_ttl_seconds: int = Field(default=3600, ge=60)
    terminated_ttl_seconds: int = Field(default=600, ge=60)
    reaper_interval_seconds: float = Field(default=60, gt=0)
    max_decode_errors: int = Field(default=5, ge=1)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    @model_validator(mode="after")
    def _terminated_outlived_by_sessions(self) -> Self:
        if self.terminated_ttl_seconds > self.session_ttl_seconds:
            raise ValueError("terminated_ttl_seconds must not exceed session_ttl_seconds")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
