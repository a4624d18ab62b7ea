from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .remote import SupabaseConfig
from .sync import SyncEngineConfig

if TYPE_CHECKING:
    from collections.abc import Mapping

    from pydantic.fields import FieldInfo

logger = logging.getLogger(__name__)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    use_loguru: bool = Field(default=True, validation_alias="LOG_USE_LOGURU")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: Any) -> str:
        level = str(value or "INFO").strip().upper()
        if level not in _LOG_LEVELS:
            msg = f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, got {value!r}"
            raise ValueError(msg)
        return level

    @field_validator("log_file", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> str | None:
        return (str(value).strip() or None) if value is not None else None


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    sync: SyncEngineConfig
    supabase: SupabaseConfig


class FlatEnvSectionSource(PydanticBaseSettingsSource):
    """Read flat variables such as ``SYNC_THROTTLE_WINDOW_SEC`` into their section.

    Each section field declares its variable name as ``validation_alias``;
    values are emitted under the field name so explicit overrides merge on top.
    """

    def __init__(
        self, settings_cls: type[BaseSettings], environ: Mapping[str, str] | None = None
    ) -> None:
        super().__init__(settings_cls)
        self._environ = os.environ if environ is None else environ

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        section = field.annotation
        if not (isinstance(section, type) and issubclass(section, BaseModel)):
            return None, field_name, False
        values = {
            name: self._environ[alias]
            for name, section_field in section.model_fields.items()
            if isinstance(alias := section_field.validation_alias, str) and alias in self._environ
        }
        return (values or None), field_name, True

    def __call__(self) -> dict[str, Any]:
        sections: dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            values, _, _ = self.get_field_value(field, field_name)
            if values:
                sections[field_name] = values
        return sections


class Settings(BaseSettings):
    """All configuration sections, read from the process environment."""

    model_config = SettingsConfigDict(extra="ignore", case_sensitive=True)

    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    sync: SyncEngineConfig = Field(default_factory=SyncEngineConfig)
    supabase: SupabaseConfig = Field(default_factory=SupabaseConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Constructor sections first so they win field by field
        return (init_settings, FlatEnvSectionSource(settings_cls))

    def as_app_config(self) -> AppConfig:
        return AppConfig(runtime=self.runtime, sync=self.sync, supabase=self.supabase)


def load_config(**overrides: Any) -> AppConfig:
    """Build the frozen application config.

    Args:
        **overrides: Per-section dicts keyed by field name, e.g. ``sync={...}``.

    Raises:
        RuntimeError: If any section fails validation.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        msg = f"Configuration validation failed: {exc}"
        raise RuntimeError(msg) from exc

    if not settings.supabase.enabled:
        logger.warning("supabase_not_configured", extra={"has_url": bool(settings.supabase.url)})
    logger.debug(
        "config_loaded",
        extra={
            "throttle_window": settings.sync.throttle_window_sec,
            "debounce_window": settings.sync.debounce_window_sec,
            "log_level": settings.runtime.log_level,
        },
    )
    return settings.as_app_config()
