from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class SyncEngineConfig(BaseModel):
    """Offline-first sync engine tuning (throttle, debounce, timeouts, cache location)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    throttle_window_sec: float = Field(
        default=30.0,
        validation_alias="SYNC_THROTTLE_WINDOW_SEC",
        description="Minimum spacing between two automatic full synchronizations",
    )
    debounce_window_sec: float = Field(
        default=2.0,
        validation_alias="SYNC_DEBOUNCE_WINDOW_SEC",
        description="Quiet period applied to a burst of change notifications",
    )
    links_throttle_window_sec: float | None = Field(
        default=None, validation_alias="SYNC_LINKS_THROTTLE_WINDOW_SEC"
    )
    links_debounce_window_sec: float | None = Field(
        default=None, validation_alias="SYNC_LINKS_DEBOUNCE_WINDOW_SEC"
    )
    collections_throttle_window_sec: float | None = Field(
        default=None, validation_alias="SYNC_COLLECTIONS_THROTTLE_WINDOW_SEC"
    )
    collections_debounce_window_sec: float | None = Field(
        default=None, validation_alias="SYNC_COLLECTIONS_DEBOUNCE_WINDOW_SEC"
    )
    remote_timeout_sec: float = Field(
        default=15.0,
        validation_alias="SYNC_REMOTE_TIMEOUT_SEC",
        description="Timeout applied to every remote call; expiry counts as a network error",
    )
    cache_db_path: str = Field(
        default="/data/linkhive_cache.db", validation_alias="SYNC_CACHE_DB_PATH"
    )

    @field_validator("throttle_window_sec", "debounce_window_sec", mode="before")
    @classmethod
    def _validate_window(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid number"
            raise ValueError(msg) from exc
        if parsed < 0 or parsed > 3600:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be between 0 and 3600"
            raise ValueError(msg)
        return parsed

    @field_validator(
        "links_throttle_window_sec",
        "links_debounce_window_sec",
        "collections_throttle_window_sec",
        "collections_debounce_window_sec",
        mode="before",
    )
    @classmethod
    def _validate_override(cls, value: Any, info: ValidationInfo) -> float | None:
        if value in (None, ""):
            return None
        try:
            parsed = float(str(value))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid number"
            raise ValueError(msg) from exc
        if parsed < 0 or parsed > 3600:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be between 0 and 3600"
            raise ValueError(msg)
        return parsed

    @field_validator("remote_timeout_sec", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        try:
            timeout = float(str(value if value not in (None, "") else 15.0))
        except ValueError as exc:
            msg = "Remote timeout must be a valid number"
            raise ValueError(msg) from exc
        if timeout <= 0:
            msg = "Remote timeout must be positive"
            raise ValueError(msg)
        if timeout > 600:
            msg = "Remote timeout too large (max 600 seconds)"
            raise ValueError(msg)
        return timeout

    @field_validator("cache_db_path", mode="before")
    @classmethod
    def _validate_cache_path(cls, value: Any) -> str:
        path = str(value or "/data/linkhive_cache.db").strip()
        if "\x00" in path:
            msg = "Cache DB path contains invalid characters"
            raise ValueError(msg)
        return path or "/data/linkhive_cache.db"

    def throttle_window_for(self, entity_kind: str) -> float:
        override = getattr(self, f"{entity_kind}_throttle_window_sec", None)
        return self.throttle_window_sec if override is None else override

    def debounce_window_for(self, entity_kind: str) -> float:
        override = getattr(self, f"{entity_kind}_debounce_window_sec", None)
        return self.debounce_window_sec if override is None else override
