from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

logger = logging.getLogger(__name__)


class SupabaseConfig(BaseModel):
    """Hosted backend (Supabase PostgREST) connection settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(default="", validation_alias="SUPABASE_URL")
    anon_key: str = Field(default="", validation_alias="SUPABASE_ANON_KEY")
    request_timeout_sec: float = Field(default=30.0, validation_alias="SUPABASE_TIMEOUT_SEC")
    max_retries: int = Field(default=2, validation_alias="SUPABASE_MAX_RETRIES")
    retry_base_delay_sec: float = Field(default=0.5, validation_alias="SUPABASE_RETRY_BASE_DELAY")
    retry_max_delay_sec: float = Field(default=8.0, validation_alias="SUPABASE_RETRY_MAX_DELAY")

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.anon_key)

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str:
        url = str(value or "").strip()
        if not url:
            return ""
        if not url.startswith(("http://", "https://")):
            msg = "SUPABASE_URL must start with http:// or https://"
            raise ValueError(msg)
        if len(url) > 500:
            msg = "SUPABASE_URL appears too long"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator("anon_key", mode="before")
    @classmethod
    def _validate_key(cls, value: Any) -> str:
        key = str(value or "").strip()
        if any(char in key for char in (" ", "\n", "\t")):
            msg = "Supabase key contains invalid characters"
            raise ValueError(msg)
        if key and "placeholder" in key.lower():
            logger.warning("supabase_placeholder_key_configured")
        return key

    @field_validator("max_retries", mode="before")
    @classmethod
    def _validate_retries(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 2))
        except ValueError as exc:
            msg = "Supabase max retries must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 0 or parsed > 10:
            msg = "Supabase max retries must be between 0 and 10"
            raise ValueError(msg)
        return parsed

    @field_validator(
        "request_timeout_sec", "retry_base_delay_sec", "retry_max_delay_sec", mode="before"
    )
    @classmethod
    def _validate_positive_float(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0:
            msg = f"{info.field_name.replace('_', ' ').capitalize()} must be positive"
            raise ValueError(msg)
        return parsed
