from __future__ import annotations

from .remote import SupabaseConfig
from .settings import AppConfig, RuntimeConfig, Settings, load_config
from .sync import SyncEngineConfig

__all__ = [
    "AppConfig",
    "RuntimeConfig",
    "Settings",
    "SupabaseConfig",
    "SyncEngineConfig",
    "load_config",
]
