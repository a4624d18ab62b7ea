"""Supabase remote store adapter."""

from linkhive.adapters.remote.client import SupabaseRemoteStore, error_kind_for_status
from linkhive.adapters.remote.realtime import (
    ChannelSubscription,
    RealtimeChannelRegistry,
    RemoteEventKind,
)

__all__ = [
    "ChannelSubscription",
    "RealtimeChannelRegistry",
    "RemoteEventKind",
    "SupabaseRemoteStore",
    "error_kind_for_status",
]
