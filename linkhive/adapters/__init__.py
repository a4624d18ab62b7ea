"""Adapters for external systems: the Supabase remote store and its realtime channels."""
