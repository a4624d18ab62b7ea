"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from linkhive.config import SupabaseConfig, SyncEngineConfig, load_config


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in (
        "SYNC_THROTTLE_WINDOW_SEC",
        "SYNC_DEBOUNCE_WINDOW_SEC",
        "SYNC_LINKS_THROTTLE_WINDOW_SEC",
        "SYNC_REMOTE_TIMEOUT_SEC",
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_config()

    assert config.sync.throttle_window_sec == 30.0
    assert config.sync.debounce_window_sec == 2.0
    assert config.sync.remote_timeout_sec == 15.0
    assert config.runtime.log_level == "INFO"
    assert config.supabase.enabled is False


def test_values_are_read_from_environment(monkeypatch):
    monkeypatch.setenv("SYNC_THROTTLE_WINDOW_SEC", "10")
    monkeypatch.setenv("SYNC_DEBOUNCE_WINDOW_SEC", "0.5")
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = load_config()

    assert config.sync.throttle_window_sec == 10.0
    assert config.sync.debounce_window_sec == 0.5
    assert config.supabase.url == "https://project.supabase.co"
    assert config.supabase.enabled is True
    assert config.runtime.log_level == "DEBUG"


def test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("SYNC_THROTTLE_WINDOW_SEC", "10")

    config = load_config(sync={"throttle_window_sec": 45})

    assert config.sync.throttle_window_sec == 45.0


def test_per_kind_override_falls_back_to_shared_window(monkeypatch):
    monkeypatch.setenv("SYNC_LINKS_THROTTLE_WINDOW_SEC", "5")

    config = load_config()

    assert config.sync.throttle_window_for("links") == 5.0
    assert config.sync.throttle_window_for("collections") == 30.0
    assert config.sync.debounce_window_for("links") == 2.0


def test_invalid_value_raises_runtime_error(monkeypatch):
    monkeypatch.setenv("SYNC_REMOTE_TIMEOUT_SEC", "soon")

    with pytest.raises(RuntimeError, match="Configuration validation failed"):
        load_config()


@pytest.mark.parametrize("value", ["-1", "7200"])
def test_window_out_of_range_is_rejected(value):
    with pytest.raises(ValueError):
        SyncEngineConfig(throttle_window_sec=value)


def test_supabase_url_requires_scheme():
    with pytest.raises(ValueError):
        SupabaseConfig(url="project.supabase.co")


def test_flat_env_source_groups_variables_by_section():
    from linkhive.config.settings import FlatEnvSectionSource, Settings

    source = FlatEnvSectionSource(
        Settings, {"SYNC_THROTTLE_WINDOW_SEC": "3", "LOG_FILE": "/tmp/x.log", "UNRELATED": "1"}
    )

    assert source() == {
        "sync": {"throttle_window_sec": "3"},
        "runtime": {"log_file": "/tmp/x.log"},
    }
