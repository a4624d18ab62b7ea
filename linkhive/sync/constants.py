"""Constants for the sync engine."""

DEFAULT_THROTTLE_WINDOW_SECONDS = 30.0
DEFAULT_DEBOUNCE_WINDOW_SECONDS = 2.0
DEFAULT_REMOTE_TIMEOUT_SECONDS = 15.0
