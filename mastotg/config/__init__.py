"""Configuration module for the Mastodon to Telegram forwarder."""

from .settings import ConfigurationError, Settings, settings, get_settings, normalize_channel

__all__ = [
    "ConfigurationError",
    "Settings",
    "settings",
    "get_settings",
    "normalize_channel"
]
