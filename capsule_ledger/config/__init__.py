"""
Configuration management for Capsule Ledger.

Loads settings from environment variables and an optional .env file.
Exposes a single source of truth for all service configuration.
"""

from capsule_ledger.config.settings import Settings, get_settings, reset_settings_cache  # noqa: F401

__all__ = ["Settings", "get_settings", "reset_settings_cache"]
