"""Configuration module for backend services."""

from multilang.config.settings import (
    HaravanConfig,
    QuotaConfig,
    Settings,
    WorkerConfig,
    get_settings,
)

__all__ = [
    "HaravanConfig",
    "QuotaConfig",
    "Settings",
    "WorkerConfig",
    "get_settings",
]
