"""Configuration module."""

from config.settings import settings, Settings, BatchPolicy

__all__ = [
    "settings",
    "Settings",
    "BatchPolicy",
]
