"""Configuration module for the knowledge core."""

from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
