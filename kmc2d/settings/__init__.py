"""Settings module for configuration management."""

from .config import (
    KMCConfig,
    LatticeConfig,
    LogConfig,
    PathConfig,
    Settings,
    settings,
)

__all__ = [
    "settings",
    "Settings",
    "LogConfig",
    "KMCConfig",
    "LatticeConfig",
    "PathConfig",
]
