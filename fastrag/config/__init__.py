"""
Configuration Module.
"""

from fastrag.config.settings import (
    AppSettings,
    ConnectorSettings,
    Settings,
    load_settings,
)

__all__ = [
    "AppSettings",
    "ConnectorSettings",
    "Settings",
    "load_settings",
]
