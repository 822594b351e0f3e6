# file: config/__init__.py
"""
Configuration: typed settings sections and JSON load/save.
"""
from .settings import (
    AppSettings,
    TwitchSettings,
    SimulatorSettings,
    RewardIds,
    load_settings,
    save_settings,
)

__all__ = [
    "AppSettings",
    "TwitchSettings",
    "SimulatorSettings",
    "RewardIds",
    "load_settings",
    "save_settings",
]
