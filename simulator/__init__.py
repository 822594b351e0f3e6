# file: simulator/__init__.py
"""
Simulator package: X-Plane REST client with a session-scoped dataref handle cache.
"""
from .client import (
    SimulatorClient,
    HandleCache,
    ConnectivityError,
    DatarefInfo,
)

__all__ = [
    "SimulatorClient",
    "HandleCache",
    "ConnectivityError",
    "DatarefInfo",
]
