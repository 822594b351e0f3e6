# file: signals/__init__.py
"""
Listener channels used for trigger/reset/no-match and connection-state notifications.
"""
from .channel import Channel

__all__ = ["Channel"]
