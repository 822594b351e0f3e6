# file: signals/channel.py
"""
Listener channels.

A Channel is a named list of callbacks. Producers call `emit(...)`; each
subscriber is invoked in subscription order. A subscriber that raises is
logged and skipped, so a broken listener can never unwind the operation that
emitted the notification (e.g. a failure that is already live in the sim).

Usage
-----
changed = Channel("connection_changed")
unsubscribe = changed.subscribe(lambda up: print("sim up" if up else "sim down"))
changed.emit(True)
unsubscribe()
"""
from __future__ import annotations

import logging
from typing import Any, Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Channel:
    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener %r on channel %s failed", listener, self.name)

    def __len__(self) -> int:
        return len(self._listeners)

    def __repr__(self) -> str:
        return f"Channel({self.name!r}, listeners={len(self._listeners)})"
