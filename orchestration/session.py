# file: orchestration/session.py
"""
Live-session bookkeeping for the host: active failures, a rolling event log,
and the manual-trigger search.

SessionLog subscribes to an OrchestratorEvents bus:
- triggered -> add to active list (newest first), bump trigger count, log
- reset     -> drop that instance from the active list, log
- no_match  -> log the refunded Pick Your Poison input

Columns of to_dataframe():
    ["time", "kind", "text", "viewer", "failure_id", "instance_id"]
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from catalogue.models import ResolvedFailure
from orchestration.bus import OrchestratorEvents
from orchestration.triggered import TriggeredFailure
from simulator.client import ConnectivityError

if TYPE_CHECKING:
    import pandas as pd

    from orchestration.orchestrator import FailureOrchestrator

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 50


class LogKind(str, Enum):
    TRIGGERED = "triggered"
    REFUNDED = "refunded"
    RESET = "reset"


@dataclass
class LogEntry:
    text: str
    kind: LogKind
    viewer: Optional[str] = None
    failure_id: Optional[str] = None
    instance_id: Optional[str] = None
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionLog:
    def __init__(self, events: OrchestratorEvents, max_entries: int = MAX_LOG_ENTRIES) -> None:
        self.max_entries = max_entries
        self.active: List[TriggeredFailure] = []
        self.entries: List[LogEntry] = []
        self.trigger_count = 0
        self._unsubscribe = [
            events.triggered.subscribe(self.on_triggered),
            events.reset.subscribe(self.on_reset),
            events.no_match.subscribe(self.on_no_match),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    @property
    def last_event_text(self) -> Optional[str]:
        return self.entries[0].text if self.entries else None

    # -------------------------
    # Bus listeners
    # -------------------------
    def on_triggered(self, triggered: TriggeredFailure) -> None:
        self.active.insert(0, triggered)
        self.trigger_count += 1
        if triggered.was_pick_your_poison:
            text = f"{triggered.redeemed_by} - Pick Your Poison: {triggered.name}"
        else:
            text = f"{triggered.redeemed_by} - {triggered.tier_label or 'MANUAL'}: {triggered.name}"
        self._add(LogEntry(
            text=text,
            kind=LogKind.TRIGGERED,
            viewer=triggered.redeemed_by,
            failure_id=triggered.failure.id,
            instance_id=str(triggered.instance_id),
        ))

    def on_reset(self, triggered: TriggeredFailure) -> None:
        self.active = [a for a in self.active if a.instance_id != triggered.instance_id]
        self._add(LogEntry(
            text=f"Reset: {triggered.name}",
            kind=LogKind.RESET,
            failure_id=triggered.failure.id,
            instance_id=str(triggered.instance_id),
        ))

    def on_no_match(self, viewer_name: str, text: str) -> None:
        self._add(LogEntry(
            text=f'{viewer_name} - no match for "{text}" - refunded',
            kind=LogKind.REFUNDED,
            viewer=viewer_name,
        ))

    def _add(self, entry: LogEntry) -> None:
        self.entries.insert(0, entry)
        del self.entries[self.max_entries:]

    # -------------------------
    # Host actions
    # -------------------------
    async def reset_all(self, orchestrator: "FailureOrchestrator") -> int:
        """Reset every active failure; returns how many were reset. Unreachable ones stay active."""
        done = 0
        for triggered in list(self.active):
            try:
                await orchestrator.reset(triggered)
            except ConnectivityError as exc:
                logger.warning("Could not reset %s: %s", triggered.name, exc)
                continue
            done += 1
        return done

    @staticmethod
    def search(pool: List[ResolvedFailure], query: str, limit: int = 20) -> List[ResolvedFailure]:
        """Substring search over name and category for the manual trigger picker."""
        q = query.strip().lower()
        if not q:
            return []
        hits = [f for f in pool if q in f.name.lower() or q in f.category.lower()]
        return hits[:limit]

    # -------------------------
    # Export
    # -------------------------
    def to_dataframe(self) -> "pd.DataFrame":
        """Event log as a DataFrame, oldest first."""
        import pandas as pd

        rows = [
            {
                "time": e.time,
                "kind": e.kind.value,
                "text": e.text,
                "viewer": e.viewer,
                "failure_id": e.failure_id,
                "instance_id": e.instance_id,
            }
            for e in reversed(self.entries)
        ]
        return pd.DataFrame(rows, columns=["time", "kind", "text", "viewer", "failure_id", "instance_id"])
