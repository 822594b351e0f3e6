# file: orchestration/bus.py
"""
Outbound notification channels of the orchestrator.

Constructed up front and handed to FailureOrchestrator, so listeners can
subscribe before or after the orchestrator exists without any wiring order.

Channels
--------
triggered(TriggeredFailure)
reset(TriggeredFailure)
no_match(viewer_name: str, text: str)   # Pick Your Poison refunded for blank/no-match input
"""
from __future__ import annotations

from signals import Channel


class OrchestratorEvents:
    def __init__(self) -> None:
        self.triggered = Channel("triggered")
        self.reset = Channel("reset")
        self.no_match = Channel("pick_your_poison_no_match")
