# file: orchestration/__init__.py
"""
Orchestration layer: redemption handling, fuzzy matching, notifications and the session log.
"""
from .orchestrator import FailureOrchestrator
from .bus import OrchestratorEvents
from .matching import fuzzy_match, FUZZY_THRESHOLD
from .triggered import TriggeredFailure
from .session import SessionLog

__all__ = [
    "FailureOrchestrator",
    "OrchestratorEvents",
    "fuzzy_match",
    "FUZZY_THRESHOLD",
    "TriggeredFailure",
    "SessionLog",
]
