# file: catalogue/__init__.py
"""
Catalogue package: failure definitions, user configuration, and the merged lookup store.
"""
from .models import (
    Tier,
    TierAssignment,
    AssignmentKind,
    DatarefAction,
    CatalogueEntry,
    ConfigEntry,
    ResolvedFailure,
)
from .store import (
    CatalogueStore,
    CatalogueLoadError,
    FailureConfigStore,
)

__all__ = [
    "Tier",
    "TierAssignment",
    "AssignmentKind",
    "DatarefAction",
    "CatalogueEntry",
    "ConfigEntry",
    "ResolvedFailure",
    "CatalogueStore",
    "CatalogueLoadError",
    "FailureConfigStore",
]
