# file: catalogue/models.py
"""
Failure catalogue data model.

Three layers of records:
- CatalogueEntry: one row of the shipped, read-only FailureCatalogue.json.
- ConfigEntry: the user's opt-in for a failure (enabled flag + assigned tier),
  stored in FailureConfig.json.
- ResolvedFailure: the merge of both, recomputed every time the config is saved.
  This is what the orchestrator and the simulator client work with.

Pooling rule
------------
A failure is triggerable only if it is enabled AND has an assigned tier. The
catalogue's suggested tier is a display hint and never places a failure in a pool.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Tier(str, Enum):
    MINOR = "Minor"
    MODERATE = "Moderate"
    SEVERE = "Severe"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Tier"]:
        # Accept "minor", "SEVERE", ... from hand-edited JSON.
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return None

    @property
    def label(self) -> str:
        return self.value.upper()


# =========================
# Tier assignment variant
# =========================

class AssignmentKind(str, Enum):
    UNASSIGNED = "unassigned"
    SUGGESTED = "suggested"
    ASSIGNED = "assigned"


@dataclass(frozen=True)
class TierAssignment:
    """
    Where a failure's displayed tier comes from.

    Unassigned  -> neither the user nor the catalogue has an opinion.
    Suggested   -> catalogue hint only; the failure is not in any pool.
    Assigned    -> user choice; the failure pools under this tier when enabled.
    """
    kind: AssignmentKind
    tier: Optional[Tier] = None

    def __post_init__(self) -> None:
        if (self.kind == AssignmentKind.UNASSIGNED) != (self.tier is None):
            raise ValueError(f"{self.kind.value} assignment with tier={self.tier!r}")

    @classmethod
    def unassigned(cls) -> "TierAssignment":
        return cls(AssignmentKind.UNASSIGNED)

    @classmethod
    def suggested(cls, tier: Tier) -> "TierAssignment":
        return cls(AssignmentKind.SUGGESTED, tier)

    @classmethod
    def assigned(cls, tier: Tier) -> "TierAssignment":
        return cls(AssignmentKind.ASSIGNED, tier)

    @property
    def is_assigned(self) -> bool:
        return self.kind == AssignmentKind.ASSIGNED


def _coerce_tier(v: object) -> object:
    if isinstance(v, str):
        if not v.strip():
            return None
        return Tier(v)
    return v


# =========================
# Catalogue (read-only)
# =========================

class DatarefAction(BaseModel):
    """A single dataref write performed when a failure triggers."""
    model_config = ConfigDict(frozen=True)

    dataref: str = Field(..., min_length=1, description="Symbolic simulator path.")
    value: int = Field(1, description="Value written on trigger; reset writes 0.")


class CatalogueEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    category: str = ""
    suggested_tier: Optional[Tier] = Field(None, alias="suggestedTier")
    actions: Tuple[DatarefAction, ...] = ()

    @field_validator("suggested_tier", mode="before")
    @classmethod
    def _parse_tier(cls, v: object) -> object:
        return _coerce_tier(v)


# =========================
# User configuration
# =========================

class ConfigEntry(BaseModel):
    """User opt-in for one catalogue failure. `id` must match a CatalogueEntry.id."""
    id: str = Field(..., min_length=1)
    enabled: bool = False
    tier: Optional[Tier] = None

    @field_validator("id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        return v.strip()

    @field_validator("tier", mode="before")
    @classmethod
    def _parse_tier(cls, v: object) -> object:
        return _coerce_tier(v)


# =========================
# Resolved (merged) failure
# =========================

@dataclass(frozen=True)
class ResolvedFailure:
    id: str
    name: str
    description: str
    category: str
    suggested_tier: Optional[Tier]
    actions: Tuple[DatarefAction, ...]
    enabled: bool = False
    assigned_tier: Optional[Tier] = None

    @classmethod
    def merge(cls, entry: CatalogueEntry, config: Optional[ConfigEntry]) -> "ResolvedFailure":
        return cls(
            id=entry.id,
            name=entry.name,
            description=entry.description,
            category=entry.category,
            suggested_tier=entry.suggested_tier,
            actions=entry.actions,
            enabled=config.enabled if config is not None else False,
            assigned_tier=config.tier if config is not None else None,
        )

    @property
    def effective_tier(self) -> Optional[Tier]:
        return self.assigned_tier

    @property
    def is_triggerable(self) -> bool:
        return self.enabled and self.assigned_tier is not None

    @property
    def tier_assignment(self) -> TierAssignment:
        if self.assigned_tier is not None:
            return TierAssignment.assigned(self.assigned_tier)
        if self.suggested_tier is not None:
            return TierAssignment.suggested(self.suggested_tier)
        return TierAssignment.unassigned()

    @property
    def display_tier(self) -> Optional[Tier]:
        return self.tier_assignment.tier
