# file: orchestration/triggered.py
"""
Runtime record of one firing of a failure. Never persisted.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from catalogue.models import ResolvedFailure, Tier


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class TriggeredFailure:
    """
    One trigger instance. `instance_id` is distinct from the failure id: the same
    failure may be active several times at once if it was triggered twice.
    Identity (==, hash) is the instance, not the field values.
    """
    failure: ResolvedFailure
    redeemed_by: str
    was_pick_your_poison: bool = False
    instance_id: uuid.UUID = field(default_factory=uuid.uuid4)
    triggered_at: datetime = field(default_factory=_utcnow)
    is_active: bool = True

    @property
    def name(self) -> str:
        return self.failure.name

    @property
    def description(self) -> str:
        return self.failure.description

    @property
    def tier(self) -> Optional[Tier]:
        return self.failure.effective_tier

    @property
    def tier_label(self) -> str:
        return self.tier.label if self.tier is not None else ""

    @property
    def formatted_time(self) -> str:
        return self.triggered_at.astimezone().strftime("%H:%M:%S")

    def summary(self) -> str:
        if self.was_pick_your_poison:
            return f"{self.formatted_time}  {self.redeemed_by} -> {self.name}  [Pick Your Poison]"
        return f"{self.formatted_time}  {self.tier_label}  {self.redeemed_by} -> {self.name}"
