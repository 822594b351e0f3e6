# file: orchestration/orchestrator.py
"""
Failure orchestrator: ties redemptions from the event source to simulator writes.

Responsibilities
----------------
- Tier redemptions: pick uniformly at random from the tier's pool.
- Pick Your Poison: resolve the viewer's free text with fuzzy_match over every
  triggerable failure (not tier-scoped).
- Drive SimulatorClient.apply / revert.
- Fulfil or refund the redemption and announce the outcome.
- Emit triggered / reset / no_match notifications on the OrchestratorEvents bus.

Outcome table
-------------
tier, empty pool            -> refund + announce(EMPTY_POOL); simulator not contacted
tier/PYP, simulator error   -> refund + announce(UNREACHABLE, failure name); no re-roll
PYP, blank input            -> refund + announce(BLANK_INPUT) + no_match
PYP, nothing matched        -> refund + announce(NO_MATCH) + no_match
success                     -> fulfil + announce trigger + triggered

A refund is terminal for its redemption. Nothing is retried.

Concurrency
-----------
Every redemption is its own task. Applies and reverts of the same failure id
are serialized by a per-failure asyncio.Lock so their action sequences never
interleave. A TriggeredFailure exists only once its apply finished, so a reset
can never target an instance whose trigger is still in flight.
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections import defaultdict
from typing import Dict, List, Optional

from catalogue.models import ResolvedFailure, Tier
from catalogue.store import CatalogueStore
from config.settings import RewardIds
from events.base import EventSource, RefundReason
from orchestration.bus import OrchestratorEvents
from orchestration.matching import fuzzy_match
from orchestration.triggered import TriggeredFailure
from simulator.client import ConnectivityError, SimulatorClient

logger = logging.getLogger(__name__)


class FailureOrchestrator:
    """
    Public API:
        - on_tier_redeemed(tier, viewer_name, redemption_id)
        - on_pick_your_poison_redeemed(free_text, viewer_name, redemption_id)
        - trigger(failure, triggered_by="Host") -> bool      # manual, no event source
        - reset(triggered)
        - triggerable_failures()
        - update_settings(reward_ids)
    """

    def __init__(
        self,
        catalogue: CatalogueStore,
        simulator: SimulatorClient,
        source: EventSource,
        reward_ids: Optional[RewardIds] = None,
        events: Optional[OrchestratorEvents] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.catalogue = catalogue
        self.simulator = simulator
        self.source = source
        self.reward_ids = reward_ids or RewardIds()
        self.events = events or OrchestratorEvents()
        self.rng = random.Random(seed)
        self._failure_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def update_settings(self, reward_ids: RewardIds) -> None:
        self.reward_ids = reward_ids

    def triggerable_failures(self) -> List[ResolvedFailure]:
        return self.catalogue.triggerable

    # -------------------------
    # Redemption handlers
    # -------------------------
    async def on_tier_redeemed(self, tier: Tier, viewer_name: str, redemption_id: str) -> Optional[TriggeredFailure]:
        reward_id = self.reward_ids.for_tier(tier)
        pool = self.catalogue.for_tier(tier)

        if not pool:
            logger.info("No triggerable %s failures; refunding %s for %s", tier.value, redemption_id, viewer_name)
            await self._refund(reward_id, redemption_id)
            await self._announce_no_match(viewer_name, tier.label, RefundReason.EMPTY_POOL)
            return None

        failure = self.rng.choice(pool)
        return await self._fire(failure, viewer_name, reward_id, redemption_id, pick_your_poison=False)

    async def on_pick_your_poison_redeemed(
        self, free_text: str, viewer_name: str, redemption_id: str
    ) -> Optional[TriggeredFailure]:
        reward_id = self.reward_ids.pick_your_poison or None
        text = (free_text or "").strip()

        if not text:
            await self._refund_pick_your_poison(viewer_name, text, reward_id, redemption_id, RefundReason.BLANK_INPUT)
            return None

        match = fuzzy_match(text, self.catalogue.triggerable)
        if match is None:
            logger.info("Pick Your Poison %r from %s matched nothing", text, viewer_name)
            await self._refund_pick_your_poison(viewer_name, text, reward_id, redemption_id, RefundReason.NO_MATCH)
            return None

        logger.info("Pick Your Poison %r from %s -> %s", text, viewer_name, match.name)
        return await self._fire(match, viewer_name, reward_id, redemption_id, pick_your_poison=True)

    async def _fire(
        self,
        failure: ResolvedFailure,
        viewer_name: str,
        reward_id: Optional[str],
        redemption_id: str,
        pick_your_poison: bool,
    ) -> Optional[TriggeredFailure]:
        try:
            await self._apply(failure)
        except ConnectivityError as exc:
            logger.warning("Simulator unreachable triggering %s for %s: %s", failure.name, viewer_name, exc)
            await self._refund(reward_id, redemption_id)
            await self._announce_no_match(viewer_name, failure.name, RefundReason.UNREACHABLE)
            return None

        triggered = TriggeredFailure(failure=failure, redeemed_by=viewer_name, was_pick_your_poison=pick_your_poison)
        logger.info("Triggered %s (%s) for %s", failure.name, triggered.instance_id, viewer_name)
        await self._fulfil(reward_id, redemption_id)
        await self._announce_trigger(triggered)
        self.events.triggered.emit(triggered)
        return triggered

    async def _refund_pick_your_poison(
        self,
        viewer_name: str,
        text: str,
        reward_id: Optional[str],
        redemption_id: str,
        reason: RefundReason,
    ) -> None:
        await self._refund(reward_id, redemption_id)
        await self._announce_no_match(viewer_name, text, reason)
        self.events.no_match.emit(viewer_name, text)

    # -------------------------
    # Host controls
    # -------------------------
    async def trigger(self, failure: ResolvedFailure, triggered_by: str = "Host") -> bool:
        """Manual trigger. Never touches the event source; reports failure as False."""
        try:
            await self._apply(failure)
        except ConnectivityError as exc:
            logger.warning("Manual trigger of %s failed: %s", failure.name, exc)
            return False

        triggered = TriggeredFailure(failure=failure, redeemed_by=triggered_by, was_pick_your_poison=False)
        logger.info("Manually triggered %s (%s) by %s", failure.name, triggered.instance_id, triggered_by)
        self.events.triggered.emit(triggered)
        return True

    async def reset(self, triggered: TriggeredFailure) -> None:
        """Write zero to every action of the failure. Raises ConnectivityError; the instance stays active then."""
        async with self._failure_locks[triggered.failure.id]:
            if not triggered.is_active:
                logger.debug("Instance %s already reset", triggered.instance_id)
                return
            await self.simulator.revert(triggered.failure)
            triggered.is_active = False
        logger.info("Reset %s (%s)", triggered.name, triggered.instance_id)
        self.events.reset.emit(triggered)

    # -------------------------
    # Helpers
    # -------------------------
    async def _apply(self, failure: ResolvedFailure) -> None:
        async with self._failure_locks[failure.id]:
            await self.simulator.apply(failure)

    async def _fulfil(self, reward_id: Optional[str], redemption_id: str) -> None:
        if not reward_id:
            logger.debug("No reward id configured; not fulfilling %s", redemption_id)
            return
        try:
            await self.source.fulfil(reward_id, redemption_id)
        except Exception:
            logger.warning("Fulfil of redemption %s failed", redemption_id, exc_info=True)

    async def _refund(self, reward_id: Optional[str], redemption_id: str) -> None:
        if not reward_id:
            logger.debug("No reward id configured; not refunding %s", redemption_id)
            return
        try:
            await self.source.refund(reward_id, redemption_id)
        except Exception:
            logger.warning("Refund of redemption %s failed", redemption_id, exc_info=True)

    async def _announce_trigger(self, triggered: TriggeredFailure) -> None:
        try:
            await self.source.announce_trigger(triggered)
        except Exception:
            logger.warning("Trigger announcement for %s failed", triggered.name, exc_info=True)

    async def _announce_no_match(self, viewer_name: str, text: str, reason: RefundReason) -> None:
        try:
            await self.source.announce_no_match(viewer_name, text, reason)
        except Exception:
            logger.warning("Refund announcement (%s) for %s failed", reason.value, viewer_name, exc_info=True)
