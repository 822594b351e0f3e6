# file: events/router.py
"""
Inbound redemption routing.

Maps a redemption's reward id to a tier reward or the Pick Your Poison reward
and hands it to the orchestrator. Redemptions for rewards this app does not own
are ignored without any error; they belong to other channel rewards.

`submit()` runs every redemption as its own asyncio task, so two viewers
redeeming at once are handled independently with no ordering between them.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Set

from config.settings import RewardIds
from events.base import Redemption

if TYPE_CHECKING:
    from orchestration.orchestrator import FailureOrchestrator

logger = logging.getLogger(__name__)


class RedemptionRouter:
    def __init__(self, orchestrator: "FailureOrchestrator", reward_ids: RewardIds) -> None:
        self.orchestrator = orchestrator
        self.reward_ids = reward_ids
        self._tasks: Set[asyncio.Task] = set()

    def update_settings(self, reward_ids: RewardIds) -> None:
        self.reward_ids = reward_ids

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def handle(self, redemption: Redemption) -> None:
        if self.reward_ids.is_pick_your_poison(redemption.reward_id):
            await self.orchestrator.on_pick_your_poison_redeemed(
                redemption.user_input, redemption.viewer_name, redemption.redemption_id
            )
            return

        tier = self.reward_ids.tier_for_reward(redemption.reward_id)
        if tier is None:
            logger.debug("Ignoring redemption %s for unmanaged reward %s", redemption.redemption_id, redemption.reward_id)
            return
        await self.orchestrator.on_tier_redeemed(tier, redemption.viewer_name, redemption.redemption_id)

    def submit(self, redemption: Redemption) -> asyncio.Task:
        task = asyncio.create_task(self.handle(redemption), name=f"redemption:{redemption.redemption_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Redemption task %s crashed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait for every in-flight redemption to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
