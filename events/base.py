# file: events/base.py
"""
Event source interfaces and shared data structures.

The orchestrator depends on exactly four outbound operations of an event
source: fulfil, refund, announce_trigger and announce_no_match. Inbound
redemptions arrive as `Redemption` records and are routed by RedemptionRouter.

Contract
--------
- fulfil / refund are best-effort: a failed call only affects the remote
  redemption queue, never simulator state. Implementations should log and
  swallow their own errors; the orchestrator guards the calls as well.
- announcements are fire-and-forget and must silently do nothing when no chat
  channel is connected.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from orchestration.triggered import TriggeredFailure


class RefundReason(str, Enum):
    """Why a redemption was refunded; picks the wording of the announcement."""
    UNREACHABLE = "unreachable"
    NO_MATCH = "no_match"
    BLANK_INPUT = "blank_input"
    EMPTY_POOL = "empty_pool"


class Redemption(BaseModel):
    """One channel-point redemption as delivered by the event source."""
    redemption_id: str = Field(..., min_length=1)
    reward_id: str
    viewer_name: str
    user_input: str = ""


class EventSource(ABC):
    """
    Abstract event source (Twitch in production, fakes in tests).
    """

    @abstractmethod
    async def fulfil(self, reward_id: str, redemption_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def refund(self, reward_id: str, redemption_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def announce_trigger(self, triggered: "TriggeredFailure") -> None:
        raise NotImplementedError

    @abstractmethod
    async def announce_no_match(
        self,
        viewer_name: str,
        text: str,
        reason: RefundReason = RefundReason.NO_MATCH,
    ) -> None:
        """
        Announce a refund. `text` is the viewer's input for NO_MATCH/BLANK_INPUT,
        the chosen failure's name for UNREACHABLE, and the tier label for EMPTY_POOL.
        """
        raise NotImplementedError
