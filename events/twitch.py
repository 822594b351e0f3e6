# file: events/twitch.py
"""
Twitch event source over the Helix REST API.

Endpoints
---------
- GET   https://id.twitch.tv/oauth2/validate                        (connect: token check)
- GET/DELETE/POST helix/eventsub/subscriptions                      (redemption subscription)
- PATCH helix/channel_points/custom_rewards/redemptions             (fulfil / refund)
- POST  helix/chat/messages                                         (announcements)

Inbound redemptions come from an EventSub
`channel.channel_points_custom_reward_redemption.add` subscription bound to a
websocket session (see events/eventsub.py). This module creates the
subscription and parses the notification payloads (`parse_redemption`).

All outbound calls are best-effort: errors are logged and swallowed, and
nothing is sent while disconnected.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import httpx
from pydantic import BaseModel, ValidationError

from config.settings import TwitchSettings
from events.base import EventSource, Redemption, RefundReason
from signals import Channel

if TYPE_CHECKING:
    from orchestration.triggered import TriggeredFailure

logger = logging.getLogger(__name__)

HELIX_URL = "https://api.twitch.tv/helix"
VALIDATE_URL = "https://id.twitch.tv/oauth2/validate"

STATUS_FULFILLED = "FULFILLED"
STATUS_CANCELED = "CANCELED"

REDEMPTION_ADD = "channel.channel_points_custom_reward_redemption.add"


class TokenValidation(BaseModel):
    login: str
    user_id: str
    client_id: Optional[str] = None
    scopes: List[str] = []


class EventSubSubscription(BaseModel):
    id: str
    type: str
    status: Optional[str] = None


class EventSubSubscriptionList(BaseModel):
    data: List[EventSubSubscription] = []


# ---------------- Chat messages ----------------

def format_trigger_message(triggered: "TriggeredFailure") -> str:
    if triggered.was_pick_your_poison:
        return f"@{triggered.redeemed_by} picked their poison: {triggered.name}! Good luck!"
    return f"@{triggered.redeemed_by} triggered a {triggered.tier_label} failure: {triggered.name}! Good luck!"


def format_refund_message(viewer_name: str, text: str, reason: RefundReason) -> str:
    if reason == RefundReason.UNREACHABLE:
        return f"@{viewer_name} - simulator unreachable, {text} was not triggered. Points refunded!"
    if reason == RefundReason.EMPTY_POOL:
        return f"@{viewer_name} - no {text} failures are enabled right now. Points refunded!"
    if reason == RefundReason.BLANK_INPUT:
        return f"@{viewer_name} - Pick Your Poison needs a failure name. Points refunded!"
    return f'@{viewer_name} - no matching failure found for "{text}". Points refunded!'


# ---------------- EventSub payloads ----------------

def parse_redemption(payload: Mapping[str, Any]) -> Redemption:
    """
    Build a Redemption from an EventSub notification (or just its "event" object).
    Raises ValueError when required fields are missing.
    """
    event = payload.get("event", payload)
    if not isinstance(event, Mapping):
        raise ValueError("EventSub payload has no event object")
    reward = event.get("reward") or {}
    try:
        return Redemption(
            redemption_id=str(event.get("id", "")),
            reward_id=str(reward.get("id", "")),
            viewer_name=str(event.get("user_name") or event.get("user_login") or ""),
            user_input=str(event.get("user_input") or "").strip(),
        )
    except ValidationError as exc:
        raise ValueError(f"Malformed redemption event: {exc}") from exc


# ---------------- Event source ----------------

class TwitchEventSource(EventSource):
    def __init__(
        self,
        settings: TwitchSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.settings = settings
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._connected = False
        self.connection_changed = Channel("twitch_connection_changed")

    def update_settings(self, settings: TwitchSettings) -> None:
        self.settings = settings

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _headers(self) -> Dict[str, str]:
        return {
            "Client-Id": self.settings.client_id,
            "Authorization": f"Bearer {self.settings.access_token}",
        }

    def _set_connected(self, connected: bool) -> None:
        if connected != self._connected:
            self._connected = connected
            self.connection_changed.emit(connected)

    # -------------------------
    # Connection
    # -------------------------
    async def connect(self) -> bool:
        """Validate the stored token and adopt the broadcaster identity it belongs to."""
        if not self.settings.access_token:
            return False
        try:
            resp = await self._http.get(VALIDATE_URL, headers={"Authorization": f"OAuth {self.settings.access_token}"})
        except httpx.HTTPError as exc:
            logger.warning("Twitch token validation failed: %s", exc)
            self._set_connected(False)
            return False
        if not resp.is_success:
            logger.warning("Twitch rejected the access token (%s)", resp.status_code)
            self._set_connected(False)
            return False
        try:
            info = TokenValidation.model_validate_json(resp.content)
        except ValidationError as exc:
            logger.warning("Unexpected token validation response: %s", exc)
            self._set_connected(False)
            return False

        self.settings = self.settings.model_copy(
            update={"channel_name": info.login, "broadcaster_user_id": info.user_id}
        )
        logger.info("Connected to Twitch as %s", info.login)
        self._set_connected(True)
        return True

    async def disconnect(self) -> None:
        self._set_connected(False)

    async def aclose(self) -> None:
        await self.disconnect()
        await self._http.aclose()

    # -------------------------
    # EventSub subscription
    # -------------------------
    async def subscribe_redemptions(self, session_id: str) -> bool:
        """
        Bind the redemption-add subscription to a websocket session.

        Stale subscriptions of the same type are deleted first so a second
        connect never delivers every redemption twice. Returns False when the
        subscription could not be created.
        """
        broadcaster = self.settings.broadcaster_user_id
        if not self._connected or not broadcaster:
            logger.warning("Cannot subscribe to redemptions: Twitch not connected")
            return False

        url = f"{HELIX_URL}/eventsub/subscriptions"
        try:
            resp = await self._http.get(url, params={"type": REDEMPTION_ADD}, headers=self._headers())
            if resp.is_success:
                for sub in EventSubSubscriptionList.model_validate_json(resp.content).data:
                    await self._http.delete(url, params={"id": sub.id}, headers=self._headers())
                    logger.debug("Deleted stale EventSub subscription %s", sub.id)
        except (httpx.HTTPError, ValidationError) as exc:
            # not fatal: create the new subscription regardless
            logger.warning("Could not clear stale EventSub subscriptions: %s", exc)

        body = {
            "type": REDEMPTION_ADD,
            "version": "1",
            "condition": {"broadcaster_user_id": broadcaster},
            "transport": {"method": "websocket", "session_id": session_id},
        }
        try:
            resp = await self._http.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.error("Creating the redemption subscription failed: %s", exc)
            return False
        if not resp.is_success:
            logger.error("Twitch returned %s creating the redemption subscription: %s", resp.status_code, resp.text)
            return False
        logger.info("Subscribed to channel point redemptions (session %s)", session_id)
        return True

    # -------------------------
    # Redemption status
    # -------------------------
    async def fulfil(self, reward_id: str, redemption_id: str) -> None:
        await self._update_redemption(reward_id, redemption_id, STATUS_FULFILLED)

    async def refund(self, reward_id: str, redemption_id: str) -> None:
        await self._update_redemption(reward_id, redemption_id, STATUS_CANCELED)

    async def _update_redemption(self, reward_id: str, redemption_id: str, status: str) -> None:
        if not self._connected:
            logger.debug("Twitch disconnected; dropping %s for %s", status, redemption_id)
            return
        params = {
            "broadcaster_id": self.settings.broadcaster_user_id,
            "reward_id": reward_id,
            "id": redemption_id,
        }
        try:
            resp = await self._http.patch(
                f"{HELIX_URL}/channel_points/custom_rewards/redemptions",
                params=params,
                json={"status": status},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("Marking redemption %s %s failed: %s", redemption_id, status, exc)
            return
        if not resp.is_success:
            logger.warning("Twitch returned %s marking redemption %s %s", resp.status_code, redemption_id, status)

    # -------------------------
    # Chat
    # -------------------------
    async def announce_trigger(self, triggered: "TriggeredFailure") -> None:
        await self._send_chat(format_trigger_message(triggered))

    async def announce_no_match(
        self,
        viewer_name: str,
        text: str,
        reason: RefundReason = RefundReason.NO_MATCH,
    ) -> None:
        await self._send_chat(format_refund_message(viewer_name, text, reason))

    async def _send_chat(self, message: str) -> None:
        broadcaster = self.settings.broadcaster_user_id
        if not self._connected or not broadcaster:
            return
        payload = {"broadcaster_id": broadcaster, "sender_id": broadcaster, "message": message}
        try:
            resp = await self._http.post(f"{HELIX_URL}/chat/messages", json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Chat announcement failed: %s", exc)
            return
        if not resp.is_success:
            logger.warning("Twitch returned %s sending chat message", resp.status_code)
