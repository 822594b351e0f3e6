# file: events/eventsub.py
"""
Twitch EventSub websocket client: delivers channel-point redemptions.

Message flow
------------
session_welcome    -> remember session id + keepalive window; on a fresh
                      connection create the redemption subscription
session_keepalive  -> nothing (any frame resets the keepalive window)
notification       -> parse_redemption(payload) -> on_redemption(redemption)
session_reconnect  -> open payload.session.reconnect_url; subscriptions carry
                      over, so nothing is re-created
revocation         -> logged

Twitch may resend a message; message ids already seen are dropped.

An unrequested close or a silent connection (no frame within the keepalive
window plus a grace period) ends `run()`. Nothing reconnects on its own: the
host reconnects Twitch, exactly like any other connection loss.

Usage
-----
eventsub = EventSubClient(source, router.submit)
eventsub.start()
...
await eventsub.stop()
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, AsyncContextManager, Callable, Deque, Dict, Optional, Tuple

from pydantic import BaseModel, ValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from events.base import Redemption
from events.twitch import REDEMPTION_ADD, TwitchEventSource, parse_redemption
from signals import Channel

logger = logging.getLogger(__name__)

EVENTSUB_WS_URL = "wss://eventsub.wss.twitch.tv/ws"
KEEPALIVE_GRACE = 5.0
SEEN_MESSAGE_IDS = 256

Connector = Callable[[str], AsyncContextManager[Any]]


class EventSubMetadata(BaseModel):
    message_id: str
    message_type: str
    subscription_type: Optional[str] = None


class EventSubFrame(BaseModel):
    metadata: EventSubMetadata
    payload: Dict[str, Any] = {}


class EventSubClient:
    """
    Public API:
        - start() -> asyncio.Task / stop()
        - run()                       # one connection chain until it ends
        - handle_message(raw, subscribe=True) -> Optional[reconnect_url]
        - session_id / is_connected / connection_changed
    `on_redemption` is called synchronously for every redemption; it must not
    block (RedemptionRouter.submit schedules a task and returns).
    """

    def __init__(
        self,
        source: TwitchEventSource,
        on_redemption: Callable[[Redemption], Any],
        url: str = EVENTSUB_WS_URL,
        connect: Optional[Connector] = None,
        keepalive_grace: float = KEEPALIVE_GRACE,
    ) -> None:
        self.source = source
        self.on_redemption = on_redemption
        self.url = url
        self._connect: Connector = connect or ws_connect
        self.keepalive_grace = keepalive_grace
        self.session_id: Optional[str] = None
        self.connection_changed = Channel("eventsub_connection_changed")
        self._connected = False
        self._keepalive: Optional[float] = None
        self._seen: Deque[str] = deque(maxlen=SEEN_MESSAGE_IDS)
        self._task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _set_connected(self, connected: bool) -> None:
        if connected != self._connected:
            self._connected = connected
            self.connection_changed.emit(connected)

    # -------------------------
    # Lifecycle
    # -------------------------
    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="twitch-eventsub")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        url: Optional[str] = self.url
        subscribe = True
        try:
            while url is not None:
                url = await self._session(url, subscribe)
                # a requested reconnect keeps the existing subscription
                subscribe = False
        finally:
            self.session_id = None
            self._keepalive = None
            self._set_connected(False)

    async def _session(self, url: str, subscribe: bool) -> Optional[str]:
        """Serve one websocket; returns the reconnect url, or None when the chain ends."""
        try:
            async with self._connect(url) as ws:
                while True:
                    raw = await self._recv(ws)
                    next_url = await self.handle_message(raw, subscribe=subscribe)
                    if next_url:
                        logger.info("EventSub requested a reconnect")
                        return next_url
        except asyncio.TimeoutError:
            logger.warning("EventSub went silent past its keepalive window")
        except (WebSocketException, OSError) as exc:
            logger.warning("EventSub connection lost: %s", exc)
        return None

    async def _recv(self, ws: Any) -> Any:
        if self._keepalive is None:
            return await ws.recv()
        return await asyncio.wait_for(ws.recv(), timeout=self._keepalive + self.keepalive_grace)

    # -------------------------
    # Messages
    # -------------------------
    async def handle_message(self, raw: Any, subscribe: bool = True) -> Optional[str]:
        try:
            frame = EventSubFrame.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed EventSub frame: %s", exc)
            return None

        meta = frame.metadata
        if meta.message_id in self._seen:
            logger.debug("Dropping duplicate EventSub message %s", meta.message_id)
            return None
        self._seen.append(meta.message_id)

        kind = meta.message_type
        if kind == "session_welcome":
            await self._on_welcome(frame.payload, subscribe)
        elif kind == "session_keepalive":
            pass
        elif kind == "notification":
            self._on_notification(meta, frame.payload)
        elif kind == "session_reconnect":
            session, _ = self._session_info(frame.payload)
            return session.get("reconnect_url") or None
        elif kind == "revocation":
            sub = frame.payload.get("subscription") or {}
            logger.warning("Twitch revoked subscription %s (%s)", sub.get("type"), sub.get("status"))
        else:
            logger.debug("Unhandled EventSub message type %s", kind)
        return None

    @staticmethod
    def _session_info(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[float]]:
        session = payload.get("session") or {}
        keepalive = session.get("keepalive_timeout_seconds")
        return session, float(keepalive) if keepalive else None

    async def _on_welcome(self, payload: Dict[str, Any], subscribe: bool) -> None:
        session, keepalive = self._session_info(payload)
        self.session_id = session.get("id")
        self._keepalive = keepalive
        logger.info("EventSub session %s open", self.session_id)
        self._set_connected(True)
        if subscribe and self.session_id:
            await self.source.subscribe_redemptions(self.session_id)

    def _on_notification(self, meta: EventSubMetadata, payload: Dict[str, Any]) -> None:
        if meta.subscription_type != REDEMPTION_ADD:
            logger.debug("Ignoring %s notification", meta.subscription_type)
            return
        try:
            redemption = parse_redemption(payload)
        except ValueError as exc:
            logger.warning("Dropping redemption notification %s: %s", meta.message_id, exc)
            return
        logger.debug("Redemption %s from %s", redemption.redemption_id, redemption.viewer_name)
        self.on_redemption(redemption)
