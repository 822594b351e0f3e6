# file: events/__init__.py
"""
Event source package: redemption records, the abstract source, inbound routing,
the Twitch implementation and its EventSub websocket feed.
"""
from .base import (
    EventSource,
    Redemption,
    RefundReason,
)

from .router import RedemptionRouter

from .eventsub import EventSubClient

from .twitch import (
    TwitchEventSource,
    parse_redemption,
    format_trigger_message,
    format_refund_message,
)

__all__ = [
    # base
    "EventSource",
    "Redemption",
    "RefundReason",
    # routing
    "RedemptionRouter",
    # eventsub
    "EventSubClient",
    # twitch
    "TwitchEventSource",
    "parse_redemption",
    "format_trigger_message",
    "format_refund_message",
]
