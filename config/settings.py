# file: config/settings.py
"""
Application settings (appsettings.json).

Each component receives only its own section at construction time
(SimulatorClient <- SimulatorSettings, TwitchEventSource <- TwitchSettings,
orchestrator/router <- RewardIds) and is told about changes through an explicit
`update_settings(...)` call. Nothing holds a shared mutable settings object.

Environment overrides
---------------------
    TWITCH_CLIENT_ID
    TWITCH_ACCESS_TOKEN
    XPLANE_HOST
    XPLANE_PORT
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import orjson
from pydantic import BaseModel, Field, ValidationError

from catalogue.models import Tier

logger = logging.getLogger(__name__)


class RewardIds(BaseModel):
    """Twitch reward ids created for this channel, one per tier plus Pick Your Poison."""
    minor: str = ""
    moderate: str = ""
    severe: str = ""
    pick_your_poison: str = ""

    def for_tier(self, tier: Tier) -> Optional[str]:
        rid = {Tier.MINOR: self.minor, Tier.MODERATE: self.moderate, Tier.SEVERE: self.severe}[tier]
        return rid or None

    def tier_for_reward(self, reward_id: str) -> Optional[Tier]:
        if not reward_id:
            return None
        for tier in Tier:
            if self.for_tier(tier) == reward_id:
                return tier
        return None

    def is_pick_your_poison(self, reward_id: str) -> bool:
        return bool(reward_id) and reward_id == self.pick_your_poison


class TwitchSettings(BaseModel):
    client_id: str = ""
    channel_name: str = ""
    broadcaster_user_id: str = ""
    access_token: str = ""
    reward_ids: RewardIds = Field(default_factory=RewardIds)


class SimulatorSettings(BaseModel):
    host: str = "localhost"
    port: int = Field(8086, ge=1, le=65535)
    probe_interval: float = Field(30.0, gt=0.0, description="Seconds between liveness probes.")
    timeout: float = Field(5.0, gt=0.0, description="Per-request timeout in seconds.")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}/api/v3"


class AppSettings(BaseModel):
    twitch: TwitchSettings = Field(default_factory=TwitchSettings)
    simulator: SimulatorSettings = Field(default_factory=SimulatorSettings)


def _apply_env(settings: AppSettings) -> AppSettings:
    twitch = settings.twitch.model_copy(
        update={
            k: v
            for k, v in {
                "client_id": os.getenv("TWITCH_CLIENT_ID"),
                "access_token": os.getenv("TWITCH_ACCESS_TOKEN"),
            }.items()
            if v
        }
    )
    sim_update: dict = {}
    if os.getenv("XPLANE_HOST"):
        sim_update["host"] = os.getenv("XPLANE_HOST")
    if os.getenv("XPLANE_PORT"):
        try:
            sim_update["port"] = int(os.getenv("XPLANE_PORT", ""))
        except ValueError:
            logger.warning("Ignoring non-integer XPLANE_PORT=%r", os.getenv("XPLANE_PORT"))
    simulator = settings.simulator.model_copy(update=sim_update)
    return settings.model_copy(update={"twitch": twitch, "simulator": simulator})


def load_settings(path: str | Path, use_env: bool = True) -> AppSettings:
    """
    Load settings from JSON. A missing or corrupt file yields defaults.
    """
    p = Path(path)
    settings = AppSettings()
    if p.exists():
        try:
            settings = AppSettings.model_validate(orjson.loads(p.read_bytes()))
        except (orjson.JSONDecodeError, ValidationError) as exc:
            logger.warning("Settings file %s unreadable, using defaults: %s", p, exc)
    return _apply_env(settings) if use_env else settings


def save_settings(settings: AppSettings, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(orjson.dumps(settings.model_dump(mode="json"), option=orjson.OPT_INDENT_2))
