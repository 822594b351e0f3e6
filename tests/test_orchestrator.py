# file: tests/test_orchestrator.py
from __future__ import annotations

import asyncio

import pytest

from catalogue.models import CatalogueEntry, ConfigEntry, DatarefAction, Tier
from catalogue.store import CatalogueStore
from config.settings import RewardIds, SimulatorSettings
from events.base import RefundReason
from fakes import FakeXPlane
from orchestration import FailureOrchestrator, OrchestratorEvents, TriggeredFailure
from simulator.client import ConnectivityError, SimulatorClient


REWARDS = RewardIds(minor="r-minor", moderate="r-moderate", severe="r-severe", pick_your_poison="r-pyp")


def _entry(fid: str, name: str, *datarefs: str) -> CatalogueEntry:
    refs = datarefs or (f"sim/{fid}",)
    return CatalogueEntry(id=fid, name=name, category="Test", actions=tuple(DatarefAction(dataref=d) for d in refs))


def _store() -> CatalogueStore:
    catalogue = [
        _entry("eng1_fire", "Engine 1 Fire"),
        _entry("yd1", "Yaw Damper 1 Fail"),
        _entry("yd2", "Yaw Damper 2 Fail"),
        _entry("gear", "Gear Unsafe Indication"),
        _entry("spare", "Spare Failure"),
    ]
    config = [
        ConfigEntry(id="eng1_fire", enabled=True, tier=Tier.SEVERE),
        ConfigEntry(id="yd1", enabled=True, tier=Tier.MINOR),
        ConfigEntry(id="yd2", enabled=True, tier=Tier.MINOR),
        ConfigEntry(id="gear", enabled=False, tier=Tier.MODERATE),
    ]
    return CatalogueStore(catalogue, config)


def _orchestrator(source, simulator, events=None, rewards=REWARDS) -> FailureOrchestrator:
    return FailureOrchestrator(_store(), simulator, source, rewards, events or OrchestratorEvents(), seed=7)


def _record(events: OrchestratorEvents):
    seen = {"triggered": [], "reset": [], "no_match": []}
    events.triggered.subscribe(seen["triggered"].append)
    events.reset.subscribe(seen["reset"].append)
    events.no_match.subscribe(lambda viewer, text: seen["no_match"].append((viewer, text)))
    return seen


# -------------------------
# Tier redemptions
# -------------------------

def test_tier_redemption_fulfils_and_emits(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    orch = _orchestrator(source, fake_sim, events)

    triggered = asyncio.run(orch.on_tier_redeemed(Tier.MINOR, "alice", "red-1"))

    assert isinstance(triggered, TriggeredFailure)
    assert triggered.failure.id in {"yd1", "yd2"}
    assert triggered.redeemed_by == "alice" and not triggered.was_pick_your_poison
    assert fake_sim.applied == [triggered.failure.id]
    assert source.fulfilled == [("r-minor", "red-1")]
    assert source.refunded == []
    assert source.triggers == [triggered]
    assert seen["triggered"] == [triggered]


def test_tier_selection_stays_inside_the_pool(source, fake_sim):
    orch = _orchestrator(source, fake_sim)

    async def scenario():
        return [await orch.on_tier_redeemed(Tier.MINOR, "v", f"r{i}") for i in range(40)]

    picked = {t.failure.id for t in asyncio.run(scenario())}
    assert picked == {"yd1", "yd2"}


def test_empty_pool_refunds_without_touching_the_simulator(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    orch = _orchestrator(source, fake_sim, events)

    # "gear" is configured Moderate but disabled
    assert asyncio.run(orch.on_tier_redeemed(Tier.MODERATE, "bob", "red-2")) is None

    assert fake_sim.applied == []
    assert source.refunded == [("r-moderate", "red-2")]
    assert source.fulfilled == []
    assert source.refund_notes == [("bob", "MODERATE", RefundReason.EMPTY_POOL)]
    assert seen["triggered"] == []


def test_unreachable_simulator_refunds_once_without_reroll(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    fake_sim.down = True
    orch = _orchestrator(source, fake_sim, events)

    assert asyncio.run(orch.on_tier_redeemed(Tier.SEVERE, "carol", "red-3")) is None

    assert source.refunded == [("r-severe", "red-3")]
    assert source.fulfilled == []
    assert source.refund_notes == [("carol", "Engine 1 Fire", RefundReason.UNREACHABLE)]
    assert seen["triggered"] == [] and seen["no_match"] == []


def test_missing_reward_id_skips_status_calls(source, fake_sim):
    orch = _orchestrator(source, fake_sim, rewards=RewardIds())
    triggered = asyncio.run(orch.on_tier_redeemed(Tier.SEVERE, "dave", "red-4"))
    assert triggered is not None
    assert source.fulfilled == [] and source.refunded == []
    assert source.triggers == [triggered]


# -------------------------
# Pick Your Poison
# -------------------------

@pytest.mark.parametrize(
    "text, reason",
    [("", RefundReason.BLANK_INPUT), ("   ", RefundReason.BLANK_INPUT), ("xyzzy-nonsense", RefundReason.NO_MATCH)],
)
def test_pick_your_poison_refunds_unmatched_input(source, fake_sim, text, reason):
    events = OrchestratorEvents()
    seen = _record(events)
    orch = _orchestrator(source, fake_sim, events)

    assert asyncio.run(orch.on_pick_your_poison_redeemed(text, "erin", "red-5")) is None

    assert fake_sim.applied == []
    assert source.refunded == [("r-pyp", "red-5")]
    assert source.fulfilled == []
    assert source.refund_notes == [("erin", text.strip(), reason)]
    assert seen["no_match"] == [("erin", text.strip())]
    assert seen["triggered"] == []


def test_pick_your_poison_match_is_flagged(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    orch = _orchestrator(source, fake_sim, events)

    triggered = asyncio.run(orch.on_pick_your_poison_redeemed("  yaw damp ", "frank", "red-6"))

    assert triggered.failure.id == "yd1"
    assert triggered.was_pick_your_poison
    assert source.fulfilled == [("r-pyp", "red-6")]
    assert seen["triggered"] == [triggered] and seen["no_match"] == []


def test_pick_your_poison_only_sees_triggerable_failures(source, fake_sim):
    orch = _orchestrator(source, fake_sim)

    async def scenario():
        gear = await orch.on_pick_your_poison_redeemed("Gear Unsafe Indication", "gina", "red-7")
        fire = await orch.on_pick_your_poison_redeemed("engine 1 fire", "gina", "red-8")
        return gear, fire

    gear, fire = asyncio.run(scenario())
    assert gear is None
    # not tier-scoped: a Severe failure is reachable from Pick Your Poison
    assert fire.failure.id == "eng1_fire"


def test_pick_your_poison_unreachable_uses_failure_name(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    fake_sim.down = True
    orch = _orchestrator(source, fake_sim, events)

    assert asyncio.run(orch.on_pick_your_poison_redeemed("engine 1 fire", "hank", "red-9")) is None
    assert source.refunded == [("r-pyp", "red-9")]
    assert source.refund_notes == [("hank", "Engine 1 Fire", RefundReason.UNREACHABLE)]
    assert seen["no_match"] == []


# -------------------------
# Host controls
# -------------------------

def test_manual_trigger_never_touches_the_event_source(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    orch = _orchestrator(source, fake_sim, events)
    failure = orch.catalogue.find_by_id("eng1_fire")

    assert asyncio.run(orch.trigger(failure)) is True
    assert seen["triggered"][0].redeemed_by == "Host"
    assert source.calls == 0

    fake_sim.down = True
    assert asyncio.run(orch.trigger(failure, triggered_by="Copilot")) is False
    assert len(seen["triggered"]) == 1
    assert source.calls == 0


def test_reset_marks_inactive_once(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    orch = _orchestrator(source, fake_sim, events)

    async def scenario():
        triggered = await orch.on_tier_redeemed(Tier.SEVERE, "ivy", "red-10")
        await orch.reset(triggered)
        await orch.reset(triggered)
        return triggered

    triggered = asyncio.run(scenario())
    assert not triggered.is_active
    assert fake_sim.reverted == ["eng1_fire"]
    assert seen["reset"] == [triggered]
    # reset does not touch the redemption queue
    assert source.refunded == [] and source.fulfilled == [("r-severe", "red-10")]


def test_reset_failure_keeps_instance_active(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)
    orch = _orchestrator(source, fake_sim, events)

    async def scenario():
        triggered = await orch.on_tier_redeemed(Tier.SEVERE, "jack", "red-11")
        fake_sim.down = True
        with pytest.raises(ConnectivityError):
            await orch.reset(triggered)
        return triggered

    triggered = asyncio.run(scenario())
    assert triggered.is_active
    assert seen["reset"] == []


def test_same_failure_twice_gives_distinct_instances(source, fake_sim):
    orch = _orchestrator(source, fake_sim)

    async def scenario():
        return await asyncio.gather(
            orch.on_tier_redeemed(Tier.SEVERE, "kim", "red-12"),
            orch.on_tier_redeemed(Tier.SEVERE, "lee", "red-13"),
        )

    a, b = asyncio.run(scenario())
    assert a.failure.id == b.failure.id == "eng1_fire"
    assert a.instance_id != b.instance_id
    assert sorted(source.fulfilled) == [("r-severe", "red-12"), ("r-severe", "red-13")]


# -------------------------
# Collaborator failures
# -------------------------

def test_listener_and_source_errors_do_not_unwind_a_trigger(source, fake_sim):
    events = OrchestratorEvents()
    seen = _record(events)

    def broken(_):
        raise RuntimeError("overlay crashed")

    events.triggered.subscribe(broken)
    source.fail_fulfil = True
    orch = _orchestrator(source, fake_sim, events)

    triggered = asyncio.run(orch.on_tier_redeemed(Tier.SEVERE, "mo", "red-14"))
    assert triggered is not None
    assert fake_sim.applied == ["eng1_fire"]
    assert seen["triggered"] == [triggered]
    assert source.refunded == []


def test_end_to_end_with_http_simulator(source):
    fake = FakeXPlane({"sim/eng1_fire": 5, "sim/yd1": 6, "sim/yd2": 7})
    sim = SimulatorClient(SimulatorSettings(probe_interval=3600.0), transport=fake.transport())
    orch = _orchestrator(source, sim)

    async def scenario():
        async with sim:
            await sim.connect()
            triggered = await orch.on_pick_your_poison_redeemed("eng1 fire", "nina", "red-15")
            await orch.reset(triggered)

    asyncio.run(scenario())
    assert fake.writes == [("sim/eng1_fire", 1), ("sim/eng1_fire", 0)]
    assert source.fulfilled == [("r-pyp", "red-15")]
