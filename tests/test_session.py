# file: tests/test_session.py
from __future__ import annotations

import asyncio

from catalogue.models import Tier
from fakes import FakeSimulator, RecordingSource, make_failure
from orchestration import FailureOrchestrator, OrchestratorEvents, SessionLog, TriggeredFailure
from orchestration.session import MAX_LOG_ENTRIES, LogKind


class StubCatalogue:
    def __init__(self, failures):
        self.failures = failures

    @property
    def triggerable(self):
        return [f for f in self.failures if f.is_triggerable]

    def for_tier(self, tier):
        return [f for f in self.triggerable if f.effective_tier == tier]


FIRE = make_failure("eng1_fire", "Engine 1 Fire", tier=Tier.SEVERE, category="Fire Protection")
YAW = make_failure("yd1", "Yaw Damper 1 Fail", tier=Tier.MINOR, category="Flight Controls")


def test_active_list_tracks_triggers_and_resets():
    events = OrchestratorEvents()
    log = SessionLog(events)
    a = TriggeredFailure(FIRE, "amy")
    b = TriggeredFailure(YAW, "bo", was_pick_your_poison=True)

    events.triggered.emit(a)
    events.triggered.emit(b)
    assert log.active == [b, a]
    assert log.trigger_count == 2
    assert log.last_event_text == "bo - Pick Your Poison: Yaw Damper 1 Fail"

    events.reset.emit(a)
    assert log.active == [b]
    assert log.last_event_text == "Reset: Engine 1 Fire"

    events.no_match.emit("cy", "zzz")
    assert log.entries[0].kind == LogKind.REFUNDED
    assert log.trigger_count == 2


def test_same_failure_twice_is_two_active_entries():
    events = OrchestratorEvents()
    log = SessionLog(events)
    first, second = TriggeredFailure(FIRE, "a"), TriggeredFailure(FIRE, "b")
    events.triggered.emit(first)
    events.triggered.emit(second)
    events.reset.emit(first)
    assert log.active == [second]


def test_log_is_capped():
    events = OrchestratorEvents()
    log = SessionLog(events)
    for i in range(MAX_LOG_ENTRIES + 10):
        events.no_match.emit(f"viewer{i}", "zzz")
    assert len(log.entries) == MAX_LOG_ENTRIES
    assert log.entries[0].viewer == f"viewer{MAX_LOG_ENTRIES + 9}"


def test_close_unsubscribes():
    events = OrchestratorEvents()
    log = SessionLog(events)
    log.close()
    events.triggered.emit(TriggeredFailure(FIRE, "a"))
    assert log.active == [] and len(events.triggered) == 0


def test_reset_all_skips_unreachable_failures():
    events = OrchestratorEvents()
    log = SessionLog(events)
    sim = FakeSimulator()
    orch = FailureOrchestrator(StubCatalogue([FIRE, YAW]), sim, RecordingSource(), events=events)

    async def scenario():
        await orch.trigger(FIRE)
        await orch.trigger(YAW)
        assert await log.reset_all(orch) == 2
        await orch.trigger(FIRE)
        sim.down = True
        assert await log.reset_all(orch) == 0

    asyncio.run(scenario())
    assert sorted(sim.reverted) == ["eng1_fire", "yd1"]
    assert [t.failure.id for t in log.active] == ["eng1_fire"]


def test_search_matches_name_or_category():
    pool = [FIRE, YAW, make_failure("apu_fire", "APU Fire", category="Fire Protection")]
    assert [f.id for f in SessionLog.search(pool, "fire")] == ["eng1_fire", "apu_fire"]
    assert [f.id for f in SessionLog.search(pool, "FLIGHT")] == ["yd1"]
    assert SessionLog.search(pool, "  ") == []
    many = [make_failure(f"f{i}", f"Fuel Leak {i}") for i in range(30)]
    assert len(SessionLog.search(many, "fuel")) == 20


def test_to_dataframe_oldest_first():
    events = OrchestratorEvents()
    log = SessionLog(events)
    t = TriggeredFailure(FIRE, "amy")
    events.triggered.emit(t)
    events.reset.emit(t)

    df = log.to_dataframe()
    assert list(df.columns) == ["time", "kind", "text", "viewer", "failure_id", "instance_id"]
    assert list(df["kind"]) == ["triggered", "reset"]
    assert df.iloc[0]["text"] == "amy - SEVERE: Engine 1 Fire"
    assert set(df["instance_id"]) == {str(t.instance_id)}

    assert SessionLog(OrchestratorEvents()).to_dataframe().empty


def test_triggered_summary_names_viewer_and_tier():
    tier_pick = TriggeredFailure(FIRE, "amy")
    poison = TriggeredFailure(YAW, "bo", was_pick_your_poison=True)

    assert tier_pick.summary() == f"{tier_pick.formatted_time}  SEVERE  amy -> Engine 1 Fire"
    assert poison.summary().endswith("bo -> Yaw Damper 1 Fail  [Pick Your Poison]")
