from __future__ import annotations

import asyncio
from datetime import timezone
from typing import Optional

from core.config import FeatureConfig
from core.debouncer import TriggerDebouncer
from core.formatting import LineFormatter
from core.models import DeltaMode, TriggerNotification
from core.optins import FeatureOptIns
from core.timeline import TimelineFetcher
from core.unread import UnreadAccumulator
from fakes import FakeRoomSource, FakeStore, room

ROOM = "!room:test"
USER = "@bob:test"


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _debouncer(
    features: list[FeatureConfig],
    events: int = 100,
    on_fire=None,
    clock: Optional[Clock] = None,
    opted_in: bool = True,
) -> tuple[TriggerDebouncer, list[TriggerNotification]]:
    source = FakeRoomSource({ROOM: room(events)})
    fetcher = TimelineFetcher(source, timezone.utc, page_size=50)
    accumulator = UnreadAccumulator(fetcher, LineFormatter(timezone.utc), scan_cap=1000)
    optins = FeatureOptIns(FakeStore(), [feature.name for feature in features])
    if opted_in:
        for feature in features:
            optins.enable(feature.name, USER)
    fired: list[TriggerNotification] = []

    async def record(notification: TriggerNotification) -> None:
        fired.append(notification)

    debouncer = TriggerDebouncer(
        accumulator,
        features,
        optins,
        on_fire=on_fire or record,
        clock=clock or Clock(),
    )
    return debouncer, fired


def _observe_all(debouncer: TriggerDebouncer, event_ids: list[str]) -> list[list[str]]:
    async def scenario() -> list[list[str]]:
        results = []
        for event_id in event_ids:
            results.append(await debouncer.observe(ROOM, USER, event_id, None))
        await debouncer.drain()
        return results

    return asyncio.run(scenario())


def test_small_consecutive_reads_never_add_up() -> None:
    debouncer, fired = _debouncer([FeatureConfig("digest", min_delta=75, min_interval_seconds=0)])

    results = _observe_all(debouncer, ["$e1", "$e41", "$e81"])

    assert results == [[], [], []]
    assert fired == []
    assert debouncer.observation(ROOM, USER).event_id == "$e81"


def test_first_observation_only_records_baseline() -> None:
    debouncer, fired = _debouncer([FeatureConfig("last", min_delta=1, min_interval_seconds=0)])

    results = _observe_all(debouncer, ["$e50"])

    assert results == [[]]
    assert fired == []
    assert debouncer.observation(ROOM, USER).event_id == "$e50"


def test_fires_when_delta_reaches_threshold() -> None:
    debouncer, fired = _debouncer([FeatureConfig("last", min_delta=2, min_interval_seconds=60)])

    results = _observe_all(debouncer, ["$e1", "$e5"])

    assert results == [[], ["last"]]
    assert len(fired) == 1
    assert fired[0].unread_count == 4
    assert fired[0].previous_event_id == "$e1"
    assert fired[0].event_id == "$e5"
    assert fired[0].is_lower_bound is False


def test_duplicate_observation_changes_nothing() -> None:
    debouncer, fired = _debouncer([FeatureConfig("last", min_delta=2, min_interval_seconds=0)])
    _observe_all(debouncer, ["$e1", "$e5"])
    before = debouncer.trigger_state(ROOM, USER, "last")

    results = _observe_all(debouncer, ["$e5"])

    assert results == [[]]
    assert len(fired) == 1
    assert debouncer.trigger_state(ROOM, USER, "last") == before


def test_features_are_independent() -> None:
    features = [
        FeatureConfig("last", min_delta=2, min_interval_seconds=0),
        FeatureConfig("digest", min_delta=50, min_interval_seconds=0),
    ]
    debouncer, fired = _debouncer(features)

    _observe_all(debouncer, ["$e1", "$e5"])

    assert [notification.feature for notification in fired] == ["last"]
    assert debouncer.trigger_state(ROOM, USER, "last").last_fired_at is not None
    assert debouncer.trigger_state(ROOM, USER, "digest") is None


def test_min_interval_suppresses_refire() -> None:
    clock = Clock()
    debouncer, fired = _debouncer([FeatureConfig("last", min_delta=2, min_interval_seconds=60)], clock=clock)

    _observe_all(debouncer, ["$e1", "$e5"])
    clock.now += 30
    assert _observe_all(debouncer, ["$e10"]) == [[]]
    clock.now += 60
    assert _observe_all(debouncer, ["$e15"]) == [["last"]]

    assert len(fired) == 2
    assert fired[1].previous_event_id == "$e10"
    assert debouncer.observation(ROOM, USER).event_id == "$e15"


def test_users_without_opt_in_are_tracked_but_not_notified() -> None:
    debouncer, fired = _debouncer([FeatureConfig("last", min_delta=1, min_interval_seconds=0)], opted_in=False)

    _observe_all(debouncer, ["$e1", "$e9"])

    assert fired == []
    assert debouncer.observation(ROOM, USER).event_id == "$e9"


def test_delivery_failure_keeps_trigger_recorded() -> None:
    async def explode(notification: TriggerNotification) -> None:
        raise RuntimeError("no dm room")

    debouncer, _ = _debouncer([FeatureConfig("last", min_delta=2, min_interval_seconds=60)], on_fire=explode)

    results = _observe_all(debouncer, ["$e1", "$e5"])

    assert results == [[], ["last"]]
    assert debouncer.trigger_state(ROOM, USER, "last").last_fired_at is not None


def test_since_last_fire_accumulates_small_reads() -> None:
    feature = FeatureConfig("digest", min_delta=5, min_interval_seconds=0, delta_mode=DeltaMode.SINCE_LAST_FIRE)
    debouncer, fired = _debouncer([feature])

    results = _observe_all(debouncer, ["$e1", "$e3", "$e6"])

    assert results == [[], [], ["digest"]]
    assert fired[0].unread_count == 5
    assert debouncer.trigger_state(ROOM, USER, "digest").baseline_event_id == "$e6"


def test_consecutive_mode_ignores_earlier_reads() -> None:
    feature = FeatureConfig("digest", min_delta=5, min_interval_seconds=0)
    debouncer, fired = _debouncer([feature])

    _observe_all(debouncer, ["$e1", "$e3", "$e6"])

    assert fired == []


def test_forget_drops_trigger_state() -> None:
    debouncer, _ = _debouncer([FeatureConfig("last", min_delta=2, min_interval_seconds=600)])
    _observe_all(debouncer, ["$e1", "$e5"])

    assert debouncer.forget("last", USER) == 1
    assert debouncer.trigger_state(ROOM, USER, "last") is None


def test_disabled_features_are_ignored() -> None:
    debouncer, fired = _debouncer([FeatureConfig("last", min_delta=1, min_interval_seconds=0, enabled=False)])

    _observe_all(debouncer, ["$e1", "$e5"])

    assert fired == []
    assert debouncer.features == []


def test_reads_far_behind_head_still_fire() -> None:
    debouncer, fired = _debouncer([FeatureConfig("last", min_delta=100, min_interval_seconds=0)], events=2000)

    results = _observe_all(debouncer, ["$e1", "$e500"])

    assert results == [[], ["last"]]
    assert fired[0].unread_count == 499
    assert fired[0].is_lower_bound is False
