from __future__ import annotations

import asyncio
from datetime import timezone

from core.formatting import LineFormatter
from core.models import UnreadMode
from core.timeline import TimelineFetcher
from core.unread import UnreadAccumulator
from fakes import FakeRoomSource, room, state_event

ROOM = "!room:test"


def _accumulator(source: FakeRoomSource, scan_cap: int = 1000) -> UnreadAccumulator:
    fetcher = TimelineFetcher(source, timezone.utc, page_size=4)
    return UnreadAccumulator(fetcher, LineFormatter(timezone.utc, include_timestamp=False), scan_cap=scan_cap)


def test_head_event_has_nothing_unread() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(10)}))

    result = asyncio.run(accumulator.between(ROOM, "$e10"))

    assert result.value == 0
    assert result.is_lower_bound is False


def test_counts_messages_newer_than_read_position() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(10)}))

    result = asyncio.run(accumulator.between(ROOM, "$e6"))

    assert result.count == 4
    assert result.is_lower_bound is False
    assert result.oldest_timestamp is not None


def test_read_position_beyond_cap_is_a_lower_bound() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(20)}), scan_cap=5)

    result = asyncio.run(accumulator.between(ROOM, "$e1"))

    assert result.value == 5
    assert result.is_lower_bound is True


def test_pruned_read_position_is_a_lower_bound() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(6)}))

    result = asyncio.run(accumulator.between(ROOM, "$gone"))

    assert result.value == 6
    assert result.is_lower_bound is True


def test_range_between_two_events() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(10)}))

    result = asyncio.run(accumulator.between(ROOM, "$e3", "$e7"))

    assert result.value == 4
    assert result.is_lower_bound is False


def test_lines_mode_returns_ascending_lines() -> None:
    timeline = room(4) + [state_event(5)]
    accumulator = _accumulator(FakeRoomSource({ROOM: timeline}))

    result = asyncio.run(accumulator.between(ROOM, "$e2", mode=UnreadMode.LINES))

    assert result.value == ["<@alice:test> hello 03", "<@alice:test> hello 04"]
    assert result.count == 2


def test_transport_failure_is_reported_as_lower_bound() -> None:
    source = FakeRoomSource({ROOM: room(10)})
    source.fail_on_page = 2
    accumulator = _accumulator(source)

    result = asyncio.run(accumulator.between(ROOM, "$e1"))

    assert result.value == 4
    assert result.is_lower_bound is True
    assert result.error


def test_range_far_behind_head_counts_from_the_newer_event() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(2000)}), scan_cap=1000)

    result = asyncio.run(accumulator.between(ROOM, "$e1", "$e500"))

    assert result.value == 499
    assert result.is_lower_bound is False


def test_range_cap_counts_from_the_newer_event() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(50)}), scan_cap=5)

    result = asyncio.run(accumulator.between(ROOM, "$e1", "$e30", UnreadMode.LINES))

    assert result.value[-1] == "<@alice:test> hello 30"
    assert result.count == 6
    assert result.is_lower_bound is True


def test_same_event_range_is_empty() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(10)}))

    result = asyncio.run(accumulator.between(ROOM, "$e4", "$e4"))

    assert result.value == 0
    assert result.is_lower_bound is False


def test_unknown_newer_event_is_a_lower_bound() -> None:
    accumulator = _accumulator(FakeRoomSource({ROOM: room(10)}))

    result = asyncio.run(accumulator.between(ROOM, "$e1", "$gone"))

    assert result.value == 0
    assert result.is_lower_bound is True
    assert result.error
