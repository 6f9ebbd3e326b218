from __future__ import annotations

import asyncio
from datetime import timezone

from core.config import REPORT_DIGEST, FeatureConfig
from core.debouncer import TriggerDebouncer
from core.formatting import LineFormatter
from core.models import LiveReceipt, TriggerNotification
from core.optins import FeatureOptIns
from core.processor import FeatureDispatcher, ReceiptProcessor, clip_lines
from core.receipts import ReadStateResolver
from core.report import ReportBuilder
from core.timeline import TimelineFetcher
from core.unread import UnreadAccumulator
from fakes import BASE_TS, FakeNotifier, FakeRoomSource, FakeStore, room

ROOM = "!room:test"
BOT = "@bot:test"
USER = "@bob:test"


def _stack(features: list[FeatureConfig], snippet_chars: int = 400):
    source = FakeRoomSource({ROOM: room(30)})
    fetcher = TimelineFetcher(source, timezone.utc, page_size=10)
    accumulator = UnreadAccumulator(fetcher, LineFormatter(timezone.utc, include_timestamp=False))
    reports = ReportBuilder(fetcher, ReadStateResolver(source), accumulator)
    notifier = FakeNotifier()
    dispatcher = FeatureDispatcher(features, reports, accumulator, notifier, snippet_chars)
    optins = FeatureOptIns(FakeStore(), [feature.name for feature in features])
    for feature in features:
        optins.enable(feature.name, USER)
        optins.enable(feature.name, BOT)
    debouncer = TriggerDebouncer(accumulator, features, optins, on_fire=dispatcher)
    return debouncer, notifier


def _notification(feature: str) -> TriggerNotification:
    return TriggerNotification(
        room_id=ROOM,
        user_id=USER,
        feature=feature,
        unread_count=5,
        is_lower_bound=False,
        previous_event_id="$e20",
        event_id="$e25",
        previous_timestamp=BASE_TS,
        fired_at=0.0,
    )


def test_clip_lines_keeps_newest() -> None:
    assert clip_lines(["aaaa", "bbbb", "cccc"], 9) == ["bbbb", "cccc"]
    assert clip_lines(["toolong"], 3) == []


def test_processor_skips_own_receipts_and_unwatched_rooms() -> None:
    features = [FeatureConfig("last", min_delta=1, min_interval_seconds=0)]
    debouncer, _ = _stack(features)
    processor = ReceiptProcessor(debouncer, {ROOM}, own_user_id=BOT)

    async def scenario() -> int:
        count = await processor.handle("!other:test", [LiveReceipt("$e1", USER, BASE_TS)])
        count += await processor.handle(ROOM, [LiveReceipt("$e1", BOT, BASE_TS)])
        await debouncer.drain()
        return count

    assert asyncio.run(scenario()) == 0
    assert debouncer.observation("!other:test", USER) is None
    assert debouncer.observation(ROOM, BOT) is None


def test_processor_replays_batch_oldest_first() -> None:
    features = [FeatureConfig("last", min_delta=3, min_interval_seconds=0)]
    debouncer, notifier = _stack(features)
    processor = ReceiptProcessor(debouncer, {ROOM}, own_user_id=BOT)
    batch = [
        LiveReceipt("$e10", USER, BASE_TS + 10),
        LiveReceipt("$e5", USER, BASE_TS + 5),
    ]

    async def scenario() -> int:
        fired = await processor.handle(ROOM, batch)
        await debouncer.drain()
        return fired

    assert asyncio.run(scenario()) == 1
    assert debouncer.observation(ROOM, USER).event_id == "$e10"
    assert len(notifier.reports) == 1


def test_last_feature_reports_previous_read_position() -> None:
    features = [FeatureConfig("last", min_delta=1, min_interval_seconds=0)]
    notifier = FakeNotifier()
    dispatcher = FeatureDispatcher(features, *_report_parts(), notifier, 400)

    asyncio.run(dispatcher(_notification("last")))

    notification, report = notifier.reports[0]
    assert report.read_position.event_id == "$e20"
    assert report.unread.count == 10
    assert report.last_sent is None


def test_digest_feature_sends_clipped_lines() -> None:
    features = [FeatureConfig("digest", min_delta=1, min_interval_seconds=0, report=REPORT_DIGEST)]
    notifier = FakeNotifier()
    dispatcher = FeatureDispatcher(features, *_report_parts(), notifier, 50)

    asyncio.run(dispatcher(_notification("digest")))

    notification, lines = notifier.digests[0]
    assert lines == ["<@alice:test> hello 24", "<@alice:test> hello 25"]


def _report_parts():
    source = FakeRoomSource({ROOM: room(30)})
    fetcher = TimelineFetcher(source, timezone.utc, page_size=10)
    accumulator = UnreadAccumulator(fetcher, LineFormatter(timezone.utc, include_timestamp=False))
    return ReportBuilder(fetcher, ReadStateResolver(source), accumulator), accumulator
