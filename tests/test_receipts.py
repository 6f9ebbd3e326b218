from __future__ import annotations

import asyncio

import pytest

from core.errors import TransportError
from core.models import LiveReceipt, ReadPosition, ReceiptChannel, ReceiptRecord, Timestamped, Untimestamped
from core.receipts import ReadStateResolver, latest_record, order_key_for
from fakes import BASE_TS, FakeRoomSource

ROOM = "!room:test"
USER = "@bob:test"


def test_durable_marker_only_has_no_timestamp() -> None:
    source = FakeRoomSource()
    source.durable[(ROOM, USER)] = "$e7"

    position = asyncio.run(ReadStateResolver(source).resolve(ROOM, USER))

    assert position == ReadPosition(event_id="$e7", timestamp=None)


def test_live_receipt_with_timestamp() -> None:
    source = FakeRoomSource()
    source.live[ROOM] = [
        LiveReceipt(event_id="$e3", user_id=USER, timestamp=BASE_TS + 3),
        LiveReceipt(event_id="$e5", user_id=USER, timestamp=BASE_TS + 5),
        LiveReceipt(event_id="$e9", user_id="@carol:test", timestamp=BASE_TS + 9),
    ]

    position = asyncio.run(ReadStateResolver(source).resolve(ROOM, USER))

    assert position == ReadPosition(event_id="$e5", timestamp=BASE_TS + 5)


def test_durable_marker_wins_and_borrows_live_timestamp() -> None:
    source = FakeRoomSource()
    source.live[ROOM] = [
        LiveReceipt(event_id="$e4", user_id=USER, timestamp=BASE_TS + 4),
        LiveReceipt(event_id="$e8", user_id=USER, timestamp=BASE_TS + 8),
    ]
    source.durable[(ROOM, USER)] = "$e4"

    position = asyncio.run(ReadStateResolver(source).resolve(ROOM, USER))

    assert position == ReadPosition(event_id="$e4", timestamp=BASE_TS + 4)


def test_implausible_timestamp_is_not_reported() -> None:
    source = FakeRoomSource()
    source.live[ROOM] = [LiveReceipt(event_id="$e2", user_id=USER, timestamp=42)]

    position = asyncio.run(ReadStateResolver(source).resolve(ROOM, USER))

    assert position == ReadPosition(event_id="$e2", timestamp=None)


def test_no_receipts_means_no_position() -> None:
    position = asyncio.run(ReadStateResolver(FakeRoomSource()).resolve(ROOM, USER))

    assert position is None


def test_transport_failure_is_not_absence() -> None:
    source = FakeRoomSource()
    source.fail_receipts = True

    with pytest.raises(TransportError):
        asyncio.run(ReadStateResolver(source).resolve(ROOM, USER))


def test_untimestamped_sorts_below_timestamped() -> None:
    stamped = ReceiptRecord("$a", USER, Timestamped(5), ReceiptChannel.LIVE)
    unstamped = ReceiptRecord("$b", USER, Untimestamped(2**31), ReceiptChannel.LIVE)

    assert latest_record([stamped, unstamped]) is stamped
    assert latest_record([unstamped, stamped]) is stamped


def test_missing_timestamp_gets_stable_order_hint() -> None:
    first = order_key_for("$event", None)
    second = order_key_for("$event", 0)

    assert isinstance(first, Untimestamped)
    assert first == second
