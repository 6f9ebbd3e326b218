"""Read position reconciliation (core domain).

Two receipt channels describe where a user stopped reading:

- live: per-event receipts from the sync stream, usually with a timestamp;
- durable: a single room account-data marker holding only an event id.

The durable marker is treated as the freshest signal. Timestamps are only
reported when they are real wall-clock values.
"""

from __future__ import annotations

import logging
import zlib
from typing import Iterable, List, Optional

from core.models import (
    PLAUSIBLE_EPOCH_MS,
    LiveReceipt,
    OrderKey,
    ReadPosition,
    ReceiptChannel,
    ReceiptRecord,
    Timestamped,
    Untimestamped,
    order_sort_key,
)
from core.ports import RoomEventSource

LOGGER = logging.getLogger(__name__)


def order_key_for(event_id: str, timestamp: Optional[int]) -> OrderKey:
    """Tag a receipt timestamp; missing or zero values get a stable ordinal."""

    if timestamp:
        return Timestamped(timestamp)
    # crc32 is stable across processes, unlike hash().
    return Untimestamped(zlib.crc32(event_id.encode("utf-8")))


def reportable_timestamp(order: OrderKey) -> Optional[int]:
    if isinstance(order, Timestamped) and order.ts >= PLAUSIBLE_EPOCH_MS:
        return order.ts
    return None


def latest_record(records: Iterable[ReceiptRecord]) -> Optional[ReceiptRecord]:
    """Return the record with the greatest order key; later records win ties."""

    best: Optional[ReceiptRecord] = None
    for record in records:
        if best is None or order_sort_key(record.order) >= order_sort_key(best.order):
            best = record
    return best


class ReadStateResolver:
    """Resolve one authoritative read position per (room, user).

    Nothing is cached: both channels are queried on every call. Transport
    failures propagate as ``TransportError``; ``None`` strictly means the user
    has no receipt in the room.
    """

    def __init__(self, source: RoomEventSource) -> None:
        self._source = source

    async def resolve(self, room_id: str, user_id: str) -> Optional[ReadPosition]:
        live = await self._source.live_receipts(room_id)
        records = self.live_records(live, user_id)
        durable_event_id = await self._source.durable_marker(room_id, user_id)
        return self.merge(records, durable_event_id)

    @staticmethod
    def live_records(receipts: Iterable[LiveReceipt], user_id: str) -> List[ReceiptRecord]:
        return [
            ReceiptRecord(
                event_id=receipt.event_id,
                user_id=receipt.user_id,
                order=order_key_for(receipt.event_id, receipt.timestamp),
                channel=ReceiptChannel.LIVE,
            )
            for receipt in receipts
            if receipt.user_id == user_id
        ]

    @staticmethod
    def merge(records: List[ReceiptRecord], durable_event_id: Optional[str]) -> Optional[ReadPosition]:
        best_live = latest_record(records)

        if durable_event_id:
            # The durable marker wins; borrow a live timestamp for the same event if one exists.
            same_event = latest_record(r for r in records if r.event_id == durable_event_id)
            timestamp = reportable_timestamp(same_event.order) if same_event else None
            if best_live is not None and best_live.event_id != durable_event_id:
                LOGGER.debug(
                    "Durable marker %s overrides live receipt %s",
                    durable_event_id,
                    best_live.event_id,
                )
            return ReadPosition(event_id=durable_event_id, timestamp=timestamp)

        if best_live is None:
            return None
        return ReadPosition(event_id=best_live.event_id, timestamp=reportable_timestamp(best_live.order))
