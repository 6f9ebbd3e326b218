"""Core receipt processing pipeline.

This module is integration-agnostic. It only relies on ports for delivery,
so the sync loop and any future frontend share the same behavior.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from core.config import REPORT_DIGEST, FeatureConfig
from core.debouncer import TriggerDebouncer
from core.models import LiveReceipt, ReadPosition, TriggerNotification, UnreadMode, order_sort_key
from core.ports import NotifierPort
from core.receipts import order_key_for
from core.report import ReportBuilder
from core.unread import UnreadAccumulator

LOGGER = logging.getLogger(__name__)


class ReceiptProcessor:
    """Feeds live receipts from watched rooms into the debouncer."""

    def __init__(
        self,
        debouncer: TriggerDebouncer,
        allowed_rooms: set[str],
        own_user_id: "str | None" = None,
    ) -> None:
        self._debouncer = debouncer
        self._allowed_rooms = allowed_rooms
        self._own_user_id = own_user_id

    async def handle(self, room_id: str, receipts: Iterable[LiveReceipt]) -> int:
        """Observe every receipt of one sync batch; return how many features fired."""

        if room_id not in self._allowed_rooms:
            return 0

        # A batch may hold several receipts per user; replay them oldest first.
        ordered = sorted(
            receipts,
            key=lambda receipt: order_sort_key(order_key_for(receipt.event_id, receipt.timestamp)),
        )
        fired = 0
        for receipt in ordered:
            if receipt.user_id == self._own_user_id:
                continue
            names = await self._debouncer.observe(room_id, receipt.user_id, receipt.event_id, receipt.timestamp)
            fired += len(names)
        return fired


def clip_lines(lines: List[str], char_limit: int) -> List[str]:
    """Keep the newest lines whose joined length fits ``char_limit``."""

    kept: List[str] = []
    used = 0
    for line in reversed(lines):
        if used + len(line) > char_limit:
            break
        kept.append(line)
        used += len(line) + 1
    kept.reverse()
    return kept


class FeatureDispatcher:
    """Turn a fired trigger into a report or digest and hand it to the notifier.

    Runs inside the debouncer's background task, never on the poll loop.
    """

    def __init__(
        self,
        features: Iterable[FeatureConfig],
        reports: ReportBuilder,
        accumulator: UnreadAccumulator,
        notifier: NotifierPort,
        snippet_chars: int,
    ) -> None:
        self._features = {feature.name: feature for feature in features}
        self._reports = reports
        self._accumulator = accumulator
        self._notifier = notifier
        self._snippet_chars = snippet_chars

    async def __call__(self, notification: TriggerNotification) -> None:
        feature = self._features[notification.feature]
        if feature.report == REPORT_DIGEST:
            unread = await self._accumulator.between(
                notification.room_id,
                notification.previous_event_id,
                notification.event_id,
                UnreadMode.LINES,
            )
            lines = clip_lines(list(unread.value), self._snippet_chars)
            await self._notifier.send_digest(notification, lines)
        else:
            previous = ReadPosition(
                event_id=notification.previous_event_id,
                timestamp=notification.previous_timestamp,
            )
            report = await self._reports.build(notification.room_id, notification.user_id, previous=previous)
            await self._notifier.send_report(notification, report)
        LOGGER.info("Delivered %s to %s", notification.feature, notification.user_id)
