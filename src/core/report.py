"""Last-message reports (core domain).

A report answers "where was I?" for one user in one room: the last message
they sent, their read position, and how much is unread since then.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.errors import TransportError
from core.models import LastReport, ReadPosition, ScanOutcome
from core.policies import CountCapPolicy, LatestFromSenderPolicy
from core.receipts import ReadStateResolver
from core.timeline import TimelineFetcher
from core.unread import UnreadAccumulator

LOGGER = logging.getLogger(__name__)

# Two 1000-event pages of history are searched for the user's own last message.
LAST_SENT_SCAN_CAP = 2000


class ReportBuilder:
    def __init__(
        self,
        fetcher: TimelineFetcher,
        resolver: ReadStateResolver,
        accumulator: UnreadAccumulator,
        last_sent_scan_cap: int = LAST_SENT_SCAN_CAP,
    ) -> None:
        self._fetcher = fetcher
        self._resolver = resolver
        self._accumulator = accumulator
        self._last_sent_scan_cap = last_sent_scan_cap

    async def build(
        self,
        room_id: str,
        user_id: str,
        previous: Optional[ReadPosition] = None,
    ) -> LastReport:
        """Build a report; ``previous`` replaces the live read position when given.

        Triggered reports pass the position observed before the triggering
        receipt, since the live one has already caught up.
        """

        sent = await self._fetcher.scan(room_id, LatestFromSenderPolicy(user_id, self._last_sent_scan_cap))
        last_sent = sent.events[-1] if sent.stop_reason == "found" and sent.events else None

        read_position = previous
        if read_position is None:
            try:
                read_position = await self._resolver.resolve(room_id, user_id)
            except TransportError as exc:
                LOGGER.warning("Read position for %s in %s unavailable: %s", user_id, room_id, exc)

        if read_position is None:
            return LastReport(room_id=room_id, user_id=user_id, last_sent=last_sent, read_position=None)

        if await self.is_latest(room_id, read_position.event_id):
            return LastReport(
                room_id=room_id,
                user_id=user_id,
                last_sent=last_sent,
                read_position=read_position,
                read_is_latest=True,
            )

        unread = await self._accumulator.between(room_id, read_position.event_id)
        return LastReport(
            room_id=room_id,
            user_id=user_id,
            last_sent=last_sent,
            read_position=read_position,
            unread=unread,
        )

    async def is_latest(self, room_id: str, event_id: str) -> bool:
        """Return True when ``event_id`` is the newest message in the room."""

        result = await self._fetcher.scan(room_id, CountCapPolicy(1))
        if result.outcome is ScanOutcome.PARTIAL_DUE_TO_ERROR or not result.events:
            return False
        return result.events[-1].event_id == event_id
