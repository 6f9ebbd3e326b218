"""Timeline pagination (core domain).

Every history read in roomwatch goes through ``TimelineFetcher.scan``: one
pagination loop driven by a stop policy. Windows (time range, message cap,
character budget, anchor-relative) are just different policies.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, List, Optional

from core.errors import AnchorNotFoundError, ScanCancelledError, TransportError
from core.formatting import LineFormatter, resolve_zone
from core.models import AnchorContext, Direction, Event, ScanOutcome, ScanResult, WindowResult
from core.policies import (
    CharBudgetPolicy,
    CountCapPolicy,
    RelativeTimePolicy,
    StopPolicy,
    TextMatchPolicy,
    TimeRangePolicy,
    Verdict,
)
from core.ports import RoomEventSource

LOGGER = logging.getLogger(__name__)

# Search windows stop after this many matches unless told otherwise.
SEARCH_RESULT_CAP = 50


@dataclass(frozen=True)
class WindowSpec:
    """A user-facing history window.

    Exactly one stop condition must be set: a time range (``hours`` or
    ``start_ts``/``end_ts``), ``max_messages`` or ``char_limit``. A ``pattern``
    turns the window into a case-insensitive search capped at ``max_results``
    matches; ``timezone`` overrides the configured zone for rendering.
    """

    hours: Optional[float] = None
    start_ts: Optional[int] = None
    end_ts: Optional[int] = None
    max_messages: Optional[int] = None
    char_limit: Optional[int] = None
    anchor_event_id: Optional[str] = None
    direction: Direction = Direction.BACKWARD
    cursor: Optional[str] = None
    include_timestamp: bool = True
    pattern: Optional[str] = None
    max_results: int = SEARCH_RESULT_CAP
    timezone: Optional[str] = None

    def __post_init__(self) -> None:
        absolute = self.start_ts is not None or self.end_ts is not None
        if self.hours is not None and absolute:
            raise ValueError("Use either hours or start_ts/end_ts, not both")
        conditions = [
            self.hours is not None or absolute,
            self.max_messages is not None,
            self.char_limit is not None,
        ]
        if sum(conditions) != 1:
            raise ValueError("A window needs exactly one stop condition")
        if absolute:
            if self.direction is Direction.BACKWARD and self.start_ts is None:
                raise ValueError("Backward windows need start_ts to be bounded")
            if self.direction is Direction.FORWARD and self.end_ts is None:
                raise ValueError("Forward windows need end_ts to be bounded")
        if self.anchor_event_id is not None and self.cursor is not None:
            raise ValueError("A window starts from an anchor or a cursor, not both")

    def build_policy(self, formatter: Callable[[Event], str]) -> StopPolicy:
        policy = self._stop_condition(formatter)
        if self.pattern is not None:
            return TextMatchPolicy(policy, self.pattern, formatter, self.max_results)
        return policy

    def _stop_condition(self, formatter: Callable[[Event], str]) -> StopPolicy:
        if self.hours is not None:
            return RelativeTimePolicy(self.hours)
        if self.max_messages is not None:
            return CountCapPolicy(self.max_messages)
        if self.char_limit is not None:
            return CharBudgetPolicy(self.char_limit, formatter)
        return TimeRangePolicy(self.start_ts, self.end_ts)


class TimelineFetcher:
    """Paginate a room timeline under a caller-supplied stop policy.

    Scans never retry and never mutate anything; a failed page ends the scan
    with ``PARTIAL_DUE_TO_ERROR`` and whatever was accepted so far.
    """

    def __init__(
        self,
        source: RoomEventSource,
        zone: tzinfo,
        page_size: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._zone = zone
        self._page_size = page_size
        self._clock = clock

    async def scan(
        self,
        room_id: str,
        policy: StopPolicy,
        *,
        direction: Direction = Direction.BACKWARD,
        cursor: Optional[str] = None,
        anchor_event_id: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
        page_size: Optional[int] = None,
    ) -> ScanResult:
        """Run one scan and return accepted events in ascending order.

        Origin is ``anchor_event_id`` if given, else ``cursor``, else the room
        head. Forward scans need an anchor or a cursor.
        """

        anchor: Optional[AnchorContext] = None
        reference_ts = int(self._clock() * 1000)
        if anchor_event_id is not None:
            try:
                anchor = await self._source.resolve_anchor(room_id, anchor_event_id)
            except AnchorNotFoundError as exc:
                LOGGER.warning("Anchor %s not found in %s: %s", anchor_event_id, room_id, exc)
                return ScanResult(events=[], outcome=ScanOutcome.ANCHOR_NOT_FOUND, error=str(exc))
            except TransportError as exc:
                LOGGER.warning("Anchor lookup for %s in %s failed: %s", anchor_event_id, room_id, exc)
                return ScanResult(events=[], outcome=ScanOutcome.PARTIAL_DUE_TO_ERROR, error=str(exc))
            reference_ts = anchor.timestamp
            cursor = anchor.forward_cursor if direction is Direction.FORWARD else anchor.backward_cursor
            if cursor is None:
                return ScanResult(events=[], outcome=ScanOutcome.EXHAUSTED, anchor=anchor)
        elif direction is Direction.FORWARD and cursor is None:
            raise ValueError("Forward scans need a cursor or an anchor event")

        bound = policy.bind(direction, reference_ts, anchored=anchor is not None)
        size = page_size or self._page_size
        accepted: List[Event] = []
        outcome = ScanOutcome.EXHAUSTED
        error: Optional[str] = None

        while True:
            if cancel is not None and cancel.is_set():
                raise ScanCancelledError(f"Scan of {room_id} cancelled after {len(accepted)} events")
            try:
                page = await self._source.fetch_page(room_id, cursor, direction, size)
            except TransportError as exc:
                LOGGER.warning("Page fetch failed for %s: %s", room_id, exc)
                outcome = ScanOutcome.PARTIAL_DUE_TO_ERROR
                error = str(exc)
                break

            if not page.events:
                break

            stopped_at: Optional[int] = None
            for index, event in enumerate(page.events):
                if bound.messages_only and not event.is_message:
                    continue
                verdict = bound.evaluate(event)
                if verdict in (Verdict.ACCEPT, Verdict.ACCEPT_AND_STOP):
                    accepted.append(event)
                if verdict in (Verdict.STOP, Verdict.ACCEPT_AND_STOP):
                    stopped_at = index
                    break

            if stopped_at is not None:
                outcome = ScanOutcome.STOPPED_BY_POLICY
                # The page token skips whatever the policy left unevaluated.
                cursor = page.next_cursor if stopped_at == len(page.events) - 1 else None
                break
            # A missing or repeated token means there is nothing further back.
            if page.next_cursor is None or page.next_cursor == cursor:
                cursor = None
                break
            cursor = page.next_cursor

        if direction is Direction.BACKWARD:
            accepted.reverse()
        accepted.sort(key=lambda event: event.timestamp)

        return ScanResult(
            events=accepted,
            outcome=outcome,
            next_cursor=cursor,
            anchor=anchor,
            error=error,
            stop_reason=bound.stop_reason,
        )

    async def scan_window(
        self,
        room_id: str,
        window: WindowSpec,
        cancel: Optional[asyncio.Event] = None,
    ) -> WindowResult:
        """Scan a window and render it as chat log lines."""

        zone = resolve_zone(window.timezone) if window.timezone else self._zone
        formatter = LineFormatter(zone, include_timestamp=window.include_timestamp)
        result = await self.scan(
            room_id,
            window.build_policy(formatter),
            direction=window.direction,
            cursor=window.cursor,
            anchor_event_id=window.anchor_event_id,
            cancel=cancel,
        )
        events = result.events
        return WindowResult(
            lines=[formatter(event) for event in events],
            outcome=result.outcome,
            first_event_id=events[0].event_id if events else None,
            last_event_id=events[-1].event_id if events else None,
            error=result.error,
        )
