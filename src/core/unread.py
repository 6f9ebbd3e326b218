"""Bounded unread counting (core domain)."""

from __future__ import annotations

import logging
from typing import List, Optional

from core.formatting import LineFormatter
from core.models import Direction, Event, ScanOutcome, UnreadMode, UnreadResult
from core.policies import UntilEventPolicy
from core.timeline import TimelineFetcher

LOGGER = logging.getLogger(__name__)


class UnreadAccumulator:
    """Count or collect messages between a read position and a newer event.

    The scan walks backward from ``to_event_id`` (or the head when it is
    omitted) and stops at ``from_event_id``. It gives up after ``scan_cap``
    events; any result that did not reach ``from_event_id`` is flagged as a
    lower bound, because a pruned event and a not-yet-reached one look the
    same from here.
    """

    def __init__(self, fetcher: TimelineFetcher, formatter: LineFormatter, scan_cap: int = 1000) -> None:
        self._fetcher = fetcher
        self._formatter = formatter
        self._scan_cap = scan_cap

    async def between(
        self,
        room_id: str,
        from_event_id: str,
        to_event_id: Optional[str] = None,
        mode: UnreadMode = UnreadMode.COUNT,
    ) -> UnreadResult:
        if to_event_id == from_event_id:
            return UnreadResult(value=[] if mode is UnreadMode.LINES else 0, is_lower_bound=False)

        policy = UntilEventPolicy(from_event_id, self._scan_cap)
        result = await self._fetcher.scan(
            room_id,
            policy,
            direction=Direction.BACKWARD,
            anchor_event_id=to_event_id,
        )

        found = result.outcome is ScanOutcome.STOPPED_BY_POLICY and result.stop_reason == "found"
        if result.error:
            LOGGER.warning("Unread scan of %s incomplete: %s", room_id, result.error)
        elif not found:
            LOGGER.debug("Unread scan of %s did not reach %s (%s)", room_id, from_event_id, result.outcome.value)

        events: List[Event] = list(result.events)
        # The scan starts just behind the anchor, so the anchor itself is added here.
        if result.anchor is not None and result.anchor.event is not None and result.anchor.event.is_message:
            events.append(result.anchor.event)

        oldest = events[0].timestamp if events else None
        if mode is UnreadMode.LINES:
            value = [self._formatter(event) for event in events]
        else:
            value = len(events)
        return UnreadResult(value=value, is_lower_bound=not found, oldest_timestamp=oldest, error=result.error)
