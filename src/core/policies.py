"""Stop/accept policies for timeline scans (core domain).

A scan walks pages of events and asks its policy what to do with each one.
Policy instances passed by callers are templates: the scan binds a fresh copy
for every run, so the same policy object can be reused and retried.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Callable, Optional

from core.models import Direction, Event

HOUR_MS = 3600 * 1000


class Verdict(Enum):
    ACCEPT = "accept"
    SKIP = "skip"
    ACCEPT_AND_STOP = "accept_and_stop"
    STOP = "stop"


class StopPolicy:
    """Base policy. Subclasses implement ``evaluate``."""

    # When True the scan hides non-message events from the policy.
    messages_only = True

    def __init__(self) -> None:
        self.stop_reason: Optional[str] = None

    def bind(self, direction: Direction, reference_ts: int, anchored: bool = False) -> "StopPolicy":
        return copy.copy(self)

    def evaluate(self, event: Event) -> Verdict:
        raise NotImplementedError

    def _stop(self, reason: str, verdict: Verdict = Verdict.STOP) -> Verdict:
        self.stop_reason = reason
        return verdict


class TimeRangePolicy(StopPolicy):
    """Accept events within [start_ts, end_ts] (epoch ms, either side optional).

    Events beyond the far boundary of the scan direction are skipped; the
    first event past the near boundary halts the scan.
    """

    def __init__(self, start_ts: Optional[int], end_ts: Optional[int]) -> None:
        super().__init__()
        self.start_ts = start_ts
        self.end_ts = end_ts
        self._direction = Direction.BACKWARD

    def bind(self, direction: Direction, reference_ts: int, anchored: bool = False) -> "StopPolicy":
        if direction is Direction.BACKWARD and self.start_ts is None:
            raise ValueError("Backward time-range scans need a start timestamp")
        if direction is Direction.FORWARD and self.end_ts is None:
            raise ValueError("Forward time-range scans need an end timestamp")
        bound = copy.copy(self)
        bound._direction = direction
        return bound

    def evaluate(self, event: Event) -> Verdict:
        ts = event.timestamp
        if self._direction is Direction.BACKWARD:
            if self.end_ts is not None and ts > self.end_ts:
                return Verdict.SKIP
            if ts < self.start_ts:
                return self._stop("time_boundary")
            return Verdict.ACCEPT

        if self.start_ts is not None and ts < self.start_ts:
            return Verdict.SKIP
        if ts > self.end_ts:
            return self._stop("time_boundary")
        return Verdict.ACCEPT


class RelativeTimePolicy(StopPolicy):
    """A window of ``hours`` measured from the anchor, or from now when unanchored."""

    def __init__(self, hours: float) -> None:
        super().__init__()
        if hours <= 0:
            raise ValueError("hours must be positive")
        self.hours = hours

    def bind(self, direction: Direction, reference_ts: int, anchored: bool = False) -> "StopPolicy":
        span = int(self.hours * HOUR_MS)
        if direction is Direction.FORWARD:
            policy = TimeRangePolicy(start_ts=None, end_ts=reference_ts + span)
        elif anchored:
            policy = TimeRangePolicy(start_ts=reference_ts - span, end_ts=None)
        else:
            policy = TimeRangePolicy(start_ts=reference_ts - span, end_ts=reference_ts)
        return policy.bind(direction, reference_ts, anchored)


class CountCapPolicy(StopPolicy):
    def __init__(self, max_messages: int) -> None:
        super().__init__()
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        self.max_messages = max_messages
        self._accepted = 0

    def evaluate(self, event: Event) -> Verdict:
        self._accepted += 1
        if self._accepted >= self.max_messages:
            return self._stop("count_cap", Verdict.ACCEPT_AND_STOP)
        return Verdict.ACCEPT


class CharBudgetPolicy(StopPolicy):
    """Accept formatted lines until the next one would overflow ``char_limit``.

    Lines are joined by a newline, which counts against the budget.
    """

    def __init__(self, char_limit: int, formatter: Callable[[Event], str]) -> None:
        super().__init__()
        if char_limit <= 0:
            raise ValueError("char_limit must be positive")
        self.char_limit = char_limit
        self._formatter = formatter
        self._used = 0

    def evaluate(self, event: Event) -> Verdict:
        line = self._formatter(event)
        if self._used + len(line) > self.char_limit:
            return self._stop("char_budget")
        self._used += len(line) + 1
        return Verdict.ACCEPT


class UntilEventPolicy(StopPolicy):
    """Collect messages newer than ``stop_event_id``, scanning at most ``scan_cap`` events.

    ``found`` tells whether the stop event was reached.
    """

    messages_only = False

    def __init__(self, stop_event_id: str, scan_cap: int) -> None:
        super().__init__()
        if scan_cap <= 0:
            raise ValueError("scan_cap must be positive")
        self.stop_event_id = stop_event_id
        self.scan_cap = scan_cap
        self.found = False
        self._scanned = 0

    def evaluate(self, event: Event) -> Verdict:
        if event.event_id == self.stop_event_id:
            self.found = True
            return self._stop("found")

        self._scanned += 1
        verdict = Verdict.ACCEPT if event.is_message else Verdict.SKIP

        if self._scanned >= self.scan_cap:
            return self._stop("scan_cap", Verdict.ACCEPT_AND_STOP if verdict is Verdict.ACCEPT else Verdict.STOP)
        return verdict


class LatestFromSenderPolicy(StopPolicy):
    """Stop at the newest message from ``sender``, giving up after ``scan_cap`` messages."""

    def __init__(self, sender: str, scan_cap: int) -> None:
        super().__init__()
        self.sender = sender
        self.scan_cap = scan_cap
        self._scanned = 0

    def evaluate(self, event: Event) -> Verdict:
        if event.sender == self.sender:
            return self._stop("found", Verdict.ACCEPT_AND_STOP)
        self._scanned += 1
        if self._scanned >= self.scan_cap:
            return self._stop("scan_cap")
        return Verdict.SKIP


class TextMatchPolicy(StopPolicy):
    """Keep only events whose formatted line contains ``pattern``, case-insensitively.

    ``within`` bounds the scan (usually a time window); matching stops after
    ``max_results`` hits.
    """

    def __init__(
        self,
        within: StopPolicy,
        pattern: str,
        formatter: Callable[[Event], str],
        max_results: int = 50,
    ) -> None:
        super().__init__()
        if not pattern:
            raise ValueError("pattern must not be empty")
        if max_results <= 0:
            raise ValueError("max_results must be positive")
        self.within = within
        self.pattern = pattern
        self.max_results = max_results
        self._needle = pattern.lower()
        self._formatter = formatter
        self._matched = 0

    def bind(self, direction: Direction, reference_ts: int, anchored: bool = False) -> "StopPolicy":
        bound = copy.copy(self)
        bound.within = self.within.bind(direction, reference_ts, anchored)
        return bound

    def evaluate(self, event: Event) -> Verdict:
        verdict = self.within.evaluate(event)
        if self.within.stop_reason:
            self.stop_reason = self.within.stop_reason
        if verdict in (Verdict.SKIP, Verdict.STOP):
            return verdict

        if self._needle not in self._formatter(event).lower():
            return Verdict.STOP if verdict is Verdict.ACCEPT_AND_STOP else Verdict.SKIP

        self._matched += 1
        if self._matched >= self.max_results:
            return self._stop("result_cap", Verdict.ACCEPT_AND_STOP)
        return verdict
