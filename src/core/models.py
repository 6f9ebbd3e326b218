"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to Matrix wire types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

MESSAGE_KIND = "m.room.message"

# Receipt timestamps below this are not wall-clock milliseconds.
PLAUSIBLE_EPOCH_MS = 1_000_000_000_000


class Direction(str, Enum):
    BACKWARD = "b"
    FORWARD = "f"


class ScanOutcome(str, Enum):
    """How a timeline scan ended."""

    EXHAUSTED = "exhausted"
    STOPPED_BY_POLICY = "stopped_by_policy"
    PARTIAL_DUE_TO_ERROR = "partial_due_to_error"
    ANCHOR_NOT_FOUND = "anchor_not_found"


class UnreadMode(str, Enum):
    COUNT = "count"
    LINES = "lines"


class ReceiptChannel(str, Enum):
    LIVE = "live"
    DURABLE = "durable"


class DeltaMode(str, Enum):
    CONSECUTIVE = "consecutive"
    SINCE_LAST_FIRE = "since_last_fire"


@dataclass(frozen=True)
class Event:
    """A single timeline event as observed from the homeserver."""

    event_id: str
    sender: Optional[str]
    body: Optional[str]
    kind: str
    timestamp: int

    @property
    def is_message(self) -> bool:
        return self.kind == MESSAGE_KIND and self.body is not None and self.sender is not None


@dataclass(frozen=True)
class Page:
    """One raw batch returned by the event source."""

    events: List[Event]
    next_cursor: Optional[str]


@dataclass(frozen=True)
class AnchorContext:
    """Cursors bracketing an anchor event plus its server timestamp."""

    event_id: str
    forward_cursor: Optional[str]
    backward_cursor: Optional[str]
    timestamp: int
    event: Optional[Event] = None


@dataclass(frozen=True)
class LiveReceipt:
    """Raw read receipt as delivered by the live (ephemeral) channel."""

    event_id: str
    user_id: str
    timestamp: Optional[int]


@dataclass(frozen=True, order=True)
class Untimestamped:
    """Ordering hint for receipts without a usable timestamp.

    Sorts below every Timestamped value; never a wall-clock time.
    """

    order_hint: int

    @property
    def rank(self) -> int:
        return 0


@dataclass(frozen=True, order=True)
class Timestamped:
    ts: int

    @property
    def rank(self) -> int:
        return 1


OrderKey = Union[Timestamped, Untimestamped]


def order_sort_key(key: OrderKey) -> tuple[int, int]:
    """Total order across both tagged variants."""

    if isinstance(key, Timestamped):
        return (key.rank, key.ts)
    return (key.rank, key.order_hint)


@dataclass(frozen=True)
class ReceiptRecord:
    event_id: str
    user_id: str
    order: OrderKey
    channel: ReceiptChannel


@dataclass(frozen=True)
class ReadPosition:
    """Resolved read position for one (room, user)."""

    event_id: str
    timestamp: Optional[int]


@dataclass(frozen=True)
class ObservationState:
    event_id: str
    timestamp: Optional[int]


@dataclass
class TriggerState:
    """Per (room, user, feature) debounce bookkeeping."""

    last_fired_at: Optional[float] = None
    baseline_event_id: Optional[str] = None


@dataclass(frozen=True)
class ScanResult:
    """Events accepted by one scan, ascending by timestamp.

    ``next_cursor`` resumes right after the last evaluated event. It is None
    when history ran out or when the policy stopped before the end of a page.
    """

    events: List[Event]
    outcome: ScanOutcome
    next_cursor: Optional[str] = None
    anchor: Optional[AnchorContext] = None
    error: Optional[str] = None
    stop_reason: Optional[str] = None


@dataclass(frozen=True)
class WindowResult:
    lines: List[str]
    outcome: ScanOutcome
    first_event_id: Optional[str] = None
    last_event_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class UnreadResult:
    """Unread count or lines; lower bound unless the start event was reached."""

    value: Union[int, List[str]]
    is_lower_bound: bool
    oldest_timestamp: Optional[int] = None
    error: Optional[str] = None

    @property
    def count(self) -> int:
        if isinstance(self.value, int):
            return self.value
        return len(self.value)


@dataclass(frozen=True)
class TriggerNotification:
    """Payload handed to notifiers when a feature fires."""

    room_id: str
    user_id: str
    feature: str
    unread_count: int
    is_lower_bound: bool
    previous_event_id: str
    event_id: str
    previous_timestamp: Optional[int]
    fired_at: float


@dataclass(frozen=True)
class LastReport:
    """Everything needed to render a last-message report for one user."""

    room_id: str
    user_id: str
    last_sent: Optional[Event]
    read_position: Optional[ReadPosition]
    read_is_latest: bool = False
    unread: Optional[UnreadResult] = None
