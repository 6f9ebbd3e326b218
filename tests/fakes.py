from __future__ import annotations

from typing import Optional

from core.errors import AnchorNotFoundError, TransportError
from core.models import AnchorContext, Direction, Event, LastReport, LiveReceipt, Page, TriggerNotification

BASE_TS = 1_700_000_000_000
MINUTE_MS = 60_000


def msg(n: int, ts: Optional[int] = None, sender: str = "@alice:test", body: Optional[str] = None) -> Event:
    return Event(
        event_id=f"$e{n}",
        sender=sender,
        body=body if body is not None else f"hello {n:02d}",
        kind="m.room.message",
        timestamp=ts if ts is not None else BASE_TS + n * MINUTE_MS,
    )


def state_event(n: int) -> Event:
    return Event(
        event_id=f"$e{n}",
        sender="@alice:test",
        body=None,
        kind="m.room.member",
        timestamp=BASE_TS + n * MINUTE_MS,
    )


def room(count: int, **kwargs) -> list[Event]:
    return [msg(n, **kwargs) for n in range(1, count + 1)]


class FakeRoomSource:
    """In-memory timeline; cursors are string indices into the ascending event list."""

    def __init__(self, timelines: Optional[dict[str, list[Event]]] = None) -> None:
        self.timelines = timelines or {}
        self.live: dict[str, list[LiveReceipt]] = {}
        self.durable: dict[tuple[str, str], str] = {}
        self.fail_on_page: Optional[int] = None
        self.fail_receipts = False
        self.fail_anchor = False
        self.pages_fetched = 0

    async def fetch_page(
        self,
        room_id: str,
        cursor: Optional[str],
        direction: Direction,
        page_size: int,
    ) -> Page:
        self.pages_fetched += 1
        if self.fail_on_page is not None and self.pages_fetched >= self.fail_on_page:
            raise TransportError("boom", status_code=502)

        events = self.timelines.get(room_id, [])
        if direction is Direction.BACKWARD:
            end = len(events) if cursor is None else int(cursor)
            start = max(0, end - page_size)
            chunk = list(reversed(events[start:end]))
            return Page(events=chunk, next_cursor=str(start) if start > 0 else None)

        start = 0 if cursor is None else int(cursor)
        end = min(len(events), start + page_size)
        return Page(events=events[start:end], next_cursor=str(end) if end < len(events) else None)

    async def resolve_anchor(self, room_id: str, event_id: str) -> AnchorContext:
        if self.fail_anchor:
            raise TransportError("context lookup failed", status_code=502)
        events = self.timelines.get(room_id, [])
        for index, event in enumerate(events):
            if event.event_id == event_id:
                return AnchorContext(
                    event_id=event_id,
                    forward_cursor=str(index + 1) if index + 1 < len(events) else None,
                    backward_cursor=str(index) if index > 0 else None,
                    timestamp=event.timestamp,
                    event=event,
                )
        raise AnchorNotFoundError(room_id, event_id, "unknown event")

    async def live_receipts(self, room_id: str) -> list[LiveReceipt]:
        if self.fail_receipts:
            raise TransportError("sync failed")
        return list(self.live.get(room_id, []))

    async def durable_marker(self, room_id: str, user_id: str) -> Optional[str]:
        return self.durable.get((room_id, user_id))


class FakeStore:
    def __init__(self, initial: Optional[dict[str, set[str]]] = None) -> None:
        self.data: dict[str, set[str]] = {key: set(value) for key, value in (initial or {}).items()}
        self.saves = 0

    def load_optins(self, feature: str) -> set[str]:
        return set(self.data.get(feature, set()))

    def save_optins(self, feature: str, user_ids: set[str]) -> None:
        self.saves += 1
        self.data[feature] = set(user_ids)


class FakeNotifier:
    def __init__(self) -> None:
        self.reports: list[tuple[TriggerNotification, LastReport]] = []
        self.digests: list[tuple[TriggerNotification, list[str]]] = []

    async def send_report(self, notification: TriggerNotification, report: LastReport) -> None:
        self.reports.append((notification, report))

    async def send_digest(self, notification: TriggerNotification, lines: list[str]) -> None:
        self.digests.append((notification, lines))
