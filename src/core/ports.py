"""Ports (interfaces) used by the core.

Ports define the minimal contracts for the homeserver, opt-in storage and
notification adapters so that the core can be reused with other backends.
"""

from __future__ import annotations

from typing import Optional, Protocol

from core.models import AnchorContext, Direction, LastReport, LiveReceipt, Page, TriggerNotification


class RoomEventSource(Protocol):
    """Read access to a room's timeline and receipts.

    Implementations raise ``TransportError`` on any failed call.
    """

    async def fetch_page(
        self,
        room_id: str,
        cursor: Optional[str],
        direction: Direction,
        page_size: int,
    ) -> Page:
        """Return one raw page; ``cursor=None`` starts at the room head."""
        ...

    async def resolve_anchor(self, room_id: str, event_id: str) -> AnchorContext:
        """Raise ``AnchorNotFoundError`` when the event is unknown."""
        ...

    async def live_receipts(self, room_id: str) -> list[LiveReceipt]:
        ...

    async def durable_marker(self, room_id: str, user_id: str) -> Optional[str]:
        ...


class OptInStorePort(Protocol):
    """Persistence for per-feature opt-in user sets."""

    def load_optins(self, feature: str) -> set[str]:
        ...

    def save_optins(self, feature: str, user_ids: set[str]) -> None:
        ...


class NotifierPort(Protocol):
    """Notification delivery required by triggered features."""

    async def send_report(self, notification: TriggerNotification, report: LastReport) -> None:
        ...

    async def send_digest(self, notification: TriggerNotification, lines: list[str]) -> None:
        ...
