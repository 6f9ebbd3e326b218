"""Error taxonomy shared by the core and its adapters."""

from __future__ import annotations


class RoomwatchError(Exception):
    """Base class for errors raised by roomwatch."""


class TransportError(RoomwatchError):
    """A homeserver call failed (non-success status, timeout, bad payload)."""

    def __init__(self, message: str, status_code: "int | None" = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AnchorNotFoundError(RoomwatchError):
    """The anchor event of a relative scan could not be resolved."""

    def __init__(self, room_id: str, event_id: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to resolve anchor {event_id} in {room_id}{detail}")
        self.room_id = room_id
        self.event_id = event_id


class ScanCancelledError(RoomwatchError):
    """A user-facing scan was aborted; partial results are discarded."""
