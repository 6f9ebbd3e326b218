"""Matrix-to-core mapping adapter.

This keeps Client-Server API JSON shapes out of the core pipeline.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from core.models import Event, LiveReceipt, Page

RECEIPT_TYPES = ("m.read", "m.read.private")


def event_from_json(raw: dict[str, Any]) -> Event:
    """Build a core Event from a timeline event object."""

    content = raw.get("content") or {}
    body = content.get("body") if isinstance(content, dict) else None
    ts = raw.get("origin_server_ts")
    return Event(
        event_id=str(raw.get("event_id", "")),
        sender=raw.get("sender"),
        body=body if isinstance(body, str) else None,
        kind=str(raw.get("type", "")),
        timestamp=int(ts) if isinstance(ts, (int, float)) else 0,
    )


def page_from_messages(payload: dict[str, Any]) -> Page:
    """Map a ``/messages`` response; ``end`` is absent once history runs out."""

    chunk = payload.get("chunk") or []
    events = [event_from_json(raw) for raw in chunk if isinstance(raw, dict) and raw.get("event_id")]
    return Page(events=events, next_cursor=payload.get("end"))


def _receipt_ts(value: Any) -> Optional[int]:
    # Receipt payloads carry {"ts": ...}; some servers send the bare number.
    if isinstance(value, dict):
        value = value.get("ts")
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return None


def receipts_from_ephemeral(events: Iterable[dict[str, Any]]) -> list[LiveReceipt]:
    """Flatten ``m.receipt`` ephemeral events into per-user receipts."""

    receipts: list[LiveReceipt] = []
    for event in events:
        if event.get("type") != "m.receipt":
            continue
        content = event.get("content") or {}
        for event_id, by_type in content.items():
            if not isinstance(by_type, dict):
                continue
            for receipt_type in RECEIPT_TYPES:
                users = by_type.get(receipt_type)
                if not isinstance(users, dict):
                    continue
                for user_id, data in users.items():
                    receipts.append(LiveReceipt(event_id=event_id, user_id=user_id, timestamp=_receipt_ts(data)))
    return receipts


def receipts_from_sync(payload: dict[str, Any]) -> dict[str, list[LiveReceipt]]:
    """Return live receipts per joined room from a ``/sync`` response."""

    joined = (payload.get("rooms") or {}).get("join") or {}
    receipts: dict[str, list[LiveReceipt]] = {}
    for room_id, room in joined.items():
        ephemeral = (room.get("ephemeral") or {}).get("events") or []
        room_receipts = receipts_from_ephemeral(ephemeral)
        if room_receipts:
            receipts[room_id] = room_receipts
    return receipts
