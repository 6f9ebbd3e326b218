"""Matrix implementation of the core ``RoomEventSource`` port."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from adapters.matrix_http import MatrixHttp, path_part
from adapters.matrix_mapper import event_from_json, page_from_messages, receipts_from_sync
from core.errors import AnchorNotFoundError, TransportError
from core.models import AnchorContext, Direction, LiveReceipt, Page

LOGGER = logging.getLogger(__name__)

FULLY_READ = "m.fully_read"


def receipt_filter(room_ids: Optional[list[str]] = None) -> str:
    """Sync filter that keeps only receipt EDUs, optionally for some rooms."""

    room: dict[str, Any] = {
        "timeline": {"limit": 0},
        "state": {"types": []},
        "account_data": {"types": []},
        "ephemeral": {"types": ["m.receipt"]},
    }
    if room_ids is not None:
        room["rooms"] = room_ids
    payload = {
        "presence": {"types": []},
        "account_data": {"types": []},
        "room": room,
    }
    return json.dumps(payload, separators=(",", ":"))


class MatrixRoomSource:
    """Reads timelines and receipts through the Client-Server API."""

    def __init__(self, http: MatrixHttp, user_id: Optional[str] = None) -> None:
        self._http = http
        self._user_id = user_id

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    async def whoami(self) -> str:
        payload = await self._http.get_json("/account/whoami")
        user_id = payload.get("user_id") if payload else None
        if not user_id:
            raise TransportError("whoami returned no user_id")
        self._user_id = user_id
        return user_id

    async def fetch_page(
        self,
        room_id: str,
        cursor: Optional[str],
        direction: Direction,
        page_size: int,
    ) -> Page:
        params: dict[str, Any] = {"dir": direction.value, "limit": page_size}
        # Omitting "from" starts at the head of the timeline.
        if cursor is not None:
            params["from"] = cursor
        payload = await self._http.get_json(f"/rooms/{path_part(room_id)}/messages", params=params)
        return page_from_messages(payload or {})

    async def resolve_anchor(self, room_id: str, event_id: str) -> AnchorContext:
        try:
            payload = await self._http.get_json(
                f"/rooms/{path_part(room_id)}/context/{path_part(event_id)}",
                params={"limit": 0},
            )
        except TransportError as exc:
            if exc.status_code in (400, 403, 404):
                raise AnchorNotFoundError(room_id, event_id, str(exc)) from exc
            raise
        raw_event = (payload or {}).get("event")
        if not isinstance(raw_event, dict):
            raise AnchorNotFoundError(room_id, event_id, "context has no event")
        event = event_from_json(raw_event)
        return AnchorContext(
            event_id=event_id,
            forward_cursor=payload.get("end"),
            backward_cursor=payload.get("start"),
            timestamp=event.timestamp,
            event=event,
        )

    async def live_receipts(self, room_id: str) -> list[LiveReceipt]:
        payload = await self._http.get_json(
            "/sync",
            params={"timeout": 0, "filter": receipt_filter([room_id])},
        )
        return receipts_from_sync(payload or {}).get(room_id, [])

    async def durable_marker(self, room_id: str, user_id: str) -> Optional[str]:
        # Other users' account data is not readable; the server answers 403.
        payload = await self._http.get_json(
            f"/user/{path_part(user_id)}/rooms/{path_part(room_id)}/account_data/{FULLY_READ}",
            missing_ok=True,
        )
        if not payload:
            return None
        event_id = payload.get("event_id")
        return event_id if isinstance(event_id, str) and event_id else None

    async def sync(self, since: Optional[str], timeout_ms: int, request_timeout: float) -> dict[str, Any]:
        """Long-poll ``/sync`` for receipts in any joined room."""

        params: dict[str, Any] = {"timeout": timeout_ms, "filter": receipt_filter()}
        if since:
            params["since"] = since
        payload = await self._http.get_json("/sync", params=params, timeout=request_timeout)
        return payload or {}
