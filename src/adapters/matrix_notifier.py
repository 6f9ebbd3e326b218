"""Matrix direct-message notification adapter.

Triggered reports are delivered into the existing two-member room the bot
shares with the user. Rooms are looked up once per user and cached.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from adapters.matrix_http import MatrixHttp, path_part
from adapters.notification_formatting import format_digest_notification, format_report_notification
from core.models import LastReport, TriggerNotification

LOGGER = logging.getLogger(__name__)


class MatrixDirectNotifier:
    """Notifier adapter that DMs the user through the bot account."""

    def __init__(self, http: MatrixHttp, own_user_id: str, room_aliases: dict[str, str]) -> None:
        self._http = http
        self._own_user_id = own_user_id
        self._room_aliases = room_aliases
        self._dm_rooms: dict[str, str] = {}

    async def find_dm_room(self, user_id: str) -> Optional[str]:
        cached = self._dm_rooms.get(user_id)
        if cached:
            return cached

        joined = await self._http.get_json("/joined_rooms")
        for room_id in (joined or {}).get("joined_rooms", []):
            members = await self._http.get_json(f"/rooms/{path_part(room_id)}/joined_members")
            member_ids = set(((members or {}).get("joined") or {}).keys())
            if member_ids == {self._own_user_id, user_id}:
                self._dm_rooms[user_id] = room_id
                return room_id
        return None

    async def send_report(self, notification: TriggerNotification, report: LastReport) -> None:
        await self._send(
            notification.user_id,
            format_report_notification(notification, report, self._room_aliases, mode="text"),
            format_report_notification(notification, report, self._room_aliases, mode="html"),
        )

    async def send_digest(self, notification: TriggerNotification, lines: list[str]) -> None:
        await self._send(
            notification.user_id,
            format_digest_notification(notification, lines, self._room_aliases, mode="text"),
            format_digest_notification(notification, lines, self._room_aliases, mode="html"),
        )

    async def _send(self, user_id: str, body: str, html_body: str) -> None:
        room_id = await self.find_dm_room(user_id)
        if room_id is None:
            # Delivery failures are logged by the caller and dropped.
            raise RuntimeError(f"No direct message room with {user_id}")

        content = {
            "msgtype": "m.notice",
            "body": body,
            "format": "org.matrix.custom.html",
            "formatted_body": html_body,
        }
        txn_id = uuid.uuid4().hex
        await self._http.put_json(
            f"/rooms/{path_part(room_id)}/send/m.room.message/{txn_id}",
            content,
        )
        LOGGER.debug("Sent notice to %s in %s", user_id, room_id)
