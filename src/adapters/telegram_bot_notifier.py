"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so notifications can be routed via a bot chat
instead of Matrix direct messages.
"""

from __future__ import annotations

import httpx

from adapters.notification_formatting import format_digest_notification, format_report_notification
from core.models import LastReport, TriggerNotification


class TelegramBotNotifier:
    """Notifier adapter that sends messages via the Telegram Bot API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: str,
        chat_id: str,
        room_aliases: dict[str, str],
    ) -> None:
        self._client = client
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._room_aliases = room_aliases

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    async def send_report(self, notification: TriggerNotification, report: LastReport) -> None:
        await self._post(format_report_notification(notification, report, self._room_aliases, mode="html"))

    async def send_digest(self, notification: TriggerNotification, lines: list[str]) -> None:
        await self._post(format_digest_notification(notification, lines, self._room_aliases, mode="html"))

    async def _post(self, message: str) -> None:
        payload = {
            "chat_id": self._chat_id,
            # Telegram HTML has no <br>; it honours plain newlines.
            "text": message.replace("<br>\n", "\n"),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        response = await self._client.post(self._endpoint(), json=payload, timeout=10)
        if not response.is_success:
            raise RuntimeError(f"Bot API error {response.status_code}: {response.text}")
