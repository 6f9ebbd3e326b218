"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel. Two modes exist: ``text`` for
plain bodies and ``html`` for Matrix ``formatted_body`` / Telegram HTML.
"""

from __future__ import annotations

import html
from typing import Optional

from core.models import LastReport, TriggerNotification

MATRIX_TO = "https://matrix.to/#/"
DIVIDER = "──────────────"


def event_link(room_id: str, event_id: str) -> str:
    return f"{MATRIX_TO}{room_id}/{event_id}"


def format_room_label(room_id: str, room_aliases: dict[str, str]) -> str:
    """Return a human-friendly room label, using configured aliases."""

    alias = room_aliases.get(room_id)
    if not alias:
        return room_id
    return f"{alias} ({room_id})"


def format_relative_time(timestamp_ms: int, now_ms: int) -> str:
    diff = now_ms - timestamp_ms
    if diff < 60_000:
        return "just now"
    if diff < 3_600_000:
        minutes = diff // 60_000
        return f"{minutes} minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if diff < 86_400_000:
        hours = diff // 3_600_000
        return f"{hours} hour ago" if hours == 1 else f"{hours} hours ago"
    days = diff // 86_400_000
    return f"{days} day ago" if days == 1 else f"{days} days ago"


def _link(url: str, mode: str) -> str:
    if mode == "html":
        safe = html.escape(url)
        return f'<a href="{safe}">{safe}</a>'
    return url


def _report_lines(report: LastReport, now_ms: int, mode: str) -> list[str]:
    lines: list[str] = []

    if report.last_sent is not None:
        line = f"sent: {_link(event_link(report.room_id, report.last_sent.event_id), mode)}"
        if report.last_sent.timestamp > 0:
            line += f" ({format_relative_time(report.last_sent.timestamp, now_ms)})"
        lines.append(line)
    else:
        lines.append("No recently sent.")

    position = report.read_position
    if position is None:
        lines.append("No read receipt found.")
        return lines

    link = _link(event_link(report.room_id, position.event_id), mode)
    if report.read_is_latest:
        line = f"no unread. Latest: {link}"
        if position.timestamp:
            line += f" ({format_relative_time(position.timestamp, now_ms)})"
        lines.append(line)
        return lines

    details: list[str] = []
    if position.timestamp:
        details.append(format_relative_time(position.timestamp, now_ms))
    if report.unread is not None:
        plus = "+" if report.unread.is_lower_bound else ""
        details.append(f"{report.unread.count}{plus} unread")
    line = f"read: {link}"
    if details:
        line += f" ({', '.join(details)})"
    lines.append(line)
    return lines


def format_report(report: LastReport, now_ms: int, mode: str = "text") -> str:
    """Render a last-message report as used by ``roomwatch last``."""

    if mode not in {"text", "html"}:
        raise ValueError(f"Unsupported notification format: {mode}")
    return "\n".join(_report_lines(report, now_ms, mode))


def _header(notification: TriggerNotification, room_aliases: dict[str, str], mode: str) -> list[str]:
    room = format_room_label(notification.room_id, room_aliases)
    plus = "+" if notification.is_lower_bound else ""
    if mode == "html":
        return [
            f"<b>Feature:</b> {html.escape(notification.feature)}",
            f"<b>Room:</b> {html.escape(room)}",
            f"<b>New since last read:</b> {notification.unread_count}{plus}",
            DIVIDER,
        ]
    return [
        f"Feature: {notification.feature}",
        f"Room:    {room}",
        f"New since last read: {notification.unread_count}{plus}",
        DIVIDER,
    ]


def format_report_notification(
    notification: TriggerNotification,
    report: LastReport,
    room_aliases: dict[str, str],
    mode: str,
    now_ms: Optional[int] = None,
) -> str:
    """Return a triggered last-message report formatted for the requested mode."""

    if mode not in {"text", "html"}:
        raise ValueError(f"Unsupported notification format: {mode}")
    now = now_ms if now_ms is not None else int(notification.fired_at * 1000)
    parts = _header(notification, room_aliases, mode)
    parts.extend(_report_lines(report, now, mode))
    return ("<br>\n" if mode == "html" else "\n").join(parts)


def format_digest_notification(
    notification: TriggerNotification,
    lines: list[str],
    room_aliases: dict[str, str],
    mode: str,
) -> str:
    """Return a digest of unread lines formatted for the requested mode."""

    if mode not in {"text", "html"}:
        raise ValueError(f"Unsupported notification format: {mode}")
    parts = _header(notification, room_aliases, mode)
    if mode == "html":
        body = [html.escape(line) for line in lines] or ["<i>No message text available.</i>"]
        parts.extend(body)
        parts.append(_link(event_link(notification.room_id, notification.event_id), mode))
        return "<br>\n".join(parts)
    parts.extend(lines or ["No message text available."])
    parts.append(event_link(notification.room_id, notification.event_id))
    return "\n".join(parts)
