"""Chat log line formatting (core domain)."""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from core.models import Event

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M %Z"

# Common North American abbreviations users type instead of IANA names.
ZONE_ABBREVIATIONS = {
    "PST": "America/Los_Angeles",
    "PDT": "America/Los_Angeles",
    "MST": "America/Denver",
    "MDT": "America/Denver",
    "CST": "America/Chicago",
    "CDT": "America/Chicago",
    "EST": "America/New_York",
    "EDT": "America/New_York",
    "UTC": "UTC",
    "GMT": "GMT",
}


def resolve_zone(name: Optional[str]) -> tzinfo:
    """Return a zone for an IANA name or a known abbreviation; raises on unknown names."""

    if not name:
        return ZoneInfo("UTC")
    return ZoneInfo(ZONE_ABBREVIATIONS.get(name.upper(), name))


def format_timestamp(timestamp_ms: int, zone: tzinfo) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=zone).strftime(TIMESTAMP_FORMAT)


class LineFormatter:
    """Render message events as ``[timestamp] <sender> body`` log lines."""

    def __init__(self, zone: tzinfo, include_timestamp: bool = True) -> None:
        self._zone = zone
        self._include_timestamp = include_timestamp

    def __call__(self, event: Event) -> str:
        if self._include_timestamp:
            return f"[{format_timestamp(event.timestamp, self._zone)}] <{event.sender}> {event.body}"
        return f"<{event.sender}> {event.body}"
