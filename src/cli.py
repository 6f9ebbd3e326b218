"""Command line parsing for roomwatch.

Kept apart from ``app`` so argument handling can be exercised without a
config file.
"""

from __future__ import annotations

import argparse
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfoNotFoundError

from core.formatting import resolve_zone
from core.models import Direction
from core.timeline import SEARCH_RESULT_CAP, WindowSpec

LOCAL_TIME_FORMAT = "%Y-%m-%d-%H-%M"


def parse_local_time(value: str, zone_name: Optional[str]) -> int:
    """Turn ``YYYY-MM-DD-HH-MM`` in ``zone_name`` into epoch milliseconds."""

    try:
        naive = datetime.strptime(value, LOCAL_TIME_FORMAT)
    except ValueError as exc:
        raise ValueError(f"Expected a time like 2024-03-01-09-30, got {value!r}") from exc
    return int(naive.replace(tzinfo=_zone(zone_name)).timestamp() * 1000)


def _zone(name: Optional[str]):
    try:
        return resolve_zone(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {name}") from exc


def window_from_args(args: argparse.Namespace, default_zone: Optional[str] = None) -> WindowSpec:
    """Build the WindowSpec a ``history`` or ``search`` invocation asks for.

    Raises ValueError when the combination of options does not describe a
    window.
    """

    zone_name = args.tz or default_zone
    if args.tz:
        _zone(args.tz)

    if args.command == "search":
        return WindowSpec(
            hours=args.hours,
            pattern=args.pattern,
            max_results=args.max_results,
            timezone=args.tz,
        )

    hours = args.hours
    start_ts = end_ts = None
    if args.start is not None:
        start_ts = parse_local_time(args.start, zone_name)
    if args.end is not None:
        end_ts = parse_local_time(args.end, zone_name)
    # "--start T --hours N" reads as N hours from T.
    if start_ts is not None and end_ts is None and hours is not None:
        end_ts = start_ts + int(timedelta(hours=hours).total_seconds() * 1000)
        hours = None

    return WindowSpec(
        hours=hours,
        start_ts=start_ts,
        end_ts=end_ts,
        max_messages=args.max_messages,
        char_limit=args.char_limit,
        anchor_event_id=args.anchor,
        direction=Direction.FORWARD if args.forward else Direction.BACKWARD,
        include_timestamp=not args.no_timestamps,
        timezone=args.tz,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="roomwatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the receipt watcher")

    history = subparsers.add_parser("history", help="Print a window of room history")
    history.add_argument("room")
    limit = history.add_mutually_exclusive_group()
    limit.add_argument("--hours", type=float)
    limit.add_argument("--max-messages", type=int)
    limit.add_argument("--char-limit", type=int)
    history.add_argument("--start", help="Window start as YYYY-MM-DD-HH-MM")
    history.add_argument("--end", help="Window end as YYYY-MM-DD-HH-MM")
    history.add_argument("--tz", help="Time zone for --start/--end and output, e.g. EST or Europe/Berlin")
    history.add_argument("--anchor", help="Event id to scan from")
    history.add_argument("--forward", action="store_true", help="Scan forward from the anchor")
    history.add_argument("--no-timestamps", action="store_true")

    search = subparsers.add_parser("search", help="Find messages containing a phrase")
    search.add_argument("room")
    search.add_argument("pattern")
    search.add_argument("--hours", type=float, required=True)
    search.add_argument("--max-results", type=int, default=SEARCH_RESULT_CAP)
    search.add_argument("--tz", help="Time zone for output")

    last = subparsers.add_parser("last", help="Show a user's last message and read position")
    last.add_argument("room")
    last.add_argument("user")

    unread = subparsers.add_parser("unread", help="Count messages newer than an event")
    unread.add_argument("room")
    unread.add_argument("event")
    unread.add_argument("--lines", action="store_true", help="Print the unread lines too")

    for name, help_text in (("optin", "Opt a user into a feature"), ("optout", "Opt a user out of a feature")):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("feature")
        command.add_argument("user")

    return parser
