"""Static configuration for roomwatch.

All user-editable settings (rooms, features, scans, notifications) live in a
single JSON file for quick edits without touching Python.
"""

import json
import os

from core.config import NotificationConfig, ScanConfig, build_features

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Where to store the SQLite database with feature opt-ins.
DB_PATH = os.path.join(os.path.dirname(__file__), "roomwatch.db")

CONFIG_PATH = os.environ.get("ROOMWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _normalize_rooms(raw_rooms: list[dict]) -> tuple[set[str], dict[str, str]]:
    """Collect enabled room ids and build an alias map keyed by room_id."""

    rooms: set[str] = set()
    aliases: dict[str, str] = {}
    for entry in raw_rooms:
        room_id = entry.get("room_id")
        if not room_id:
            continue
        if not entry.get("enabled", True):
            continue
        rooms.add(room_id)
        alias = entry.get("alias")
        if alias:
            aliases[room_id] = alias
    return rooms, aliases


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Receipts are only observed in enabled rooms.
ROOMS, ROOM_ALIASES = _normalize_rooms(_CONFIG.get("rooms", []))

# Feature thresholds; an empty block falls back to the built-in features.
FEATURES = build_features(_CONFIG.get("features", {}))

_scan = _CONFIG.get("scan", {})
SCAN = ScanConfig(
    page_size=int(_scan.get("page_size", 100)),
    unread_scan_cap=int(_scan.get("unread_scan_cap", 1000)),
    timezone=_scan.get("timezone", "UTC"),
)
REQUEST_TIMEOUT_SECONDS = float(_scan.get("request_timeout_seconds", 120))
SYNC_TIMEOUT_MS = int(_scan.get("sync_timeout_ms", 30000))

_notifications = _CONFIG.get("notifications", {})
NOTIFICATIONS = NotificationConfig(snippet_chars=int(_notifications.get("snippet_chars", 400)))
# Notification method switches adapters without changing core logic.
NOTIFICATION_METHOD = _notifications.get("notification_method", "matrix_dm")
# Bot chat id is only required when notification_method=bot.
BOT_CHAT_ID = _notifications.get("bot_chat_id")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
