"""Application entry point for the roomwatch agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from logging.handlers import RotatingFileHandler
from typing import Optional

import httpx
from art import tprint
from dotenv import load_dotenv

import settings
from cli import build_parser, window_from_args
from adapters.matrix_http import MatrixHttp
from adapters.matrix_notifier import MatrixDirectNotifier
from adapters.matrix_source import MatrixRoomSource
from adapters.matrix_sync import SyncPoller
from adapters.notification_formatting import format_report
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from client import build_http_client
from core.debouncer import TriggerDebouncer
from core.errors import ScanCancelledError
from core.formatting import LineFormatter, resolve_zone
from core.models import ScanOutcome, UnreadMode
from core.operations import RunningOperations
from core.optins import FeatureOptIns
from core.processor import FeatureDispatcher, ReceiptProcessor
from core.receipts import ReadStateResolver
from core.report import ReportBuilder
from core.service import ReadStateService
from core.timeline import TimelineFetcher, WindowSpec
from core.unread import UnreadAccumulator

NAME = "ROOMWATCH"
FONT = "tarty-1"
CLI_REQUESTER = "cli"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", ["MATRIX_ACCESS_TOKEN", "BOT_API"]):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/roomwatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_optins(storage: SQLiteStorage) -> FeatureOptIns:
    optins = FeatureOptIns(storage, [feature.name for feature in settings.FEATURES])
    optins.load()
    return optins


class _Wiring:
    """Core objects assembled over one homeserver connection."""

    def __init__(self, http_client: httpx.AsyncClient, storage: SQLiteStorage) -> None:
        self.http = MatrixHttp(http_client)
        self.source = MatrixRoomSource(self.http)
        zone = resolve_zone(settings.SCAN.timezone)
        self.fetcher = TimelineFetcher(self.source, zone, page_size=settings.SCAN.page_size)
        self.resolver = ReadStateResolver(self.source)
        self.accumulator = UnreadAccumulator(
            self.fetcher,
            LineFormatter(zone),
            scan_cap=settings.SCAN.unread_scan_cap,
        )
        self.reports = ReportBuilder(self.fetcher, self.resolver, self.accumulator)
        self.optins = _build_optins(storage)
        self.dispatcher: Optional[FeatureDispatcher] = None
        self.debouncer = TriggerDebouncer(
            self.accumulator,
            settings.FEATURES,
            self.optins,
            on_fire=self._on_fire,
        )
        self.service = ReadStateService(
            self.fetcher,
            self.resolver,
            self.accumulator,
            self.debouncer,
            self.optins,
            self.reports,
        )

    async def _on_fire(self, notification) -> None:
        if self.dispatcher is None:
            raise RuntimeError("Notifier is not configured")
        await self.dispatcher(notification)


def _build_notifier(wiring: _Wiring, own_user_id: str, bot_client: httpx.AsyncClient):
    if settings.NOTIFICATION_METHOD == "bot":
        load_dotenv()
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("Missing BOT_API in environment for bot notifications")
        if not settings.BOT_CHAT_ID:
            raise RuntimeError("Missing notifications.bot_chat_id in config.json")
        return TelegramBotNotifier(bot_client, bot_token, str(settings.BOT_CHAT_ID), settings.ROOM_ALIASES)
    if settings.NOTIFICATION_METHOD == "matrix_dm":
        return MatrixDirectNotifier(wiring.http, own_user_id, settings.ROOM_ALIASES)
    raise RuntimeError(f"Unsupported notification_method: {settings.NOTIFICATION_METHOD}")


async def _run_async() -> None:
    logger = logging.getLogger(__name__)
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()

    async with build_http_client(settings.REQUEST_TIMEOUT_SECONDS) as http_client, httpx.AsyncClient() as bot_client:
        wiring = _Wiring(http_client, storage)
        own_user_id = await wiring.source.whoami()
        logger.info("Logged in as %s", own_user_id)

        notifier = _build_notifier(wiring, own_user_id, bot_client)
        wiring.dispatcher = FeatureDispatcher(
            settings.FEATURES,
            wiring.reports,
            wiring.accumulator,
            notifier,
            settings.NOTIFICATIONS.snippet_chars,
        )
        processor = ReceiptProcessor(wiring.debouncer, settings.ROOMS, own_user_id)
        poller = SyncPoller(
            wiring.source,
            processor,
            timeout_ms=settings.SYNC_TIMEOUT_MS,
            # The long-poll must be allowed to outlive its server-side timeout.
            request_timeout=settings.REQUEST_TIMEOUT_SECONDS + settings.SYNC_TIMEOUT_MS / 1000,
        )
        logger.info(
            "Watching %s rooms with features: %s",
            len(settings.ROOMS),
            ", ".join(feature.name for feature in wiring.debouncer.features),
        )
        try:
            await poller.run()
        finally:
            await wiring.debouncer.drain()


def _run() -> None:
    _print_banner()
    _configure_logging()
    logging.getLogger(__name__).info("Starting roomwatch")
    try:
        asyncio.run(_run_async())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Stopped")


async def _scan_async(room_id: str, window: WindowSpec) -> int:
    operations = RunningOperations()
    loop = asyncio.get_running_loop()
    storage = SQLiteStorage(settings.DB_PATH)

    async with build_http_client(settings.REQUEST_TIMEOUT_SECONDS) as http_client:
        wiring = _Wiring(http_client, storage)
        with operations.track(CLI_REQUESTER) as cancel:
            try:
                loop.add_signal_handler(signal.SIGINT, operations.abort, CLI_REQUESTER)
            except NotImplementedError:
                pass
            try:
                result = await wiring.service.scan_window(room_id, window, cancel=cancel)
            except ScanCancelledError:
                print("Aborted.", file=sys.stderr)
                return 130
            finally:
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except NotImplementedError:
                    pass

    for line in result.lines:
        print(line)
    if result.outcome is ScanOutcome.ANCHOR_NOT_FOUND:
        print(f"Anchor not found: {result.error}", file=sys.stderr)
        return 1
    if result.outcome is ScanOutcome.PARTIAL_DUE_TO_ERROR:
        print(f"Partial result: {result.error}", file=sys.stderr)
        return 2
    return 0


async def _last_async(args: argparse.Namespace) -> int:
    storage = SQLiteStorage(settings.DB_PATH)
    async with build_http_client(settings.REQUEST_TIMEOUT_SECONDS) as http_client:
        wiring = _Wiring(http_client, storage)
        report = await wiring.service.last_report(args.room, args.user)
    print(format_report(report, int(time.time() * 1000)))
    return 0


async def _unread_async(args: argparse.Namespace) -> int:
    storage = SQLiteStorage(settings.DB_PATH)
    mode = UnreadMode.LINES if args.lines else UnreadMode.COUNT
    async with build_http_client(settings.REQUEST_TIMEOUT_SECONDS) as http_client:
        wiring = _Wiring(http_client, storage)
        result = await wiring.service.unread_between(args.room, args.event, mode)
    if mode is UnreadMode.LINES:
        for line in result.value:
            print(line)
    plus = "+" if result.is_lower_bound else ""
    print(f"{result.count}{plus} unread")
    return 0


def _set_optin(args: argparse.Namespace, enabled: bool) -> int:
    optins = _build_optins(SQLiteStorage(settings.DB_PATH))
    try:
        changed = optins.enable(args.feature, args.user) if enabled else optins.disable(args.feature, args.user)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    state = "enabled" if enabled else "disabled"
    print(f"{args.feature} {state} for {args.user}" if changed else f"{args.feature} already {state} for {args.user}")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command in {"history", "search"}:
        try:
            window = window_from_args(args, default_zone=settings.SCAN.timezone)
        except ValueError as exc:
            parser.error(str(exc))
        _configure_logging()
        raise SystemExit(asyncio.run(_scan_async(args.room, window)))
    if args.command == "last":
        _configure_logging()
        raise SystemExit(asyncio.run(_last_async(args)))
    if args.command == "unread":
        _configure_logging()
        raise SystemExit(asyncio.run(_unread_async(args)))
    if args.command in {"optin", "optout"}:
        raise SystemExit(_set_optin(args, enabled=args.command == "optin"))
    _run()


if __name__ == "__main__":
    main()
