"""Facade over the core operations used by the app and command layers."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from core.debouncer import TriggerDebouncer
from core.models import LastReport, ReadPosition, UnreadMode, UnreadResult, WindowResult
from core.optins import FeatureOptIns
from core.receipts import ReadStateResolver
from core.report import ReportBuilder
from core.timeline import TimelineFetcher, WindowSpec
from core.unread import UnreadAccumulator


class ReadStateService:
    """Single entry point for history windows, read positions and triggers."""

    def __init__(
        self,
        fetcher: TimelineFetcher,
        resolver: ReadStateResolver,
        accumulator: UnreadAccumulator,
        debouncer: TriggerDebouncer,
        optins: FeatureOptIns,
        reports: ReportBuilder,
    ) -> None:
        self._fetcher = fetcher
        self._resolver = resolver
        self._accumulator = accumulator
        self._debouncer = debouncer
        self._optins = optins
        self._reports = reports

    async def scan_window(
        self,
        room_id: str,
        window: WindowSpec,
        cancel: Optional[asyncio.Event] = None,
    ) -> WindowResult:
        return await self._fetcher.scan_window(room_id, window, cancel=cancel)

    async def read_position(self, room_id: str, user_id: str) -> Optional[ReadPosition]:
        return await self._resolver.resolve(room_id, user_id)

    async def unread_between(
        self,
        room_id: str,
        from_event_id: str,
        mode: UnreadMode = UnreadMode.COUNT,
    ) -> UnreadResult:
        return await self._accumulator.between(room_id, from_event_id, mode=mode)

    async def observe(
        self,
        room_id: str,
        user_id: str,
        event_id: str,
        timestamp: Optional[int],
    ) -> List[str]:
        return await self._debouncer.observe(room_id, user_id, event_id, timestamp)

    async def last_report(self, room_id: str, user_id: str) -> LastReport:
        return await self._reports.build(room_id, user_id)

    def toggle_feature(self, feature: str, user_id: str) -> bool:
        """Flip a user's opt-in; opting out clears that feature's trigger history."""

        enabled = self._optins.toggle(feature, user_id)
        if not enabled:
            self._debouncer.forget(feature, user_id)
        return enabled

    def set_feature(self, feature: str, user_id: str, enabled: bool) -> bool:
        if enabled:
            return self._optins.enable(feature, user_id)
        changed = self._optins.disable(feature, user_id)
        self._debouncer.forget(feature, user_id)
        return changed
