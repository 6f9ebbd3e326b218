"""Long-poll ``/sync`` loop feeding live receipts into the core processor.

One batch is processed at a time and every room of the batch is handled in
order, so per-user receipt transitions stay serialized. A failing room is
logged and skipped; a failing cycle backs off before the next attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from adapters.matrix_mapper import receipts_from_sync
from adapters.matrix_source import MatrixRoomSource
from core.processor import ReceiptProcessor

LOGGER = logging.getLogger(__name__)

FIRST_RETRY_SECONDS = 2.0
RETRY_SECONDS = 60.0
MAX_RETRY_SECONDS = 300.0


def backoff_seconds(failures: int) -> float:
    """Delay after ``failures`` consecutive failed cycles: 2s, 60s, then doubling to 300s."""

    if failures <= 0:
        return 0.0
    if failures == 1:
        return FIRST_RETRY_SECONDS
    return min(RETRY_SECONDS * 2 ** (failures - 2), MAX_RETRY_SECONDS)


class SyncPoller:
    def __init__(
        self,
        source: MatrixRoomSource,
        processor: ReceiptProcessor,
        timeout_ms: int = 30000,
        request_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._processor = processor
        self._timeout_ms = timeout_ms
        self._request_timeout = request_timeout
        self._sleep = sleep
        self.since: Optional[str] = None

    async def poll_once(self) -> int:
        """Run one sync cycle and return the number of features fired."""

        payload = await self._source.sync(self.since, self._timeout_ms, self._request_timeout)
        fired = 0
        for room_id, receipts in receipts_from_sync(payload).items():
            try:
                fired += await self._processor.handle(room_id, receipts)
            except Exception:
                LOGGER.exception("Error while processing receipts in %s", room_id)
        next_batch = payload.get("next_batch")
        if next_batch:
            self.since = next_batch
        return fired

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        failures = 0
        while stop is None or not stop.is_set():
            try:
                await self.poll_once()
                failures = 0
            except Exception:
                failures += 1
                delay = backoff_seconds(failures)
                LOGGER.exception("Sync cycle failed (%s in a row); retrying in %.0fs", failures, delay)
                await self._sleep(delay)
