"""Registry of running user-facing scans, keyed by requester."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator

from core.state import SharedTable

LOGGER = logging.getLogger(__name__)


class RunningOperations:
    """Hand out cancellation events so a requester can abort their own scan.

    Starting a new operation for the same requester replaces the old handle;
    the old scan keeps running but can no longer be aborted by key.
    """

    def __init__(self) -> None:
        self._operations: SharedTable[str, asyncio.Event] = SharedTable()

    def begin(self, requester: str) -> asyncio.Event:
        cancel = asyncio.Event()
        self._operations.set(requester, cancel)
        return cancel

    def end(self, requester: str, cancel: asyncio.Event) -> None:
        if self._operations.get(requester) is cancel:
            self._operations.pop(requester)

    def abort(self, requester: str) -> bool:
        cancel = self._operations.pop(requester)
        if cancel is None:
            return False
        cancel.set()
        LOGGER.info("Aborted running operation for %s", requester)
        return True

    def is_running(self, requester: str) -> bool:
        return requester in self._operations

    @contextmanager
    def track(self, requester: str) -> Iterator[asyncio.Event]:
        cancel = self.begin(requester)
        try:
            yield cancel
        finally:
            self.end(requester, cancel)
