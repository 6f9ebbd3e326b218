"""Debounced notification triggers (core domain).

The poll loop feeds every read receipt into ``TriggerDebouncer.observe``. The
first receipt for a (room, user) only records a baseline. Each later receipt
is diffed against the previous one and every feature the user opted into is
evaluated on that delta:

- the delta must reach the feature's ``min_delta``;
- at least ``min_interval_seconds`` must have passed since it last fired.

By default the delta is consecutive: small reads never add up to a trigger.
Features in ``since_last_fire`` mode diff against the receipt seen when they
last fired instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from core.config import FeatureConfig
from core.models import (
    DeltaMode,
    ObservationState,
    TriggerNotification,
    TriggerState,
    UnreadMode,
    UnreadResult,
)
from core.optins import FeatureOptIns
from core.state import SharedTable
from core.unread import UnreadAccumulator

LOGGER = logging.getLogger(__name__)

OnFire = Callable[[TriggerNotification], Awaitable[None]]


class TriggerDebouncer:
    """Per-user, per-feature trigger state machine."""

    def __init__(
        self,
        accumulator: UnreadAccumulator,
        features: Iterable[FeatureConfig],
        optins: FeatureOptIns,
        on_fire: OnFire,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._accumulator = accumulator
        self._features = [feature for feature in features if feature.enabled]
        self._optins = optins
        self._on_fire = on_fire
        self._clock = clock
        self._observations: SharedTable[Tuple[str, str], ObservationState] = SharedTable()
        self._first_seen: SharedTable[Tuple[str, str], str] = SharedTable()
        self._triggers: SharedTable[Tuple[str, str, str], TriggerState] = SharedTable()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def features(self) -> List[FeatureConfig]:
        return list(self._features)

    def observation(self, room_id: str, user_id: str) -> Optional[ObservationState]:
        return self._observations.get((room_id, user_id))

    def trigger_state(self, room_id: str, user_id: str, feature: str) -> Optional[TriggerState]:
        state = self._triggers.get((room_id, user_id, feature))
        if state is None:
            return None
        return TriggerState(last_fired_at=state.last_fired_at, baseline_event_id=state.baseline_event_id)

    async def observe(
        self,
        room_id: str,
        user_id: str,
        event_id: str,
        timestamp: Optional[int],
    ) -> List[str]:
        """Process one read receipt and return the names of features that fired."""

        key = (room_id, user_id)
        previous = self._observations.get(key)
        if previous is None:
            self._observations.set(key, ObservationState(event_id=event_id, timestamp=timestamp))
            self._first_seen.set(key, event_id)
            return []

        # Echoed receipt for the same event.
        if previous.event_id == event_id:
            return []

        now = self._clock()
        deltas: Dict[str, UnreadResult] = {}
        fired: List[str] = []

        for feature in self._features:
            if not self._optins.is_enabled(feature.name, user_id):
                continue

            trigger_key = (room_id, user_id, feature.name)
            state = self._triggers.get(trigger_key)
            if state is not None and state.last_fired_at is not None:
                if now - state.last_fired_at < feature.min_interval_seconds:
                    continue

            from_event_id = self._delta_origin(feature, state, key, previous)
            delta = deltas.get(from_event_id)
            if delta is None:
                delta = await self._accumulator.between(room_id, from_event_id, event_id, UnreadMode.COUNT)
                deltas[from_event_id] = delta
            if delta.count < feature.min_delta:
                continue

            self._triggers.set(trigger_key, TriggerState(last_fired_at=now, baseline_event_id=event_id))
            LOGGER.info(
                "Firing %s for %s in %s (%s%s unread)",
                feature.name,
                user_id,
                room_id,
                delta.count,
                "+" if delta.is_lower_bound else "",
            )
            self._dispatch(
                TriggerNotification(
                    room_id=room_id,
                    user_id=user_id,
                    feature=feature.name,
                    unread_count=delta.count,
                    is_lower_bound=delta.is_lower_bound,
                    previous_event_id=previous.event_id,
                    event_id=event_id,
                    previous_timestamp=previous.timestamp,
                    fired_at=now,
                )
            )
            fired.append(feature.name)

        self._observations.set(key, ObservationState(event_id=event_id, timestamp=timestamp))
        return fired

    def forget(self, feature: str, user_id: str) -> int:
        """Drop trigger state for a user who opted out of ``feature``."""

        return self._triggers.remove_where(lambda key: key[1] == user_id and key[2] == feature)

    async def drain(self) -> None:
        """Wait for in-flight notification deliveries."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _delta_origin(
        self,
        feature: FeatureConfig,
        state: Optional[TriggerState],
        key: Tuple[str, str],
        previous: ObservationState,
    ) -> str:
        if feature.delta_mode is DeltaMode.SINCE_LAST_FIRE:
            if state is not None and state.baseline_event_id:
                return state.baseline_event_id
            return self._first_seen.get(key) or previous.event_id
        return previous.event_id

    def _dispatch(self, notification: TriggerNotification) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, notification: TriggerNotification) -> None:
        try:
            await self._on_fire(notification)
        except Exception:
            # At-most-once: the trigger stays recorded even when delivery fails.
            LOGGER.exception(
                "Notification %s for %s failed",
                notification.feature,
                notification.user_id,
            )
