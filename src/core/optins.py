"""Per-feature opt-in sets (core domain).

Each feature keeps the set of users who asked for it. Sets are loaded fully
at startup and written back in full after every change.
"""

from __future__ import annotations

import logging
from typing import Iterable

from core.ports import OptInStorePort
from core.state import SharedTable

LOGGER = logging.getLogger(__name__)


class FeatureOptIns:
    def __init__(self, store: OptInStorePort, features: Iterable[str]) -> None:
        self._store = store
        self._features = list(features)
        self._sets: SharedTable[str, frozenset[str]] = SharedTable()
        for feature in self._features:
            self._sets.set(feature, frozenset())

    def load(self) -> None:
        for feature in self._features:
            users = frozenset(self._store.load_optins(feature))
            self._sets.set(feature, users)
            LOGGER.info("Loaded %s opted-in users for %s", len(users), feature)

    def users(self, feature: str) -> frozenset[str]:
        self._require(feature)
        return self._sets.get(feature, frozenset())

    def is_enabled(self, feature: str, user_id: str) -> bool:
        return user_id in self._sets.get(feature, frozenset())

    def enable(self, feature: str, user_id: str) -> bool:
        """Opt a user in; return False when nothing changed."""

        return self._mutate(feature, user_id, add=True)

    def disable(self, feature: str, user_id: str) -> bool:
        return self._mutate(feature, user_id, add=False)

    def toggle(self, feature: str, user_id: str) -> bool:
        """Flip the opt-in and return the new state."""

        if self.is_enabled(feature, user_id):
            self.disable(feature, user_id)
            return False
        self.enable(feature, user_id)
        return True

    def _mutate(self, feature: str, user_id: str, add: bool) -> bool:
        self._require(feature)
        before = self._sets.get(feature, frozenset())

        def apply(current: "frozenset[str] | None") -> frozenset[str]:
            current = current or frozenset()
            return current | {user_id} if add else current - {user_id}

        after = self._sets.update(feature, apply)
        if after == before:
            return False
        self._store.save_optins(feature, set(after))
        LOGGER.info("%s %s for %s", "Enabled" if add else "Disabled", feature, user_id)
        return True

    def _require(self, feature: str) -> None:
        if feature not in self._features:
            raise ValueError(f"Unknown feature: {feature}")
