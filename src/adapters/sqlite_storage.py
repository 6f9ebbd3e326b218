"""SQLite storage adapter.

Implements the core OptInStorePort using a simple SQLite database.
"""

from __future__ import annotations

import os
import sqlite3


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the OptInStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - feature_optins: one row per (feature, user) that opted in
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS feature_optins (
                    feature TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    PRIMARY KEY (feature, user_id)
                )
                """
            )

    def load_optins(self, feature: str) -> set[str]:
        """Return the opted-in users for a feature; a missing database is empty."""

        if not os.path.exists(self._db_path):
            return set()
        with self._connect() as conn:
            table = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'feature_optins'"
            ).fetchone()
            if table is None:
                return set()
            rows = conn.execute(
                "SELECT user_id FROM feature_optins WHERE feature = ?",
                (feature,),
            ).fetchall()
        return {row["user_id"] for row in rows}

    def save_optins(self, feature: str, user_ids: set[str]) -> None:
        """Replace the stored set for a feature in a single transaction."""

        self.init_db()
        with self._connect() as conn:
            conn.execute("DELETE FROM feature_optins WHERE feature = ?", (feature,))
            conn.executemany(
                "INSERT INTO feature_optins (feature, user_id) VALUES (?, ?)",
                [(feature, user_id) for user_id in sorted(user_ids)],
            )
