"""SQLite store for the settings document and its change history."""

import json
import logging
import os
from datetime import datetime
from typing import Any

import aiosqlite

from autovote.hub.constants import TABLE_CONFIG_HISTORY, TABLE_SETTINGS_DOCUMENT
from autovote.shared.errors import CorruptConfigError

logger = logging.getLogger(__name__)


class ConfigStore:
    """Persists a single settings document; load/save only, no business logic."""

    def __init__(self, db_path: str):
        """Initialize config store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self):
        """Open the database and ensure the schema exists."""
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        # WAL so another process (e.g. a settings editor) can read while we write
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")

        await self._conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_SETTINGS_DOCUMENT} (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                document TEXT NOT NULL,
                revision INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)

        await self._conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_CONFIG_HISTORY} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                key TEXT NOT NULL,
                entity_id TEXT,
                old_value TEXT,
                new_value TEXT,
                changed_at TEXT NOT NULL,
                changed_by TEXT
            )
        """)

        await self._conn.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_config_history_key
            ON {TABLE_CONFIG_HISTORY}(key)
        """)

        await self._conn.commit()

    async def close(self):
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Config store not initialized. Call initialize() first.")
        return self._conn

    async def load(self) -> dict[str, Any] | None:
        """Load the raw settings document.

        Returns:
            The stored document, or None if nothing has been saved yet.

        Raises:
            CorruptConfigError: If the stored document is not a JSON object.
        """
        conn = self._require_conn()
        cursor = await conn.execute(f"SELECT document FROM {TABLE_SETTINGS_DOCUMENT} WHERE id = 1")
        row = await cursor.fetchone()
        if not row:
            return None

        try:
            document = json.loads(row["document"])
        except (json.JSONDecodeError, TypeError) as e:
            raise CorruptConfigError(f"Settings document is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise CorruptConfigError(f"Settings document must be an object, got {type(document).__name__}")
        return document

    async def save(self, document: dict[str, Any]) -> bool:
        """Write the document, replacing the previous one.

        Returns:
            True on success, False if the write failed (logged).
        """
        conn = self._require_conn()
        try:
            await conn.execute(
                f"""
                INSERT INTO {TABLE_SETTINGS_DOCUMENT} (id, document, revision, updated_at)
                VALUES (1, ?, 1, ?)
                ON CONFLICT(id) DO UPDATE SET
                    document = excluded.document,
                    revision = {TABLE_SETTINGS_DOCUMENT}.revision + 1,
                    updated_at = excluded.updated_at
                """,
                (json.dumps(document, sort_keys=True), datetime.now().isoformat()),
            )
            await conn.commit()
        except (aiosqlite.Error, TypeError, ValueError) as e:
            logger.error("Failed to save settings document: %s", e)
            return False
        return True

    async def revision(self) -> int:
        """Current persisted revision; 0 when nothing has been saved."""
        conn = self._require_conn()
        cursor = await conn.execute(f"SELECT revision FROM {TABLE_SETTINGS_DOCUMENT} WHERE id = 1")
        row = await cursor.fetchone()
        return row["revision"] if row else 0

    # ========================================================================
    # Change history
    # ========================================================================

    async def record_change(
        self,
        key: str,
        old_value: Any,
        new_value: Any,
        entity_id: str | None = None,
        changed_by: str = "user",
    ):
        """Append one settings change to the history table."""
        conn = self._require_conn()
        await conn.execute(
            f"""INSERT INTO {TABLE_CONFIG_HISTORY}
               (key, entity_id, old_value, new_value, changed_at, changed_by)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                key,
                entity_id,
                json.dumps(old_value),
                json.dumps(new_value),
                datetime.now().isoformat(),
                changed_by,
            ),
        )
        await conn.commit()

    async def get_history(self, key: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Recent settings changes, newest first.

        Args:
            key: Only return changes to this setting.
            limit: Maximum number of rows.
        """
        conn = self._require_conn()
        if key:
            cursor = await conn.execute(
                f"SELECT * FROM {TABLE_CONFIG_HISTORY} WHERE key = ? ORDER BY id DESC LIMIT ?",
                (key, limit),
            )
        else:
            cursor = await conn.execute(
                f"SELECT * FROM {TABLE_CONFIG_HISTORY} ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        rows = await cursor.fetchall()
        return [
            {
                "key": row["key"],
                "entity_id": row["entity_id"],
                "old_value": json.loads(row["old_value"]) if row["old_value"] else None,
                "new_value": json.loads(row["new_value"]) if row["new_value"] else None,
                "changed_at": row["changed_at"],
                "changed_by": row["changed_by"],
            }
            for row in rows
        ]
