# =============================================================================
# DISCLAIMER: This software is NOT a safety device and is NOT intended for
# emergency response or child supervision. This is a proof of concept for
# educational purposes only. Do not rely on this system for safety decisions.
# =============================================================================
"""Persistent watermark storage for Smartwatch Monitor.

Stores the timestamp of the most recently acknowledged event in a small
SQLite key-value table so it survives restarts. Both the detection loop
and the "mark all read" action write here; neither holds a lock, so
advancing writes go through set_if_greater(), which is a single atomic
statement and never moves the watermark backwards.

Uses aiosqlite for async database operations.

Usage:
    from smartwatch_monitor.watermark_store import WatermarkStore

    store = WatermarkStore("data/monitor.db")
    await store.initialize()
    watermark = await store.get()
    await store.set_if_greater("2024-01-01T00:01:00Z")
    await store.close()
"""

import logging
import os
from datetime import datetime
from typing import Optional

import aiosqlite

from smartwatch_monitor.exceptions import StoreError
from smartwatch_monitor.models import WATERMARK_KEY

logger = logging.getLogger(__name__)


class WatermarkStore:
    """Async SQLite store for the last-seen event timestamp.

    Attributes:
        db_path: Path to SQLite database file
        key: Row key holding the watermark
    """

    def __init__(self, db_path: str, key: str = WATERMARK_KEY):
        """Initialize watermark store.

        Args:
            db_path: Path to SQLite database file
            key: Row key holding the watermark
        """
        self.db_path = db_path
        self.key = key
        self._connection: Optional[aiosqlite.Connection] = None
        logger.info(f"WatermarkStore initialized (path: {db_path})")

    async def initialize(self) -> None:
        """Open the database and create the state table if needed."""
        try:
            db_dir = os.path.dirname(self.db_path)
            if db_dir and not os.path.exists(db_dir):
                os.makedirs(db_dir)
                logger.info(f"Created database directory: {db_dir}")

            self._connection = await aiosqlite.connect(self.db_path)
            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS monitor_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at DATETIME NOT NULL
                )
            """)
            await self._connection.commit()
        except (aiosqlite.Error, OSError) as e:
            raise StoreError(f"Cannot open watermark database {self.db_path}: {e}") from e

        logger.info("Watermark database ready")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Watermark database closed")

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StoreError("Watermark store is not initialized")
        return self._connection

    async def get(self) -> Optional[str]:
        """Get the current watermark.

        Returns:
            Stored timestamp, or None if no watermark has been set

        Raises:
            StoreError: If the database cannot be read
        """
        conn = self._require_connection()
        try:
            async with conn.execute(
                "SELECT value FROM monitor_state WHERE key = ?", (self.key,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"Watermark read failed: {e}") from e
        return row[0] if row else None

    async def set(self, timestamp: str) -> None:
        """Store a watermark unconditionally. Last call wins.

        Raises:
            StoreError: If the write cannot be committed
        """
        conn = self._require_connection()
        try:
            await conn.execute("""
                INSERT INTO monitor_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """, (self.key, timestamp, datetime.now().isoformat()))
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"Watermark write failed: {e}") from e
        logger.debug(f"Watermark set to {timestamp}")

    async def set_if_greater(self, timestamp: str) -> bool:
        """Advance the watermark if timestamp is newer than the stored one.

        Comparison is plain string ordering, done inside SQLite so the
        check and the write cannot interleave with another writer.

        Returns:
            True if the watermark moved, False if it was already >= timestamp

        Raises:
            StoreError: If the write cannot be committed
        """
        conn = self._require_connection()
        try:
            cursor = await conn.execute("""
                INSERT INTO monitor_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                WHERE excluded.value > monitor_state.value
            """, (self.key, timestamp, datetime.now().isoformat()))
            advanced = cursor.rowcount > 0
            await cursor.close()
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"Watermark write failed: {e}") from e

        if advanced:
            logger.debug(f"Watermark advanced to {timestamp}")
        else:
            logger.debug(f"Watermark not advanced (already >= {timestamp})")
        return advanced

    async def clear(self) -> None:
        """Remove the watermark so every event counts as unread again."""
        conn = self._require_connection()
        try:
            await conn.execute("DELETE FROM monitor_state WHERE key = ?", (self.key,))
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"Watermark clear failed: {e}") from e
        logger.info("Watermark cleared")
