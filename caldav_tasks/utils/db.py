"""Database utilities for persisting the task store between runs."""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from caldav_tasks.core.models import DataSnapshot
from caldav_tasks.core.store import TaskStore

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "store"


class TasksDB:
    """
    SQLite storage for the store snapshot.

    The whole snapshot is stored as one JSON document in a key/value table;
    only the latest version is kept.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path

    async def initialize(self) -> None:
        """Initialize database schema if it doesn't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS snapshots (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            await db.commit()
            logger.debug(f"Database initialized at {self.db_path}")

    async def load_snapshot(self) -> DataSnapshot | None:
        """Return the saved snapshot, or None if nothing was saved yet."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT data FROM snapshots WHERE key = ?", (SNAPSHOT_KEY,)
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        try:
            return DataSnapshot.from_dict(json.loads(row["data"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Stored snapshot is unreadable, starting empty: {e}")
            return None

    async def save_snapshot(self, snapshot: DataSnapshot) -> None:
        data = json.dumps(snapshot.to_dict())
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO snapshots (key, data, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (SNAPSHOT_KEY, data, datetime.now().timestamp()),
            )
            await db.commit()
        logger.debug(f"Saved snapshot ({len(snapshot.tasks)} tasks)")

    async def clear(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM snapshots")
            await db.commit()


class StorePersister:
    """Saves the store after every mutation.

    Saves run on the event loop; a burst of mutations collapses into one
    pending save of the latest state.
    """

    def __init__(self, store: TaskStore, db: TasksDB):
        self.store = store
        self.db = db
        self._pending: asyncio.Task | None = None
        self._dirty = False
        self._unsubscribe = None

    async def load(self) -> bool:
        """Load the saved snapshot into the store; returns False if there was none."""
        await self.db.initialize()
        snapshot = await self.db.load_snapshot()
        if snapshot is None:
            return False
        self.store.load_snapshot(snapshot)
        return True

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._schedule_save)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _schedule_save(self) -> None:
        self._dirty = True
        if self._pending is not None and not self._pending.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Store changed outside the event loop; call flush() to save")
            return
        self._pending = loop.create_task(self._save())

    async def _save(self) -> None:
        # Yield once so mutations made in the same step are included
        await asyncio.sleep(0)
        while self._dirty:
            self._dirty = False
            try:
                await self.db.save_snapshot(self.store.snapshot())
            except Exception as e:
                logger.error(f"Failed to save task store: {e}", exc_info=True)
                return

    async def flush(self) -> None:
        """Wait for any pending save, then write the current state."""
        if self._pending is not None:
            await self._pending
            self._pending = None
        self._dirty = False
        await self.db.save_snapshot(self.store.snapshot())
