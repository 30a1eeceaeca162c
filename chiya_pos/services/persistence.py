"""Durable copy of the store's collections in the local SQLite file."""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.db import LocalDatabase

log = logging.getLogger(__name__)

SNAPSHOT_NAME = "app-store"


class SnapshotStore:
    """Saves and loads the store snapshot as one JSON row."""

    __slots__ = ("db", "name")

    def __init__(self, db: LocalDatabase | None = None, name: str = SNAPSHOT_NAME) -> None:
        self.db = db or LocalDatabase()
        self.db.init_db()
        self.name = name

    def save(self, snapshot: Dict[str, Any]) -> None:
        payload = json.dumps(snapshot, ensure_ascii=False, separators=(",", ":"))
        saved_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        with self.db.transaction() as conn:
            conn.execute(
                """INSERT INTO store_snapshot(name, version, payload, saved_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(name) DO UPDATE SET
                       version = excluded.version,
                       payload = excluded.payload,
                       saved_at = excluded.saved_at""",
                (self.name, int(snapshot.get("version") or 0), payload, saved_at),
            )

    def load(self) -> Optional[Dict[str, Any]]:
        rows = list(
            self.db.iter_rows(
                "SELECT version, payload FROM store_snapshot WHERE name = ?", (self.name,)
            )
        )
        if not rows:
            return None
        try:
            data = json.loads(rows[0]["payload"])
        except (TypeError, ValueError):
            log.warning("stored snapshot %s is not valid JSON; ignoring it", self.name)
            return None
        if not isinstance(data, dict):
            return None
        return data

    def clear(self) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM store_snapshot WHERE name = ?", (self.name,))


class SnapshotWriter:
    """Store persister that coalesces saves and writes them off the event loop.

    Each committed store change hands over a fresh snapshot. Inside a running
    loop only the newest one is kept and written by a single background task
    after ``delay`` seconds, on the default executor. Outside a loop the save
    happens straight away.
    """

    def __init__(self, snapshots: SnapshotStore, delay: float = 0.25) -> None:
        self.snapshots = snapshots
        self.delay = delay
        self.writes = 0
        self._latest: Optional[Dict[str, Any]] = None
        self._task: Optional[asyncio.Task] = None
        self._lock: Optional[asyncio.Lock] = None
        self._wake: Optional[asyncio.Event] = None

    def save(self, snapshot: Dict[str, Any]) -> None:
        self._latest = snapshot
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._latest = None
            self._write(snapshot)
            return
        if self._task is None or self._task.done():
            if self._wake is None:
                self._wake = asyncio.Event()
            self._task = loop.create_task(self._flush_later(self._wake))

    async def _flush_later(self, wake: asyncio.Event) -> None:
        # snapshots handed over during a write are picked up by the next round
        while self._latest is not None:
            try:
                await asyncio.wait_for(wake.wait(), self.delay)
            except asyncio.TimeoutError:
                pass
            await self.flush()

    async def flush(self) -> None:
        """Write the newest pending snapshot, if any."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            snapshot, self._latest = self._latest, None
            if snapshot is None:
                return
            await asyncio.get_running_loop().run_in_executor(None, self._write, snapshot)

    async def close(self) -> None:
        """Finish the pending write and flush anything newer."""
        task, self._task = self._task, None
        if self._wake is not None:
            self._wake.set()
        if task is not None:
            await task
        self._wake = None
        await self.flush()

    def _write(self, snapshot: Dict[str, Any]) -> None:
        try:
            self.snapshots.save(snapshot)
        except (OSError, sqlite3.Error, SQLAlchemyError):
            log.warning("could not write store snapshot", exc_info=True)
            return
        self.writes += 1
