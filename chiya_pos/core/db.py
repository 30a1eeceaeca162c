"""SQLite helpers for the terminal's durable local state."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator, Tuple

from sqlalchemy import create_engine, event

from .config_store import get_config_value, set_config_value
from .paths import DB_PATH, ensure_storage_dirs

log = logging.getLogger(__name__)

_VALID_SYNC = {"OFF", "NORMAL", "FULL", "EXTRA"}
_DEFAULT_SYNC = "FULL"


def _current_sync() -> str:
    value = str(get_config_value("sqlite_synchronous", _DEFAULT_SYNC)).upper()
    if value not in _VALID_SYNC:
        value = _DEFAULT_SYNC
        set_config_value("sqlite_synchronous", value)
    return value


class LocalDatabase:
    """One SQLite file behind a SQLAlchemy engine, used through raw connections."""

    __slots__ = ("path", "_engine")

    def __init__(self, path: Path | None = None) -> None:
        if path is None:
            ensure_storage_dirs()
            path = DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._engine = create_engine(
            f"sqlite:///{path.as_posix()}",
            connect_args={"check_same_thread": False},
        )
        event.listen(self._engine, "connect", self._apply_pragmas)

    @staticmethod
    def _apply_pragmas(dbapi_conn, _):  # pragma: no cover - exercised via runtime
        dbapi_conn.row_factory = sqlite3.Row
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute(f"PRAGMA synchronous={_current_sync()};")
            cursor.execute("PRAGMA temp_store=MEMORY;")
        finally:
            cursor.close()

    def get_conn(self):
        conn = self._engine.raw_connection()
        conn.dbapi_connection.isolation_level = None  # explicit transactions via BEGIN
        return conn

    @contextmanager
    def transaction(self, begin_stmt: str = "BEGIN IMMEDIATE"):
        conn = self.get_conn()
        try:
            conn.execute(begin_stmt)
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        conn = self.get_conn()
        try:
            conn.execute(
                """CREATE TABLE IF NOT EXISTS store_snapshot(
                        name TEXT PRIMARY KEY,
                        version INTEGER NOT NULL,
                        payload TEXT NOT NULL,
                        saved_at TEXT NOT NULL
                    )"""
            )
        finally:
            conn.close()

    def close(self) -> None:
        self._engine.dispose()

    def get_synchronous_mode(self) -> str:
        return _current_sync()

    def set_synchronous_mode(self, mode: str) -> str:
        desired = (mode or _DEFAULT_SYNC).upper()
        if desired not in _VALID_SYNC:
            desired = _DEFAULT_SYNC
        set_config_value("sqlite_synchronous", desired)
        conn = self.get_conn()
        try:
            conn.execute(f"PRAGMA synchronous={desired};")
        finally:
            conn.close()
        return desired

    def run_integrity_check(self) -> str:
        conn = self.get_conn()
        try:
            row = conn.execute("PRAGMA integrity_check;").fetchone()
            return row[0] if row else "error"
        finally:
            conn.close()

    def maybe_run_integrity_check(self, force: bool = False) -> Tuple[bool, str]:
        today = date.today()
        if not force:
            last = str(get_config_value("last_integrity_check", ""))
            if last:
                try:
                    last_date = date.fromisoformat(last)
                    if (today - last_date).days < 7:
                        return True, ""
                except ValueError:
                    pass
        result = self.run_integrity_check()
        set_config_value("last_integrity_check", today.isoformat())
        ok = result.strip().lower() == "ok"
        if not ok:
            log.warning("integrity check failed for %s: %s", self.path, result)
        return ok, result

    def iter_rows(self, sql: str, params: tuple = ()) -> Iterator[sqlite3.Row]:
        conn = self.get_conn()
        try:
            for row in conn.execute(sql, params):
                yield row
        finally:
            conn.close()
