"""Headless bootstrap for a Chiya POS terminal."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from .core.config_store import get_api_base_url, get_cancel_from, get_config_value, set_api_base_url
from .core.db import LocalDatabase
from .core.lifecycle import CancelPolicy
from .core.logging_setup import setup_logging
from .services.channel import SyncChannel, ws_url_for
from .services.gateway import BackendGateway
from .services.persistence import SnapshotStore, SnapshotWriter
from .services.printer import TicketPrinter
from .services.session import TerminalSession
from .services.store import AppStore

log = logging.getLogger("chiya_pos")


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chiya-pos", description="Run a Chiya POS terminal core.")
    parser.add_argument("--server", help="backend base URL (saved for next start)")
    parser.add_argument("--ws", help="push channel URL (defaults to <server>/ws)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING ...")
    parser.add_argument("--json-logs", action="store_true", help="emit JSON log lines")
    parser.add_argument("--terminal", default=None, help="terminal id shown in log lines")
    parser.add_argument("--retry", type=float, default=10.0, help="seconds between connection attempts")
    return parser.parse_args(argv)


def build_session(server: str, ws_url: Optional[str] = None) -> TerminalSession:
    db = LocalDatabase()
    db.init_db()
    ok, result = db.maybe_run_integrity_check()
    if not ok:
        log.error("local database failed its integrity check: %s", result)
    snapshots = SnapshotStore(db)
    writer = SnapshotWriter(snapshots)
    store = AppStore(
        cancel_policy=CancelPolicy.from_statuses(get_cancel_from()),
        persister=writer,
    )
    gateway = BackendGateway(server)
    channel = SyncChannel(ws_url or ws_url_for(server))
    return TerminalSession(
        store, gateway, channel, snapshots=snapshots, writer=writer, printer=TicketPrinter()
    )


def _log_stats(session: TerminalSession) -> None:
    stats = session.store.get_today_stats()
    log.info("today: %s", stats.as_dict())


async def run(session: TerminalSession, retry_seconds: float = 10.0) -> None:
    try:
        while True:
            report = await session.start()
            if report.reachable:
                break
            log.warning("cannot reach the backend; retrying in %.0fs", retry_seconds)
            await asyncio.sleep(retry_seconds)
        if report.failed_families:
            log.warning("started with empty collections: %s", ", ".join(report.failed_families))
        unsubscribe = session.store.bus.subscribe("transactions_changed", lambda _txns: _log_stats(session))
        _log_stats(session)
        try:
            await asyncio.Event().wait()
        finally:
            unsubscribe()
    finally:
        await session.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level, json_output=args.json_logs, terminal_id=args.terminal)
    if args.server:
        set_api_base_url(args.server)
    server = get_api_base_url()
    ws_url = args.ws or str(get_config_value("ws_url", "") or "") or None
    log.info("starting terminal against %s", server)
    session = build_session(server, ws_url)
    try:
        asyncio.run(run(session, args.retry))
    except KeyboardInterrupt:
        log.info("terminal stopped")
    return 0
