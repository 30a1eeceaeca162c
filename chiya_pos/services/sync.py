"""Bulk loading and push-driven reconciliation of the store.

Each entity family has one lane. A lane is either idle or fetching; an
update event that arrives while its lane is fetching only marks the lane
dirty, and the lane runs exactly one more fetch once the current one is
done. Fetched collections replace the store's copy wholesale.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from ..core.errors import GatewayError
from .gateway import BackendGateway
from .store import AppStore

log = logging.getLogger(__name__)

IDLE = "idle"
FETCHING = "fetching"


@dataclass(frozen=True, slots=True)
class Family:
    name: str
    fetch: Callable[[BackendGateway], Awaitable[Any]]
    apply: Callable[[AppStore, Any], bool]
    empty: Any = ()


FAMILIES: Tuple[Family, ...] = (
    Family("menu", lambda g: g.menu.get_all(), AppStore.set_menu_items),
    Family("categories", lambda g: g.categories.get_all(), AppStore.set_categories),
    Family("orders", lambda g: g.orders.get_all(), AppStore.set_orders),
    Family("bills", lambda g: g.bills.get_all(), AppStore.set_bills),
    Family("transactions", lambda g: g.transactions.get_all(), AppStore.set_transactions),
    Family("customers", lambda g: g.customers.get_all(), AppStore.set_customers),
    Family("staff", lambda g: g.staff.get_all(), AppStore.set_staff),
    Family("settings", lambda g: g.settings.get(), AppStore.set_settings, None),
    Family("expenses", lambda g: g.expenses.get_all(), AppStore.set_expenses),
    Family("waiter_calls", lambda g: g.waiter_calls.get_all(), AppStore.set_waiter_calls),
)
FAMILY_BY_NAME: Dict[str, Family] = {f.name: f for f in FAMILIES}

# push event type -> families it invalidates
EVENT_FAMILIES: Dict[str, Tuple[str, ...]] = {
    "MENU_UPDATE": ("menu",),
    "STAFF_UPDATE": ("staff",),
    "ORDER_UPDATE": ("orders",),
    "BILL_UPDATE": ("bills", "transactions", "orders"),
    "CUSTOMER_UPDATE": ("customers",),
    "WAITER_CALL": ("waiter_calls",),
    "SETTINGS_UPDATE": ("settings",),
    "EXPENSE_UPDATE": ("expenses",),
    "CATEGORIES_UPDATE": ("categories",),
}


@dataclass(frozen=True, slots=True)
class FetchResult:
    family: str
    ok: bool
    data: Any = None
    reason: Optional[str] = None


@dataclass(slots=True)
class LoadReport:
    results: List[FetchResult] = field(default_factory=list)
    reachable: bool = True

    @property
    def ok(self) -> bool:
        return self.reachable and all(r.ok for r in self.results)

    @property
    def failed_families(self) -> Tuple[str, ...]:
        return tuple(r.family for r in self.results if not r.ok)

    def as_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "reachable": self.reachable,
            "failed": {r.family: r.reason for r in self.results if not r.ok},
        }


class _Lane:
    __slots__ = ("state", "dirty", "task", "fetches")

    def __init__(self) -> None:
        self.state = IDLE
        self.dirty = False
        self.task: Optional[asyncio.Task] = None
        self.fetches = 0


class Reconciler:
    def __init__(self, store: AppStore, gateway: BackendGateway) -> None:
        self.store = store
        self.gateway = gateway
        self._lanes: Dict[str, _Lane] = {f.name: _Lane() for f in FAMILIES}

    async def fetch(self, family: str) -> FetchResult:
        entry = FAMILY_BY_NAME[family]
        try:
            data = await entry.fetch(self.gateway)
        except GatewayError as exc:
            log.warning("fetch of %s failed: %s", family, exc.reason)
            return FetchResult(family, False, entry.empty, reason=exc.reason)
        except Exception as exc:
            log.exception("fetch of %s raised unexpectedly", family)
            return FetchResult(family, False, entry.empty, reason=f"{type(exc).__name__}: {exc}")
        return FetchResult(family, True, data)

    # ----- bulk load ------------------------------------------------------------
    async def load_all(self) -> LoadReport:
        """Fetch every family concurrently; a failed family is loaded as empty."""
        results = await asyncio.gather(*(self.fetch(f.name) for f in FAMILIES))
        with self.store.batch():
            for result in results:
                FAMILY_BY_NAME[result.family].apply(self.store, result.data)
        report = LoadReport(results=list(results))
        if report.failed_families:
            log.warning("initial load degraded for: %s", ", ".join(report.failed_families))
        else:
            log.info("initial load complete (%d families)", len(results))
        return report

    # ----- reconciliation ---------------------------------------------------------
    def lane_state(self, family: str) -> str:
        return self._lanes[family].state

    def fetch_count(self, family: str) -> int:
        return self._lanes[family].fetches

    def handle_event(self, event_type: str, payload: Any = None) -> Tuple[str, ...]:
        families = EVENT_FAMILIES.get(event_type)
        if families is None:
            log.debug("no reconciliation for event %s", event_type)
            return ()
        for family in families:
            self.request(family)
        return families

    def request(self, family: str) -> asyncio.Task:
        """Schedule a refetch of *family*, coalescing with one already running."""
        lane = self._lanes[family]
        if lane.state == FETCHING and lane.task is not None:
            lane.dirty = True
            return lane.task
        lane.state = FETCHING
        lane.dirty = False
        lane.task = asyncio.get_running_loop().create_task(self._run_lane(family))
        lane.task.add_done_callback(self._lane_finished)
        return lane.task

    @staticmethod
    def _lane_finished(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("reconciliation lane crashed", exc_info=exc)

    async def _run_lane(self, family: str) -> None:
        lane = self._lanes[family]
        entry = FAMILY_BY_NAME[family]
        try:
            while True:
                lane.dirty = False
                lane.fetches += 1
                result = await self.fetch(family)
                if result.ok:
                    entry.apply(self.store, result.data)
                # a failed refetch keeps whatever the store already holds
                if not lane.dirty:
                    break
        finally:
            lane.state = IDLE
            lane.task = None

    async def refresh_all(self, families: Iterable[str] | None = None) -> None:
        names = tuple(families) if families is not None else tuple(FAMILY_BY_NAME)
        # crashed lanes are logged by their done callback
        await asyncio.gather(*(self.request(name) for name in names), return_exceptions=True)

    async def drain(self) -> None:
        """Wait until every lane is idle."""
        while True:
            tasks = [lane.task for lane in self._lanes.values() if lane.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)
