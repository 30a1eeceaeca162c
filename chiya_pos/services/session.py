"""One terminal's runtime: store, backend gateway, push channel and reconciler.

Mutations are applied to the store first and then written to the backend
of record on a best-effort basis; a failed write is logged and the local
result stands until the next reconciliation says otherwise.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Iterable, List, Optional, Set, Tuple

from ..core.errors import GatewayError
from ..core.models import CANCELLED, PREPARING, Order, Transaction
from .channel import CONNECTION, PUSH_EVENTS, SyncChannel
from .gateway import BackendGateway
from .persistence import SnapshotStore, SnapshotWriter
from .printer import TicketPrinter
from .store import AppStore
from .sync import EVENT_FAMILIES, LoadReport, Reconciler

log = logging.getLogger(__name__)


class TerminalSession:
    def __init__(
        self,
        store: AppStore,
        gateway: BackendGateway,
        channel: SyncChannel,
        reconciler: Reconciler | None = None,
        *,
        snapshots: SnapshotStore | None = None,
        writer: SnapshotWriter | None = None,
        printer: TicketPrinter | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.channel = channel
        self.reconciler = reconciler or Reconciler(store, gateway)
        self.snapshots = snapshots
        self.writer = writer
        self.printer = printer
        self._initial_load_done = False
        self._load_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._deferred: Set[str] = set()
        self._unsubscribers = [channel.on(CONNECTION, self._on_connection)]
        for event in PUSH_EVENTS:
            self._unsubscribers.append(channel.on(event, self._on_push))

    @property
    def initial_load_done(self) -> bool:
        return self._initial_load_done

    # ----- startup ---------------------------------------------------------------
    async def start(self) -> LoadReport:
        """Bring the terminal up; concurrent callers share one load.

        Returns a report with ``reachable=False`` when the backend does not
        answer its health check; calling ``start`` again retries.
        """
        task = self._load_task
        if task is None or (task.done() and not self._initial_load_done):
            task = self._load_task = asyncio.get_running_loop().create_task(self._start())
        return await asyncio.shield(task)

    async def _start(self) -> LoadReport:
        if self.snapshots is not None and not self.store.data_loaded:
            snapshot = self.snapshots.load()
            if snapshot:
                self.store.restore(snapshot)

        if not await self.gateway.check_backend_health():
            log.error("backend at %s is not reachable", self.gateway.base_url)
            return LoadReport(reachable=False)

        await self.channel.connect()
        report = await self.reconciler.load_all()
        self.store.set_data_loaded(True)
        self._initial_load_done = True

        deferred, self._deferred = self._deferred, set()
        for family in sorted(deferred):
            self.reconciler.request(family)
        return report

    # ----- push handling -------------------------------------------------------
    def _on_connection(self, message: dict) -> None:
        if message.get("status") != "connected":
            return
        if not self._initial_load_done:
            # the initial load is about to fetch everything anyway
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        log.info("sync channel reconnected; refreshing all collections")
        self._refresh_task = asyncio.get_running_loop().create_task(self.reconciler.refresh_all())

    def _on_push(self, message: dict) -> None:
        event = message.get("type", "")
        if self._initial_load_done:
            self.reconciler.handle_event(event, message)
        else:
            self._deferred.update(EVENT_FAMILIES.get(event, ()))

    # ----- write-through operations ----------------------------------------------
    async def _persist(self, what: str, call) -> Any:
        try:
            return await call
        except GatewayError as exc:
            log.warning("could not sync %s to backend: %s", what, exc)
            return None

    async def place_order(
        self,
        table_number: int,
        customer_phone: str,
        items: Iterable[Any],
        *,
        notes: str | None = None,
        customer_name: str | None = None,
    ) -> Tuple[Order, str]:
        order, bill_id = self.store.place_order(
            table_number, customer_phone, items, notes=notes, customer_name=customer_name
        )
        if self.printer is not None:
            try:
                self.printer.print_order_tickets(order, self.store.settings, self.store.menu_items)
            except OSError:
                log.exception("could not write tickets for order %s", order.id)
        await self._persist(f"order {order.id}", self.gateway.orders.create(order))
        bill = self.store.get_bill(bill_id)
        if bill is not None:
            if len(bill.orders) == 1:
                await self._persist(f"bill {bill_id}", self.gateway.bills.create(bill))
            else:
                await self._persist(
                    f"bill {bill_id}", self.gateway.bills.update(bill_id, bill.to_dict())
                )
        customer = self.store.get_customer(customer_phone)
        if customer is not None:
            await self._persist(
                f"customer {customer.phone}",
                self.gateway.customers.update(customer.phone, customer.to_dict()),
            )
        return order, bill_id

    async def update_order_status(self, order_id: str, status: str) -> Order:
        order = self.store.update_order_status(order_id, status)
        await self._persist(
            f"order {order_id} status", self.gateway.orders.update_status(order_id, status)
        )
        return order

    async def accept_order(self, order_id: str) -> Order:
        return await self.update_order_status(order_id, PREPARING)

    async def reject_order(self, order_id: str) -> Order:
        return await self.update_order_status(order_id, CANCELLED)

    async def pay_bill(self, bill_id: str, payment_method: str, discount: int = 0) -> Optional[Transaction]:
        txn = self.store.pay_bill(bill_id, payment_method, discount)
        if txn is None:
            return None
        await self._persist(f"bill {bill_id} payment", self.gateway.bills.pay(bill_id, payment_method, txn.discount))
        await self._persist(f"transaction {txn.id}", self.gateway.transactions.create(txn))
        for phone in txn.customer_phones:
            customer = self.store.get_customer(phone)
            if customer is not None:
                await self._persist(
                    f"customer {phone}", self.gateway.customers.update(phone, customer.to_dict())
                )
        return txn

    async def pay_bills(self, bill_ids: Iterable[str], payment_method: str) -> List[Transaction]:
        """Settle several selected bills with one method; skips bills that cannot be paid."""
        paid: List[Transaction] = []
        for bill_id in bill_ids:
            txn = await self.pay_bill(bill_id, payment_method)
            if txn is not None:
                paid.append(txn)
        return paid

    async def acknowledge_waiter_call(self, call_id: str) -> bool:
        if not self.store.acknowledge_waiter_call(call_id):
            return False
        await self._persist(f"waiter call {call_id}", self.gateway.waiter_calls.acknowledge(call_id))
        return True

    async def toggle_item_availability(self, item_id: str):
        item = self.store.toggle_item_availability(item_id)
        if item is not None:
            await self._persist(
                f"menu item {item_id}",
                self.gateway.menu.update(item_id, {"available": item.available}),
            )
        return item

    # ----- shutdown ----------------------------------------------------------------
    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.channel.close()
        await self.reconciler.drain()
        if self.writer is not None:
            await self.writer.close()
        await self.gateway.aclose()
