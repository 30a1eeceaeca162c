"""Application state for one terminal: entity collections, bill/order lifecycle
and loyalty accounting.

The store is created once per terminal session and handed to whoever needs
it; there is no module-level instance. Every operation runs to completion
under one re-entrant lock, builds the new collections first and swaps them
in at the end, then announces ``<collection>_changed`` on the store's bus.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from ..core.bus import EventBus
from ..core.errors import InvalidTransitionError, OrderNotFoundError
from ..core.lifecycle import CancelPolicy, is_transition_allowed
from ..core.models import (
    BILL_ACTIVE,
    BILL_PAID,
    PAID,
    PAYMENT_METHODS,
    PENDING,
    Bill,
    Category,
    Customer,
    DashboardStats,
    Expense,
    MenuItem,
    Order,
    OrderItem,
    Settings,
    Staff,
    Transaction,
    WaiterCall,
    items_total,
)
from ..core.money import loyalty_points_for, to_units
from . import reports

log = logging.getLogger(__name__)

SNAPSHOT_VERSION = 3

# collection name -> record type
COLLECTIONS: Dict[str, type] = {
    "menu_items": MenuItem,
    "orders": Order,
    "bills": Bill,
    "transactions": Transaction,
    "customers": Customer,
    "staff": Staff,
    "expenses": Expense,
    "waiter_calls": WaiterCall,
    "categories": Category,
}


class SnapshotPersister(Protocol):
    def save(self, snapshot: Dict[str, Any]) -> None: ...


def local_now() -> datetime:
    return datetime.now().astimezone()


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _coerce(record_type: type, values: Iterable[Any]) -> Tuple[Any, ...]:
    out = []
    for value in values or ():
        if isinstance(value, record_type):
            out.append(value)
        elif isinstance(value, Mapping):
            out.append(record_type.from_dict(value))
        else:
            raise TypeError(f"expected {record_type.__name__} or mapping, got {type(value).__name__}")
    return tuple(out)


class AppStore:
    __slots__ = (
        "bus",
        "cancel_policy",
        "_clock",
        "_persister",
        "_lock",
        "_batch_depth",
        "_pending",
        "_data_loaded",
        "_settings",
        "_menu_items",
        "_orders",
        "_bills",
        "_transactions",
        "_customers",
        "_staff",
        "_expenses",
        "_waiter_calls",
        "_categories",
    )

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
        cancel_policy: CancelPolicy | None = None,
        persister: SnapshotPersister | None = None,
    ) -> None:
        self.bus = bus or EventBus()
        self.cancel_policy = cancel_policy or CancelPolicy()
        self._clock = clock or local_now
        self._persister = persister
        self._lock = RLock()
        self._batch_depth = 0
        self._pending: List[str] = []
        self._data_loaded = False
        self._settings = Settings()
        self._menu_items: Tuple[MenuItem, ...] = ()
        self._orders: Tuple[Order, ...] = ()
        self._bills: Tuple[Bill, ...] = ()
        self._transactions: Tuple[Transaction, ...] = ()
        self._customers: Tuple[Customer, ...] = ()
        self._staff: Tuple[Staff, ...] = ()
        self._expenses: Tuple[Expense, ...] = ()
        self._waiter_calls: Tuple[WaiterCall, ...] = ()
        self._categories: Tuple[Category, ...] = ()

    # ----- read access -----------------------------------------------------
    @property
    def menu_items(self) -> Tuple[MenuItem, ...]:
        return self._menu_items

    @property
    def orders(self) -> Tuple[Order, ...]:
        return self._orders

    @property
    def bills(self) -> Tuple[Bill, ...]:
        return self._bills

    @property
    def transactions(self) -> Tuple[Transaction, ...]:
        return self._transactions

    @property
    def customers(self) -> Tuple[Customer, ...]:
        return self._customers

    @property
    def staff(self) -> Tuple[Staff, ...]:
        return self._staff

    @property
    def expenses(self) -> Tuple[Expense, ...]:
        return self._expenses

    @property
    def waiter_calls(self) -> Tuple[WaiterCall, ...]:
        return self._waiter_calls

    @property
    def categories(self) -> Tuple[Category, ...]:
        return self._categories

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def data_loaded(self) -> bool:
        return self._data_loaded

    def now(self) -> datetime:
        return self._clock()

    # ----- commit machinery --------------------------------------------------
    @contextmanager
    def batch(self):
        """Group several operations so listeners and persistence see one change.

        If the block raises, every collection is put back the way it was when
        the outermost batch began and nothing is announced or persisted.
        """
        with self._lock:
            saved = self._capture() if self._batch_depth == 0 else None
            self._batch_depth += 1
            try:
                yield self
            except BaseException:
                if saved is not None:
                    self._rollback(saved)
                raise
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self._flush()

    def _capture(self) -> Dict[str, Any]:
        state = {name: getattr(self, f"_{name}") for name in COLLECTIONS}
        state["settings"] = self._settings
        return state

    def _rollback(self, saved: Mapping[str, Any]) -> None:
        for name, value in saved.items():
            setattr(self, f"_{name}", value)
        self._pending = []

    def _commit(self, **changes: Any) -> None:
        with self._lock:
            for name, value in changes.items():
                setattr(self, f"_{name}", value)
                if name not in self._pending:
                    self._pending.append(name)
            if self._batch_depth == 0:
                self._flush()

    def _flush(self) -> None:
        changed, self._pending = self._pending, []
        if not changed:
            return
        for name in changed:
            self.bus.emit(f"{name}_changed", getattr(self, f"_{name}"))
        self._persist()

    def _persist(self) -> None:
        if self._persister is None:
            return
        try:
            self._persister.save(self.snapshot())
        except Exception:
            # local persistence is best-effort; the in-memory state stays authoritative
            log.warning("could not persist store snapshot", exc_info=True)

    # ----- wholesale replacement (initial load + reconciliation) ------------
    def _replace(self, name: str, values: Iterable[Any]) -> bool:
        new = _coerce(COLLECTIONS[name], values)
        with self._lock:
            if new == getattr(self, f"_{name}"):
                return False
            self._commit(**{name: new})
            return True

    def set_menu_items(self, items: Iterable[Any]) -> bool:
        return self._replace("menu_items", items)

    def set_orders(self, orders: Iterable[Any]) -> bool:
        return self._replace("orders", orders)

    def set_bills(self, bills: Iterable[Any]) -> bool:
        return self._replace("bills", bills)

    def set_transactions(self, transactions: Iterable[Any]) -> bool:
        return self._replace("transactions", transactions)

    def set_customers(self, customers: Iterable[Any]) -> bool:
        return self._replace("customers", customers)

    def set_staff(self, staff: Iterable[Any]) -> bool:
        return self._replace("staff", staff)

    def set_expenses(self, expenses: Iterable[Any]) -> bool:
        return self._replace("expenses", expenses)

    def set_waiter_calls(self, calls: Iterable[Any]) -> bool:
        return self._replace("waiter_calls", calls)

    def set_categories(self, categories: Iterable[Any]) -> bool:
        return self._replace("categories", categories)

    def set_settings(self, settings: Settings | Mapping[str, Any] | None) -> bool:
        if settings is None:
            return False
        new = settings if isinstance(settings, Settings) else Settings.from_dict(settings)
        with self._lock:
            if new == self._settings:
                return False
            self._commit(settings=new)
            return True

    def set_data_loaded(self, loaded: bool) -> None:
        with self._lock:
            if self._data_loaded == bool(loaded):
                return
            self._data_loaded = bool(loaded)
        self.bus.emit("data_loaded_changed", self._data_loaded)

    # ----- menu --------------------------------------------------------------
    def add_menu_item(
        self,
        name: str,
        price: int,
        category: str,
        *,
        available: bool = True,
        description: str | None = None,
        image: str | None = None,
    ) -> MenuItem:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValueError("menu item name is required")
        units = to_units(price)
        if units <= 0:
            raise ValueError("menu item price must be positive")
        item = MenuItem(
            id=_new_id(),
            name=cleaned,
            price=units,
            category=(category or "").strip(),
            available=bool(available),
            description=description,
            image=image,
        )
        with self._lock:
            self._commit(menu_items=self._menu_items + (item,))
        return item

    def update_menu_item(self, item_id: str, **changes: Any) -> Optional[MenuItem]:
        allowed = {"name", "price", "category", "available", "description", "image"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"unknown menu item fields: {', '.join(sorted(unknown))}")
        if "price" in changes:
            changes["price"] = to_units(changes["price"])
            if changes["price"] <= 0:
                raise ValueError("menu item price must be positive")
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise ValueError("menu item name is required")
        with self._lock:
            current = self.get_menu_item(item_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            if updated != current:
                self._commit(
                    menu_items=tuple(updated if m.id == item_id else m for m in self._menu_items)
                )
            return updated

    def delete_menu_item(self, item_id: str) -> bool:
        with self._lock:
            remaining = tuple(m for m in self._menu_items if m.id != item_id)
            if len(remaining) == len(self._menu_items):
                return False
            self._commit(menu_items=remaining)
            return True

    def toggle_item_availability(self, item_id: str) -> Optional[MenuItem]:
        with self._lock:
            current = self.get_menu_item(item_id)
            if current is None:
                return None
            return self.update_menu_item(item_id, available=not current.available)

    def get_menu_item(self, item_id: str) -> Optional[MenuItem]:
        for item in self._menu_items:
            if item.id == item_id:
                return item
        return None

    def available_menu(self) -> Tuple[MenuItem, ...]:
        return tuple(m for m in self._menu_items if m.available)

    # ----- bills ------------------------------------------------------------
    def get_bill(self, bill_id: str) -> Optional[Bill]:
        for bill in self._bills:
            if bill.id == bill_id:
                return bill
        return None

    def get_active_bill_for_table(self, table_number: int) -> Optional[Bill]:
        for bill in self._bills:
            if bill.table_number == table_number and bill.status == BILL_ACTIVE:
                return bill
        return None

    def create_bill(self, table_number: int, customer_phone: str) -> str:
        """Return the table's active bill id, opening a new bill if there is none."""
        table = int(table_number)
        if table <= 0:
            raise ValueError("table number must be positive")
        phone = (customer_phone or "").strip()
        with self._lock:
            existing = self.get_active_bill_for_table(table)
            if existing is not None:
                if phone and phone not in existing.customer_phones:
                    updated = replace(existing, customer_phones=existing.customer_phones + (phone,))
                    self._commit(
                        bills=tuple(updated if b.id == existing.id else b for b in self._bills)
                    )
                return existing.id

            bill = Bill(
                id=_new_id(),
                table_number=table,
                customer_phones=(phone,) if phone else (),
                created_at=self._clock(),
            )
            self._commit(bills=self._bills + (bill,))
            log.debug("opened bill %s for table %s", bill.id, table)
            return bill.id

    def add_order_to_bill(self, bill_id: str, order: Order) -> bool:
        with self._lock:
            bill = self.get_bill(bill_id)
            if bill is None or bill.status != BILL_ACTIVE:
                log.warning("cannot add order %s to bill %s: bill missing or paid", order.id, bill_id)
                return False
            if any(o.id == order.id for o in bill.orders):
                return True
            orders = bill.orders + (order,)
            subtotal = sum(o.total for o in orders)
            phones = bill.customer_phones
            if order.customer_phone and order.customer_phone not in phones:
                phones = phones + (order.customer_phone,)
            updated = replace(
                bill,
                orders=orders,
                customer_phones=phones,
                subtotal=subtotal,
                total=max(subtotal - bill.discount, 0),
            )
            self._commit(bills=tuple(updated if b.id == bill_id else b for b in self._bills))
            return True

    def get_active_bills(self) -> Tuple[Bill, ...]:
        return tuple(b for b in self._bills if b.status == BILL_ACTIVE)

    def pay_bill(self, bill_id: str, payment_method: str, discount: int = 0) -> Optional[Transaction]:
        """Settle an active bill.

        Marks the bill paid, writes exactly one transaction, moves every order
        on the bill to ``paid`` and credits loyalty points to every phone on
        the bill, as one change. Returns ``None`` (and changes nothing) when
        the bill is unknown or already paid.
        """
        if payment_method not in PAYMENT_METHODS:
            raise ValueError(f"unsupported payment method: {payment_method!r}")
        discount_units = to_units(discount)
        if discount_units < 0:
            raise ValueError("discount cannot be negative")

        with self._lock:
            bill = self.get_bill(bill_id)
            if bill is None or bill.status != BILL_ACTIVE:
                log.info("pay_bill(%s) ignored: bill missing or already paid", bill_id)
                return None

            now = self._clock()
            total = max(bill.subtotal - discount_units, 0)
            order_ids = {o.id for o in bill.orders}
            paid_orders = tuple(replace(o, status=PAID, updated_at=now) for o in bill.orders)
            paid_bill = replace(
                bill,
                orders=paid_orders,
                status=BILL_PAID,
                discount=discount_units,
                total=total,
                payment_method=payment_method,
                paid_at=now,
            )
            txn = Transaction(
                id=_new_id(),
                bill_id=bill.id,
                table_number=bill.table_number,
                customer_phones=bill.customer_phones,
                total=total,
                discount=discount_units,
                payment_method=payment_method,
                paid_at=now,
                items=tuple(item for o in bill.orders for item in o.items),
            )
            orders = tuple(
                replace(o, status=PAID, updated_at=now) if o.id in order_ids else o
                for o in self._orders
            )
            points = loyalty_points_for(total)
            customers = self._customers
            for phone in bill.customer_phones:
                customers = self._credit_customer(customers, phone, points, spent=total)

            self._commit(
                bills=tuple(paid_bill if b.id == bill_id else b for b in self._bills),
                transactions=self._transactions + (txn,),
                orders=orders,
                customers=customers,
            )
        log.info(
            "bill %s paid: table=%s total=%s discount=%s method=%s",
            bill_id,
            txn.table_number,
            txn.total,
            txn.discount,
            payment_method,
        )
        return txn

    # ----- orders -------------------------------------------------------------
    def get_order(self, order_id: str) -> Optional[Order]:
        for order in self._orders:
            if order.id == order_id:
                return order
        return None

    def _resolve_item(self, raw: Any) -> OrderItem:
        if isinstance(raw, OrderItem):
            item = raw
        elif isinstance(raw, Mapping):
            menu_id = str(raw.get("menuItemId") or raw.get("menu_item_id") or raw.get("id") or "")
            menu_item = self.get_menu_item(menu_id) if menu_id else None
            name = raw.get("name") or (menu_item.name if menu_item else menu_id)
            price = raw.get("price")
            if price is None and menu_item is not None:
                price = menu_item.price
            item = OrderItem(
                menu_item_id=menu_id or str(name),
                name=str(name),
                qty=int(raw.get("qty", 1)),
                price=to_units(price),
            )
        else:
            raise TypeError(f"unsupported order item: {type(raw).__name__}")
        if item.qty < 1:
            raise ValueError(f"quantity for '{item.name}' must be at least 1")
        if item.price < 0:
            raise ValueError(f"price for '{item.name}' cannot be negative")
        if not item.id:
            item = replace(item, id=_new_id())
        return item

    def add_order(
        self,
        table_number: int,
        customer_phone: str,
        items: Iterable[Any],
        *,
        notes: str | None = None,
    ) -> Order:
        """Record a new ``pending`` order; its total is frozen from the item prices."""
        table = int(table_number)
        if table <= 0:
            raise ValueError("table number must be positive")
        with self._lock:
            resolved = tuple(self._resolve_item(raw) for raw in items)
            if not resolved:
                raise ValueError("an order needs at least one item")
            now = self._clock()
            order = Order(
                id=_new_id(),
                table_number=table,
                customer_phone=(customer_phone or "").strip(),
                items=resolved,
                status=PENDING,
                created_at=now,
                updated_at=now,
                total=items_total(resolved),
                notes=(notes or "").strip() or None,
            )
            self._commit(orders=self._orders + (order,))
        log.debug("order %s added for table %s total=%s", order.id, table, order.total)
        return order

    def update_order_status(self, order_id: str, status: str) -> Order:
        with self._lock:
            order = self.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.status == status:
                return order
            if not is_transition_allowed(order.status, status, self.cancel_policy):
                raise InvalidTransitionError(order_id, order.status, status)
            updated = replace(order, status=status, updated_at=self._clock())
            self._commit(orders=tuple(updated if o.id == order_id else o for o in self._orders))
            return updated

    def get_orders_by_status(self, status: str) -> Tuple[Order, ...]:
        return tuple(o for o in self._orders if o.status == status)

    def get_pending_orders(self) -> Tuple[Order, ...]:
        return self.get_orders_by_status(PENDING)

    def place_order(
        self,
        table_number: int,
        customer_phone: str,
        items: Iterable[Any],
        *,
        notes: str | None = None,
        customer_name: str | None = None,
    ) -> Tuple[Order, str]:
        """Open (or join) the table's bill, count the visit, add the order to the bill."""
        with self.batch():
            bill_id = self.create_bill(table_number, customer_phone)
            if (customer_phone or "").strip():
                self.add_or_update_customer(customer_phone, customer_name)
            order = self.add_order(table_number, customer_phone, items, notes=notes)
            self.add_order_to_bill(bill_id, order)
        return order, bill_id

    # ----- customers & loyalty -------------------------------------------------
    def get_customer(self, phone: str) -> Optional[Customer]:
        key = (phone or "").strip()
        for customer in self._customers:
            if customer.phone == key:
                return customer
        return None

    def _credit_customer(
        self,
        customers: Tuple[Customer, ...],
        phone: str,
        points: int,
        *,
        spent: int = 0,
    ) -> Tuple[Customer, ...]:
        for idx, customer in enumerate(customers):
            if customer.phone == phone:
                updated = replace(
                    customer,
                    loyalty_points=customer.loyalty_points + points,
                    total_spent=customer.total_spent + spent,
                )
                return customers[:idx] + (updated,) + customers[idx + 1 :]
        # a phone on a bill without a customer record still earns its points
        return customers + (Customer(phone=phone, loyalty_points=points, total_spent=spent),)

    def add_or_update_customer(self, phone: str, name: str | None = None) -> Customer:
        key = (phone or "").strip()
        if not key:
            raise ValueError("customer phone is required")
        cleaned_name = (name or "").strip() or None
        with self._lock:
            now = self._clock()
            existing = self.get_customer(key)
            if existing is not None:
                updated = replace(
                    existing,
                    name=cleaned_name or existing.name,
                    visits=existing.visits + 1,
                    last_visit=now,
                )
                customers = tuple(updated if c.phone == key else c for c in self._customers)
            else:
                updated = Customer(phone=key, name=cleaned_name, visits=1, last_visit=now)
                customers = self._customers + (updated,)
            self._commit(customers=customers)
            return updated

    def add_loyalty_points(self, phone: str, points: int) -> int:
        """Credit points to a known customer. Unknown phones are left alone and get 0."""
        if points < 0:
            raise ValueError("points must not be negative")
        key = (phone or "").strip()
        if not key:
            raise ValueError("customer phone is required")
        with self._lock:
            if self.get_customer(key) is None:
                return 0
            customers = self._credit_customer(self._customers, key, int(points))
            self._commit(customers=customers)
            return self.get_customer(key).loyalty_points

    def redeem_loyalty_points(self, phone: str, points: int) -> int:
        """Spend points; the balance never drops below zero. Returns the new balance."""
        if points < 0:
            raise ValueError("points must not be negative")
        with self._lock:
            customer = self.get_customer(phone)
            if customer is None:
                return 0
            balance = max(0, customer.loyalty_points - int(points))
            if balance != customer.loyalty_points:
                updated = replace(customer, loyalty_points=balance)
                self._commit(
                    customers=tuple(updated if c.phone == customer.phone else c for c in self._customers)
                )
            return balance

    # ----- waiter calls --------------------------------------------------------
    def acknowledge_waiter_call(self, call_id: str) -> bool:
        with self._lock:
            for call in self._waiter_calls:
                if call.id != call_id:
                    continue
                if call.status == "acknowledged":
                    return True
                updated = replace(call, status="acknowledged", acknowledged_at=self._clock())
                self._commit(
                    waiter_calls=tuple(updated if c.id == call_id else c for c in self._waiter_calls)
                )
                return True
            return False

    # ----- derived ------------------------------------------------------------
    def get_today_stats(self) -> DashboardStats:
        with self._lock:
            return reports.today_stats(
                self._transactions, self._orders, self._bills, now=self._clock()
            )

    # ----- snapshot ------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            collections = {
                name: [record.to_dict() for record in getattr(self, f"_{name}")]
                for name in COLLECTIONS
            }
            return {
                "version": SNAPSHOT_VERSION,
                "collections": collections,
                "settings": self._settings.to_dict(),
            }

    def restore(self, snapshot: Mapping[str, Any]) -> bool:
        """Load a persisted snapshot; snapshots from another version are ignored."""
        if snapshot.get("version") != SNAPSHOT_VERSION:
            log.info(
                "discarding store snapshot version %s (expected %s)",
                snapshot.get("version"),
                SNAPSHOT_VERSION,
            )
            return False
        collections = snapshot.get("collections") or {}
        persister, self._persister = self._persister, None
        try:
            with self.batch():
                for name in COLLECTIONS:
                    self._replace(name, collections.get(name) or ())
                self.set_settings(snapshot.get("settings") or None)
        finally:
            self._persister = persister
        return True
