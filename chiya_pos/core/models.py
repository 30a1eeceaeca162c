"""Entity records held by the application store.

Records are immutable; the store swaps whole records when something changes.
``from_dict`` accepts the backend's camelCase payloads (and the older field
names some backends still send), ``to_dict`` produces camelCase again.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .money import to_units

# order status -------------------------------------------------------------
PENDING = "pending"
ACCEPTED = "accepted"
PREPARING = "preparing"
READY = "ready"
SERVED = "served"
PAID = "paid"
CANCELLED = "cancelled"

ORDER_STATUSES = (PENDING, ACCEPTED, PREPARING, READY, SERVED, PAID, CANCELLED)
ACTIVE_ORDER_STATUSES = (PENDING, ACCEPTED, PREPARING, READY)

# bill status ---------------------------------------------------------------
BILL_ACTIVE = "active"
BILL_PAID = "paid"

PAYMENT_METHODS = ("cash", "fonepay")
EXPENSE_CATEGORIES = ("ingredients", "utilities", "salary", "maintenance", "other")
STAFF_ROLES = ("admin", "counter")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _str_tuple(values: Any) -> Tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        values = [values]
    out: list[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in out:
            out.append(text)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    name: str
    sort_order: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Category":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            sort_order=int(_pick(data, "sortOrder", "sort_order", default=0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "sortOrder": self.sort_order}


@dataclass(frozen=True, slots=True)
class MenuItem:
    id: str
    name: str
    price: int
    category: str
    available: bool = True
    description: Optional[str] = None
    image: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MenuItem":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            price=to_units(data.get("price")),
            category=str(data.get("category", "") or ""),
            available=bool(data.get("available", True)),
            description=data.get("description"),
            image=data.get("image"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "category": self.category,
            "available": self.available,
        }
        if self.description is not None:
            out["description"] = self.description
        if self.image is not None:
            out["image"] = self.image
        return out


@dataclass(frozen=True, slots=True)
class OrderItem:
    menu_item_id: str
    name: str
    qty: int
    price: int
    id: str = ""

    @property
    def line_total(self) -> int:
        return self.qty * self.price

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OrderItem":
        menu_item_id = str(_pick(data, "menuItemId", "menu_item_id", "id", default=""))
        return cls(
            id=str(data.get("id", "") or ""),
            menu_item_id=menu_item_id,
            name=str(data.get("name", "") or menu_item_id),
            qty=int(data.get("qty", 1)),
            price=to_units(data.get("price")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "menuItemId": self.menu_item_id,
            "name": self.name,
            "qty": self.qty,
            "price": self.price,
        }


def items_total(items: Iterable[OrderItem]) -> int:
    return sum(item.line_total for item in items)


@dataclass(frozen=True, slots=True)
class Order:
    id: str
    table_number: int
    customer_phone: str
    items: Tuple[OrderItem, ...]
    status: str
    created_at: datetime
    total: int
    updated_at: Optional[datetime] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Order":
        items = tuple(OrderItem.from_dict(i) for i in data.get("items") or ())
        created = parse_timestamp(_pick(data, "createdAt", "time")) or utcnow()
        total = _pick(data, "total")
        return cls(
            id=str(data["id"]),
            table_number=int(_pick(data, "tableNumber", "table", default=0)),
            customer_phone=str(_pick(data, "customerPhone", "phone", default="")),
            items=items,
            status=str(data.get("status", PENDING)),
            created_at=created,
            updated_at=parse_timestamp(data.get("updatedAt")),
            total=items_total(items) if total is None else to_units(total),
            notes=data.get("notes") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "tableNumber": self.table_number,
            "customerPhone": self.customer_phone,
            "items": [i.to_dict() for i in self.items],
            "status": self.status,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at or self.created_at),
            "total": self.total,
        }
        if self.notes:
            out["notes"] = self.notes
        return out


@dataclass(frozen=True, slots=True)
class Bill:
    id: str
    table_number: int
    customer_phones: Tuple[str, ...] = ()
    orders: Tuple[Order, ...] = ()
    subtotal: int = 0
    discount: int = 0
    total: int = 0
    status: str = BILL_ACTIVE
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == BILL_ACTIVE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Bill":
        status = str(data.get("status", BILL_ACTIVE))
        if status == "unpaid":
            status = BILL_ACTIVE
        orders = tuple(Order.from_dict(o) for o in data.get("orders") or ())
        subtotal = _pick(data, "subtotal")
        subtotal_units = sum(o.total for o in orders) if subtotal is None else to_units(subtotal)
        discount = to_units(data.get("discount"))
        total = _pick(data, "total")
        return cls(
            id=str(data["id"]),
            table_number=int(_pick(data, "tableNumber", "table", default=0)),
            customer_phones=_str_tuple(_pick(data, "customerPhones", "customers")),
            orders=orders,
            subtotal=subtotal_units,
            discount=discount,
            total=max(subtotal_units - discount, 0) if total is None else to_units(total),
            status=status,
            payment_method=data.get("paymentMethod"),
            paid_at=parse_timestamp(data.get("paidAt")),
            created_at=parse_timestamp(data.get("createdAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "tableNumber": self.table_number,
            "customerPhones": list(self.customer_phones),
            "orders": [o.to_dict() for o in self.orders],
            "subtotal": self.subtotal,
            "discount": self.discount,
            "total": self.total,
            "status": self.status,
            "createdAt": format_timestamp(self.created_at),
        }
        if self.payment_method:
            out["paymentMethod"] = self.payment_method
        if self.paid_at:
            out["paidAt"] = format_timestamp(self.paid_at)
        return out


@dataclass(frozen=True, slots=True)
class Transaction:
    id: str
    bill_id: str
    table_number: int
    customer_phones: Tuple[str, ...]
    total: int
    discount: int
    payment_method: str
    paid_at: datetime
    items: Tuple[OrderItem, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Transaction":
        return cls(
            id=str(data["id"]),
            bill_id=str(data.get("billId", "")),
            table_number=int(_pick(data, "tableNumber", "table", default=0)),
            customer_phones=_str_tuple(_pick(data, "customerPhones", "customers")),
            total=to_units(data.get("total")),
            discount=to_units(data.get("discount")),
            payment_method=str(data.get("paymentMethod", "cash")),
            paid_at=parse_timestamp(data.get("paidAt")) or utcnow(),
            items=tuple(OrderItem.from_dict(i) for i in data.get("items") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "billId": self.bill_id,
            "tableNumber": self.table_number,
            "customerPhones": list(self.customer_phones),
            "total": self.total,
            "discount": self.discount,
            "paymentMethod": self.payment_method,
            "paidAt": format_timestamp(self.paid_at),
            "items": [i.to_dict() for i in self.items],
        }


@dataclass(frozen=True, slots=True)
class Customer:
    phone: str
    name: Optional[str] = None
    visits: int = 0
    loyalty_points: int = 0
    total_spent: int = 0
    last_visit: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Customer":
        return cls(
            phone=str(data["phone"]),
            name=data.get("name") or None,
            visits=int(_pick(data, "visits", "totalOrders", default=0)),
            loyalty_points=max(0, int(_pick(data, "loyaltyPoints", "points", default=0))),
            total_spent=to_units(data.get("totalSpent")),
            last_visit=parse_timestamp(data.get("lastVisit")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "phone": self.phone,
            "visits": self.visits,
            "loyaltyPoints": self.loyalty_points,
            "totalSpent": self.total_spent,
            "lastVisit": format_timestamp(self.last_visit),
        }
        if self.name:
            out["name"] = self.name
        return out


@dataclass(frozen=True, slots=True)
class Staff:
    id: str
    username: str
    role: str
    name: str = ""
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Staff":
        # the backend record carries a password; it never enters the store
        return cls(
            id=str(data["id"]),
            username=str(data.get("username", "")),
            role=str(data.get("role", "counter")),
            name=str(data.get("name", "") or ""),
            created_at=parse_timestamp(data.get("createdAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "name": self.name,
            "createdAt": format_timestamp(self.created_at),
        }


_SETTINGS_FIELDS = {
    "restaurant_name": "restaurantName",
    "table_count": "tableCount",
    "wifi_ssid": "wifiSSID",
    "wifi_password": "wifiPassword",
    "base_url": "baseUrl",
    "logo": "logo",
    "instagram_url": "instagramUrl",
    "facebook_url": "facebookUrl",
    "tiktok_url": "tiktokUrl",
    "google_review_url": "googleReviewUrl",
    "counter_as_admin": "counterAsAdmin",
    "kot_printing_enabled": "kotPrintingEnabled",
    "dual_printer_enabled": "dualPrinterEnabled",
    "kds_enabled": "kdsEnabled",
    "bar_categories": "barCategories",
}


@dataclass(frozen=True, slots=True)
class Settings:
    restaurant_name: str = "Restaurant"
    table_count: int = 10
    wifi_ssid: str = ""
    wifi_password: str = ""
    base_url: str = ""
    logo: Optional[str] = None
    instagram_url: Optional[str] = None
    facebook_url: Optional[str] = None
    tiktok_url: Optional[str] = None
    google_review_url: Optional[str] = None
    counter_as_admin: bool = False
    kot_printing_enabled: bool = False
    dual_printer_enabled: bool = False
    kds_enabled: bool = False
    bar_categories: Tuple[str, ...] = field(default=("Tea", "Cold Drink"))

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Settings":
        if not data:
            return cls()
        kwargs: Dict[str, Any] = {}
        for attr, key in _SETTINGS_FIELDS.items():
            if key in data and data[key] is not None:
                kwargs[attr] = data[key]
        if "table_count" in kwargs:
            kwargs["table_count"] = int(kwargs["table_count"])
        if "bar_categories" in kwargs:
            kwargs["bar_categories"] = _str_tuple(kwargs["bar_categories"])
        for flag in ("counter_as_admin", "kot_printing_enabled", "dual_printer_enabled", "kds_enabled"):
            if flag in kwargs:
                kwargs[flag] = bool(kwargs[flag])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for attr, key in _SETTINGS_FIELDS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            out[key] = list(value) if isinstance(value, tuple) else value
        return out


@dataclass(frozen=True, slots=True)
class Expense:
    id: str
    amount: int
    description: str
    category: str = "other"
    created_at: Optional[datetime] = None
    created_by: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Expense":
        category = str(data.get("category", "other"))
        return cls(
            id=str(data["id"]),
            amount=to_units(data.get("amount")),
            description=str(data.get("description", "") or ""),
            category=category if category in EXPENSE_CATEGORIES else "other",
            created_at=parse_timestamp(data.get("createdAt")),
            created_by=str(data.get("createdBy", "") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "description": self.description,
            "category": self.category,
            "createdAt": format_timestamp(self.created_at),
            "createdBy": self.created_by,
        }


@dataclass(frozen=True, slots=True)
class WaiterCall:
    id: str
    table_number: int
    customer_phone: str = ""
    status: str = "pending"
    created_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WaiterCall":
        return cls(
            id=str(data["id"]),
            table_number=int(_pick(data, "tableNumber", "table", default=0)),
            customer_phone=str(data.get("customerPhone", "") or ""),
            status=str(data.get("status", "pending")),
            created_at=parse_timestamp(data.get("createdAt")),
            acknowledged_at=parse_timestamp(data.get("acknowledgedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "tableNumber": self.table_number,
            "customerPhone": self.customer_phone,
            "status": self.status,
            "createdAt": format_timestamp(self.created_at),
        }
        if self.acknowledged_at:
            out["acknowledgedAt"] = format_timestamp(self.acknowledged_at)
        return out


@dataclass(frozen=True, slots=True)
class DashboardStats:
    revenue: int
    orders: int
    active_orders: int
    active_tables: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "todayRevenue": self.revenue,
            "todayOrders": self.orders,
            "activeOrders": self.active_orders,
            "activeTables": self.active_tables,
        }
