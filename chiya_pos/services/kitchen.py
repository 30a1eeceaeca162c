"""Kitchen queue projections and wait-time estimates."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from ..core.lifecycle import next_kitchen_status
from ..core.models import ACCEPTED, PENDING, PREPARING, READY, SERVED, Order, WaiterCall

# minutes per unit, matched against the item name
PREP_TIMES: Dict[str, int] = {
    "Tea": 3,
    "Snacks": 8,
    "Cold Drink": 2,
    "Pastry": 1,
}
AVERAGE_PREP_TIME = 5
PARALLEL_ORDERS = 3
QUEUED_STATUSES = (PENDING, ACCEPTED, PREPARING)
DISPLAY_STATUSES = (PENDING, ACCEPTED, PREPARING, READY, SERVED)
_EPOCH = datetime.fromtimestamp(0, timezone.utc)


def prep_minutes(name: str) -> int:
    lowered = (name or "").lower()
    for category, minutes in PREP_TIMES.items():
        if category.lower() in lowered:
            return minutes
    return AVERAGE_PREP_TIME


def queued_orders(orders: Iterable[Order]) -> Tuple[Order, ...]:
    """Orders still waiting on the kitchen, oldest first."""
    queued = [o for o in orders if o.status in QUEUED_STATUSES]
    queued.sort(key=lambda o: o.created_at)
    return tuple(queued)


def display_orders(orders: Iterable[Order], status: Optional[str] = None) -> Tuple[Order, ...]:
    shown = [o for o in orders if o.status in DISPLAY_STATUSES]
    if status is not None:
        shown = [o for o in shown if o.status == status]
    shown.sort(key=lambda o: o.created_at)
    return tuple(shown)


def status_counts(orders: Iterable[Order]) -> Dict[str, int]:
    counts = {status: 0 for status in DISPLAY_STATUSES}
    for order in orders:
        if order.status in counts:
            counts[order.status] += 1
    return counts


def estimate_wait_minutes(orders: Iterable[Order]) -> int:
    total = 0
    for order in queued_orders(orders):
        for item in order.items:
            total += prep_minutes(item.name) * item.qty
    return math.ceil(total / PARALLEL_ORDERS)


def wait_for_new_order(orders: Iterable[Order], cart: Sequence[Mapping[str, object]]) -> int:
    """Queue wait plus half the cart's own preparation time."""
    own = 0
    for entry in cart:
        own += prep_minutes(str(entry.get("name", ""))) * int(entry.get("qty", 1))
    return estimate_wait_minutes(orders) + math.ceil(own / 2)


def format_wait(minutes: int) -> str:
    if minutes <= 0:
        return "Ready now"
    if minutes < 5:
        return "< 5 min"
    if minutes < 10:
        return "5-10 min"
    if minutes < 15:
        return "10-15 min"
    if minutes < 20:
        return "15-20 min"
    return f"~{minutes} min"


def next_status(order: Order) -> Optional[str]:
    return next_kitchen_status(order.status)


def pending_waiter_calls(calls: Iterable[WaiterCall]) -> Tuple[WaiterCall, ...]:
    pending = [c for c in calls if c.status == "pending"]
    pending.sort(key=lambda c: c.created_at or _EPOCH)
    return tuple(pending)
