"""Sales summaries computed from the in-memory collections.

Everything here is a pure function of the records passed in; nothing reads
or mutates the store directly.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Sequence, Tuple

from ..core.models import (
    ACTIVE_ORDER_STATUSES,
    BILL_ACTIVE,
    Bill,
    DashboardStats,
    Expense,
    Order,
    Transaction,
)
from ..core.money import fmt_amount, percent_change

PERIODS = ("today", "week", "month")
_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def _local_day(moment: datetime, now: datetime) -> date:
    return moment.astimezone(now.tzinfo).date()


def today_stats(
    transactions: Iterable[Transaction],
    orders: Iterable[Order],
    bills: Iterable[Bill],
    *,
    now: datetime,
) -> DashboardStats:
    today = now.date()
    todays = [t for t in transactions if _local_day(t.paid_at, now) == today]
    active_orders = [o for o in orders if o.status in ACTIVE_ORDER_STATUSES]
    active_tables = {b.table_number for b in bills if b.status == BILL_ACTIVE}
    return DashboardStats(
        revenue=sum(t.total for t in todays),
        orders=len(todays),
        active_orders=len(active_orders),
        active_tables=len(active_tables),
    )


def period_bounds(period: str, now: datetime) -> Tuple[datetime, datetime]:
    """Return ``(previous_start, period_start)`` for *period*.

    ``today`` starts at local midnight, ``week`` covers the seven days before
    today's midnight, ``month`` starts on the first of the calendar month. The
    previous period is the one of equal kind immediately before.
    """
    if period not in PERIODS:
        raise ValueError(f"unknown report period: {period!r}")
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        start = today_start
        previous_start = start - timedelta(days=1)
    elif period == "week":
        start = today_start - timedelta(days=7)
        previous_start = start - timedelta(days=7)
    else:
        start = today_start.replace(day=1)
        prev_year = start.year if start.month > 1 else start.year - 1
        prev_month = start.month - 1 if start.month > 1 else 12
        previous_start = start.replace(year=prev_year, month=prev_month, day=1)
    return previous_start, start


@dataclass(slots=True)
class ItemSales:
    name: str
    qty: int = 0
    revenue: int = 0


@dataclass(slots=True)
class SalesReport:
    period: str
    total_revenue: int
    revenue_change: float
    total_orders: int
    orders_change: float
    avg_order_value: int
    avg_change: float
    cash_total: int
    fonepay_total: int
    top_items: List[ItemSales]
    unique_customers: int
    hourly: Dict[int, int] = field(default_factory=dict)
    daily: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "period": self.period,
            "total_revenue": fmt_amount(self.total_revenue),
            "revenue_change": self.revenue_change,
            "total_orders": self.total_orders,
            "orders_change": self.orders_change,
            "avg_order_value": fmt_amount(self.avg_order_value),
            "avg_change": self.avg_change,
            "cash_total": fmt_amount(self.cash_total),
            "fonepay_total": fmt_amount(self.fonepay_total),
            "top_items": [
                {"name": i.name, "qty": i.qty, "revenue": fmt_amount(i.revenue)} for i in self.top_items
            ],
            "unique_customers": self.unique_customers,
            "hourly": dict(self.hourly),
            "daily": dict(self.daily),
        }


def _average(total: int, count: int) -> int:
    if count <= 0:
        return 0
    return int(round(total / count))


def top_items(transactions: Iterable[Transaction], limit: int = 5) -> List[ItemSales]:
    sales: "OrderedDict[str, ItemSales]" = OrderedDict()
    for txn in transactions:
        for item in txn.items:
            entry = sales.get(item.name)
            if entry is None:
                entry = sales[item.name] = ItemSales(name=item.name)
            entry.qty += item.qty
            entry.revenue += item.qty * item.price
    ranked = sorted(sales.values(), key=lambda e: e.revenue, reverse=True)
    return ranked[:limit]


def sales_report(transactions: Sequence[Transaction], period: str, *, now: datetime) -> SalesReport:
    previous_start, start = period_bounds(period, now)
    tz = now.tzinfo
    current = [t for t in transactions if t.paid_at.astimezone(tz) >= start]
    previous = [
        t for t in transactions if previous_start <= t.paid_at.astimezone(tz) < start
    ]

    revenue = sum(t.total for t in current)
    prev_revenue = sum(t.total for t in previous)
    avg = _average(revenue, len(current))
    prev_avg = _average(prev_revenue, len(previous))

    hourly: Dict[int, int] = {}
    daily: Dict[str, int] = {}
    if period == "today":
        for t in current:
            hour = t.paid_at.astimezone(tz).hour
            hourly[hour] = hourly.get(hour, 0) + t.total
    elif period == "week":
        for t in current:
            day = _WEEKDAYS[t.paid_at.astimezone(tz).weekday()]
            daily[day] = daily.get(day, 0) + t.total

    return SalesReport(
        period=period,
        total_revenue=revenue,
        revenue_change=percent_change(revenue, prev_revenue),
        total_orders=len(current),
        orders_change=percent_change(len(current), len(previous)),
        avg_order_value=avg,
        avg_change=percent_change(avg, prev_avg),
        cash_total=sum(t.total for t in current if t.payment_method == "cash"),
        fonepay_total=sum(t.total for t in current if t.payment_method == "fonepay"),
        top_items=top_items(current),
        unique_customers=len({phone for t in current for phone in t.customer_phones}),
        hourly=hourly,
        daily=daily,
    )


@dataclass(slots=True)
class ExpenseSummary:
    period: str
    total_expenses: int
    by_category: Dict[str, int]
    revenue: int

    @property
    def net_profit(self) -> int:
        return self.revenue - self.total_expenses

    def as_dict(self) -> Dict[str, object]:
        return {
            "period": self.period,
            "total_expenses": fmt_amount(self.total_expenses),
            "by_category": {k: fmt_amount(v) for k, v in self.by_category.items()},
            "revenue": fmt_amount(self.revenue),
            "net_profit": fmt_amount(self.net_profit),
        }


def expense_summary(
    expenses: Iterable[Expense],
    transactions: Iterable[Transaction],
    period: str,
    *,
    now: datetime,
) -> ExpenseSummary:
    _, start = period_bounds(period, now)
    tz = now.tzinfo
    in_period = [e for e in expenses if e.created_at is not None and e.created_at.astimezone(tz) >= start]
    by_category: Dict[str, int] = {}
    for expense in in_period:
        by_category[expense.category] = by_category.get(expense.category, 0) + expense.amount
    revenue = sum(t.total for t in transactions if t.paid_at.astimezone(tz) >= start)
    return ExpenseSummary(
        period=period,
        total_expenses=sum(e.amount for e in in_period),
        by_category=by_category,
        revenue=revenue,
    )

