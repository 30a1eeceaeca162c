from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chiya_pos.core.models import Expense, OrderItem, Transaction
from chiya_pos.services import reports

NPT = timezone(timedelta(hours=5, minutes=45))
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=NPT)  # a Tuesday


def _txn(txn_id, paid_at, total, method="cash", phones=(), items=()):
    return Transaction(
        id=txn_id,
        bill_id=f"bill-{txn_id}",
        table_number=1,
        customer_phones=tuple(phones),
        total=total,
        discount=0,
        payment_method=method,
        paid_at=paid_at,
        items=tuple(items),
    )


TEA = OrderItem(menu_item_id="tea", name="Masala Tea", qty=2, price=30)
MOMO = OrderItem(menu_item_id="momo", name="Chicken Momo", qty=1, price=40)
COKE = OrderItem(menu_item_id="coke", name="Coke", qty=1, price=60)

TRANSACTIONS = [
    _txn("t1", datetime(2026, 3, 10, 10, 15, tzinfo=NPT), 100, "cash", ["a"], [TEA, MOMO]),
    _txn("t2", datetime(2026, 3, 10, 11, 30, tzinfo=NPT), 60, "fonepay", ["a", "b"], [COKE]),
    _txn("t3", datetime(2026, 3, 9, 18, 0, tzinfo=NPT), 80, "cash", ["c"], [MOMO, MOMO]),
]


def test_today_report_against_yesterday():
    report = reports.sales_report(TRANSACTIONS, "today", now=NOW)

    assert report.total_revenue == 160
    assert report.revenue_change == 100.0
    assert report.total_orders == 2
    assert report.orders_change == 100.0
    assert report.avg_order_value == 80
    assert report.avg_change == 0.0
    assert report.cash_total == 100
    assert report.fonepay_total == 60
    assert report.unique_customers == 2
    assert report.hourly == {10: 100, 11: 60}
    assert report.daily == {}
    assert [i.name for i in report.top_items] == ["Masala Tea", "Coke", "Chicken Momo"]


def test_week_report_groups_by_weekday():
    report = reports.sales_report(TRANSACTIONS, "week", now=NOW)
    assert report.total_revenue == 240
    assert report.daily == {"Tue": 160, "Mon": 80}
    assert report.hourly == {}
    assert report.revenue_change == 100.0


def test_transactions_paid_in_utc_fall_on_local_day():
    # 2026-03-09 19:00 UTC is already 00:45 on the 10th in Kathmandu
    late = _txn("t4", datetime.fromisoformat("2026-03-09T19:00:00+00:00"), 50)
    report = reports.sales_report([late], "today", now=NOW)
    assert report.total_revenue == 50


def test_percent_change_when_previous_empty():
    report = reports.sales_report(TRANSACTIONS[:2], "today", now=NOW)
    assert report.revenue_change == 100.0
    empty = reports.sales_report([], "today", now=NOW)
    assert empty.revenue_change == 0.0
    assert empty.avg_order_value == 0
    assert empty.top_items == []


def test_period_bounds():
    prev, start = reports.period_bounds("month", NOW)
    assert start == datetime(2026, 3, 1, tzinfo=NPT)
    assert prev == datetime(2026, 2, 1, tzinfo=NPT)

    prev, start = reports.period_bounds("month", datetime(2026, 1, 20, 9, 0, tzinfo=NPT))
    assert prev == datetime(2025, 12, 1, tzinfo=NPT)

    prev, start = reports.period_bounds("week", NOW)
    assert start == datetime(2026, 3, 3, tzinfo=NPT)
    assert prev == datetime(2026, 2, 24, tzinfo=NPT)

    with pytest.raises(ValueError):
        reports.period_bounds("year", NOW)


def test_top_items_limit():
    items = [OrderItem(menu_item_id=str(i), name=f"Dish {i}", qty=1, price=10 * i) for i in range(1, 8)]
    ranked = reports.top_items([_txn("big", NOW, 280, items=items)])
    assert len(ranked) == 5
    assert ranked[0].name == "Dish 7"
    assert ranked[0].revenue == 70


def test_report_as_dict_formats_amounts():
    data = reports.sales_report(TRANSACTIONS, "today", now=NOW).as_dict()
    assert data["total_revenue"] == "रू 160"
    assert data["top_items"][0] == {"name": "Masala Tea", "qty": 2, "revenue": "रू 60"}


def test_expense_summary_and_net_profit():
    expenses = [
        Expense(id="e1", amount=500, description="milk", category="ingredients", created_at=NOW),
        Expense(id="e2", amount=1200, description="power", category="utilities", created_at=NOW),
        Expense(id="e3", amount=900, description="old", category="salary", created_at=datetime(2026, 2, 1, tzinfo=NPT)),
    ]
    summary = reports.expense_summary(expenses, TRANSACTIONS, "month", now=NOW)
    assert summary.total_expenses == 1700
    assert summary.by_category == {"ingredients": 500, "utilities": 1200}
    assert summary.revenue == 240
    assert summary.net_profit == -1460
    assert summary.as_dict()["net_profit"] == "रू -1,460"
