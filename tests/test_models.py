from __future__ import annotations

from datetime import datetime, timezone

from chiya_pos.core.models import Bill, Expense, Order, Settings, Staff, parse_timestamp


def test_parse_timestamp_variants():
    assert parse_timestamp("2026-03-10T06:00:00Z") == datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-10T06:00:00").tzinfo is timezone.utc
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


def test_legacy_field_names_are_accepted():
    order = Order.from_dict(
        {
            "id": "o1",
            "table": 3,
            "phone": "9800000001",
            "items": [{"id": "m-tea", "name": "Tea", "qty": 2, "price": 25}],
            "time": "2026-03-10T06:00:00Z",
        }
    )
    assert order.table_number == 3
    assert order.customer_phone == "9800000001"
    assert order.total == 50
    assert order.status == "pending"

    bill = Bill.from_dict({"id": "b1", "table": 3, "customers": ["a", "a", "b"], "status": "unpaid", "orders": [order.to_dict()]})
    assert bill.is_active
    assert bill.customer_phones == ("a", "b")
    assert bill.subtotal == 50
    assert bill.total == 50


def test_settings_round_trip_and_defaults():
    settings = Settings.from_dict({"restaurantName": "Chiya Ghar", "barCategories": "Tea", "kotPrintingEnabled": 1})
    assert settings.bar_categories == ("Tea",)
    assert settings.kot_printing_enabled is True
    assert settings.table_count == 10
    assert Settings.from_dict(settings.to_dict()) == settings
    assert Settings.from_dict(None) == Settings()


def test_staff_password_never_kept():
    staff = Staff.from_dict({"id": "s1", "username": "counter1", "password": "secret", "role": "counter"})
    assert "password" not in staff.to_dict()


def test_unknown_expense_category_becomes_other():
    expense = Expense.from_dict({"id": "e1", "amount": "250.4", "description": "gas", "category": "fuel"})
    assert expense.category == "other"
    assert expense.amount == 250
