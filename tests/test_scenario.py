from __future__ import annotations

from chiya_pos.core.models import BILL_PAID, PAID


def test_table_four_full_flow(store):
    store.set_menu_items(
        [
            {"id": "tea", "name": "Milk Tea", "price": 30, "category": "Tea"},
            {"id": "momo", "name": "Veg Momo", "price": 40, "category": "Snacks"},
        ]
    )
    phone = "9841000000"

    # customer orders 2 x 30 from the table
    first, bill_id = store.place_order(4, phone, [{"menuItemId": "tea", "qty": 2}])
    assert first.total == 60
    bill = store.get_bill(bill_id)
    assert bill.subtotal == 60
    assert bill.total == 60

    # counter adds 1 x 40 for the same table
    second, same_bill = store.place_order(4, "", [{"menuItemId": "momo", "qty": 1}])
    assert same_bill == bill_id
    assert store.get_bill(bill_id).subtotal == 100
    assert len(store.get_active_bills()) == 1

    txn = store.pay_bill(bill_id, "cash", discount=10)

    assert txn.total == 90
    assert txn.discount == 10
    assert store.get_bill(bill_id).status == BILL_PAID
    assert store.get_order(first.id).status == PAID
    assert store.get_order(second.id).status == PAID
    customer = store.get_customer(phone)
    assert customer.loyalty_points == 9
    assert customer.visits == 1


def test_place_order_is_one_change_per_collection(store):
    store.set_menu_items([{"id": "tea", "name": "Milk Tea", "price": 30, "category": "Tea"}])
    counts = {"bills": 0, "orders": 0, "customers": 0}
    for name in counts:
        store.bus.subscribe(f"{name}_changed", lambda _v, name=name: counts.__setitem__(name, counts[name] + 1))

    store.place_order(2, "9841000001", [{"menuItemId": "tea", "qty": 1}], notes="less sugar")

    assert counts == {"bills": 1, "orders": 1, "customers": 1}
    assert store.orders[0].notes == "less sugar"
