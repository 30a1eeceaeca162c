from __future__ import annotations

import pytest

from chiya_pos.core.models import BILL_ACTIVE, BILL_PAID, PAID
from chiya_pos.services.store import AppStore


def _order(store, table, phone, items):
    return store.add_order(table, phone, items)


def test_create_bill_reuses_active_bill_and_unions_phones(store):
    first = store.create_bill(4, "9800000001")
    second = store.create_bill(4, "9800000002")
    assert first == second

    active = [b for b in store.bills if b.table_number == 4 and b.status == BILL_ACTIVE]
    assert len(active) == 1
    assert active[0].customer_phones == ("9800000001", "9800000002")

    # same phone again is not duplicated
    store.create_bill(4, "9800000001")
    assert store.get_bill(first).customer_phones == ("9800000001", "9800000002")


def test_create_bill_per_table(store):
    a = store.create_bill(1, "")
    b = store.create_bill(2, "")
    assert a != b
    assert store.get_bill(a).customer_phones == ()
    assert store.get_bill(a).subtotal == 0
    assert store.get_bill(a).total == 0
    assert {bill.table_number for bill in store.get_active_bills()} == {1, 2}


def test_create_bill_rejects_bad_table(store):
    with pytest.raises(ValueError):
        store.create_bill(0, "9800000001")


def test_new_bill_opens_after_previous_is_paid(menu_store):
    store = menu_store
    bill_id = store.create_bill(3, "")
    store.add_order_to_bill(bill_id, _order(store, 3, "", [{"menuItemId": "m-tea", "qty": 1}]))
    assert store.pay_bill(bill_id, "cash") is not None

    new_id = store.create_bill(3, "")
    assert new_id != bill_id
    assert store.get_bill(bill_id).status == BILL_PAID
    assert store.get_active_bill_for_table(3).id == new_id


def test_add_order_to_bill_recomputes_and_is_order_independent(menu_store):
    store = menu_store
    a = _order(store, 5, "", [{"menuItemId": "m-tea", "qty": 2}])
    b = _order(store, 5, "", [{"menuItemId": "m-momo", "qty": 1}])

    first = store.create_bill(5, "")
    store.add_order_to_bill(first, a)
    store.add_order_to_bill(first, b)

    second = store.create_bill(6, "")
    store.add_order_to_bill(second, b)
    store.add_order_to_bill(second, a)

    assert store.get_bill(first).subtotal == store.get_bill(second).subtotal == 100
    assert store.get_bill(first).total == 100


def test_add_order_to_bill_is_idempotent_per_order(menu_store):
    store = menu_store
    order = _order(store, 2, "9800000003", [{"menuItemId": "m-coke", "qty": 1}])
    bill_id = store.create_bill(2, "")
    assert store.add_order_to_bill(bill_id, order)
    assert store.add_order_to_bill(bill_id, order)

    bill = store.get_bill(bill_id)
    assert len(bill.orders) == 1
    assert bill.subtotal == 60
    # the order's phone joins the bill
    assert bill.customer_phones == ("9800000003",)


def test_add_order_to_unknown_or_paid_bill(menu_store):
    store = menu_store
    order = _order(store, 2, "", [{"menuItemId": "m-tea", "qty": 1}])
    assert store.add_order_to_bill("missing", order) is False

    bill_id = store.create_bill(2, "")
    store.add_order_to_bill(bill_id, order)
    store.pay_bill(bill_id, "fonepay")
    late = _order(store, 2, "", [{"menuItemId": "m-tea", "qty": 1}])
    assert store.add_order_to_bill(bill_id, late) is False
    assert len(store.get_bill(bill_id).orders) == 1


def test_pay_bill_settles_everything_at_once(menu_store):
    store = menu_store
    order = _order(store, 7, "9800000004", [{"menuItemId": "m-momo", "qty": 2}, {"menuItemId": "m-tea", "qty": 2}])
    bill_id = store.create_bill(7, "9800000004")
    store.add_order_to_bill(bill_id, order)
    assert store.get_bill(bill_id).subtotal == 140

    seen = []
    store.bus.subscribe("bills_changed", lambda bills: seen.append(("bills", store.transactions)))
    store.bus.subscribe("transactions_changed", lambda txns: seen.append(("transactions", store.bills)))

    txn = store.pay_bill(bill_id, "cash", discount=40)

    bill = store.get_bill(bill_id)
    assert bill.status == BILL_PAID
    assert bill.total == 100
    assert bill.discount == 40
    assert bill.payment_method == "cash"
    assert bill.paid_at == store.now()
    assert all(o.status == PAID for o in bill.orders)
    assert store.get_order(order.id).status == PAID

    assert txn.total == 100
    assert txn.discount == 40
    assert txn.bill_id == bill_id
    assert len(txn.items) == 2
    assert store.transactions == (txn,)

    # listeners only ever see the settled state
    assert seen[0] == ("bills", (txn,))
    assert seen[1][1][0].status == BILL_PAID


def test_pay_bill_twice_is_noop(menu_store):
    store = menu_store
    order = _order(store, 8, "", [{"menuItemId": "m-tea", "qty": 1}])
    bill_id = store.create_bill(8, "")
    store.add_order_to_bill(bill_id, order)

    assert store.pay_bill(bill_id, "cash") is not None
    before = store.get_bill(bill_id)
    assert store.pay_bill(bill_id, "fonepay", discount=5) is None
    assert store.get_bill(bill_id) == before
    assert len(store.transactions) == 1

    assert store.pay_bill("nope", "cash") is None


def test_pay_bill_validation(menu_store):
    store = menu_store
    bill_id = store.create_bill(9, "")
    with pytest.raises(ValueError):
        store.pay_bill(bill_id, "card")
    with pytest.raises(ValueError):
        store.pay_bill(bill_id, "cash", discount=-1)
    assert store.get_bill(bill_id).status == BILL_ACTIVE


def test_discount_larger_than_subtotal_clamps_to_zero(menu_store):
    store = menu_store
    order = _order(store, 1, "9800000005", [{"menuItemId": "m-tea", "qty": 1}])
    bill_id = store.create_bill(1, "9800000005")
    store.add_order_to_bill(bill_id, order)

    txn = store.pay_bill(bill_id, "cash", discount=50)
    assert txn.total == 0
    assert store.get_customer("9800000005").loyalty_points == 0


def test_get_today_stats(menu_store, clock):
    store = menu_store
    paid = _order(store, 1, "", [{"menuItemId": "m-momo", "qty": 1}])
    bill_id = store.create_bill(1, "")
    store.add_order_to_bill(bill_id, paid)
    store.pay_bill(bill_id, "cash")

    open_order = _order(store, 2, "", [{"menuItemId": "m-tea", "qty": 1}])
    store.add_order_to_bill(store.create_bill(2, ""), open_order)

    stats = store.get_today_stats()
    assert stats.revenue == 40
    assert stats.orders == 1
    assert stats.active_orders == 1
    assert stats.active_tables == 1

    clock.advance(days=1)
    tomorrow = store.get_today_stats()
    assert tomorrow.revenue == 0
    assert tomorrow.orders == 0
    assert tomorrow.active_tables == 1


@pytest.mark.parametrize(
    "items",
    [
        [{"menuItemId": "m-tea", "qty": 0}],
        [],
        [{"menuItemId": "m-tea", "qty": 1}, {"menuItemId": "m-momo", "qty": 1, "price": -5}],
        ["tea"],
    ],
)
def test_rejected_place_order_changes_nothing(menu_store, items):
    store = menu_store
    store.add_or_update_customer("9800000077")
    before = (store.bills, store.orders, store.customers)
    seen = []
    for name in ("bills", "orders", "customers"):
        store.bus.subscribe(f"{name}_changed", seen.append)

    with pytest.raises((ValueError, TypeError)):
        store.place_order(7, "9800000077", items)

    assert (store.bills, store.orders, store.customers) == before
    assert store.get_active_bill_for_table(7) is None
    assert store.get_customer("9800000077").visits == 1
    assert seen == []


def test_failed_batch_is_not_persisted(clock):
    saves = []

    class Recorder:
        def save(self, snapshot):
            saves.append(snapshot)

    store = AppStore(clock=clock, persister=Recorder())
    with pytest.raises(RuntimeError):
        with store.batch():
            store.create_bill(3, "9800000003")
            raise RuntimeError("interrupted")
    assert store.bills == ()
    assert saves == []
