from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chiya_pos.core.errors import GatewayError
from chiya_pos.core.models import MenuItem
from chiya_pos.services.gateway import BackendGateway


def _gateway(handler) -> BackendGateway:
    return BackendGateway("http://pos.local:3001/", transport=httpx.MockTransport(handler))


def _run(coro):
    return asyncio.run(coro)


def test_get_all_parses_records():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(
            200,
            json=[
                {"id": "m1", "name": "Milk Tea", "price": 30, "category": "Tea"},
                {"id": "m2", "name": "Momo", "price": "40.00", "category": "Snacks", "available": False},
            ],
        )

    async def scenario():
        async with _gateway(handler) as gw:
            return await gw.menu.get_all()

    items = _run(scenario())
    assert seen == [("GET", "/api/menu")]
    assert items[0] == MenuItem(id="m1", name="Milk Tea", price=30, category="Tea")
    assert items[1].price == 40
    assert items[1].available is False


def test_wrapped_payload_is_unwrapped():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": [{"id": "c1", "name": "Tea"}]})

    async def scenario():
        async with _gateway(handler) as gw:
            return await gw.categories.get_all()

    cats = _run(scenario())
    assert [c.name for c in cats] == ["Tea"]


def test_create_and_update_send_camel_case():
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append((request.method, request.url.path, body))
        return httpx.Response(200, json={"id": "m9", **body})

    async def scenario():
        async with _gateway(handler) as gw:
            await gw.menu.create(MenuItem(id="m9", name="Lassi", price=90, category="Cold Drink"))
            await gw.waiter_calls.update("w1", {"status": "acknowledged", "tableNumber": 2})

    _run(scenario())
    assert bodies[0][0:2] == ("POST", "/api/menu")
    assert bodies[0][2]["name"] == "Lassi"
    assert bodies[1][0:2] == ("PUT", "/api/waiter-calls/w1")
    assert bodies[1][2]["tableNumber"] == 2


def test_family_specific_verbs():
    calls = []

    def handler(request):
        body = json.loads(request.content) if request.content else None
        calls.append((request.method, request.url.path, body))
        if request.url.path.startswith("/api/orders"):
            return httpx.Response(
                200,
                json={"id": "o1", "tableNumber": 4, "items": [], "status": "preparing", "createdAt": "2026-03-10T06:00:00Z"},
            )
        if request.url.path.startswith("/api/bills"):
            return httpx.Response(200, json={"id": "b1", "tableNumber": 4, "status": "paid", "subtotal": 100, "discount": 10})
        return httpx.Response(200, json={"id": "w1", "tableNumber": 2, "status": "acknowledged"})

    async def scenario():
        async with _gateway(handler) as gw:
            order = await gw.orders.update_status("o1", "preparing")
            bill = await gw.bills.pay("b1", "cash", 10)
            call = await gw.waiter_calls.acknowledge("w1")
            return order, bill, call

    order, bill, call = _run(scenario())
    assert calls[0] == ("PATCH", "/api/orders/o1/status", {"status": "preparing"})
    assert calls[1] == ("POST", "/api/bills/b1/pay", {"paymentMethod": "cash", "discount": 10})
    assert calls[2][0:2] == ("PATCH", "/api/waiter-calls/w1/acknowledge")
    assert order.status == "preparing"
    assert bill.total == 90
    assert call.status == "acknowledged"


def test_non_2xx_becomes_gateway_error():
    def handler(request):
        return httpx.Response(503, json={"error": "down"})

    async def scenario():
        async with _gateway(handler) as gw:
            await gw.expenses.get_all()

    with pytest.raises(GatewayError) as excinfo:
        _run(scenario())
    assert excinfo.value.family == "expenses"
    assert excinfo.value.operation == "get_all"
    assert excinfo.value.status_code == 503


def test_transport_error_becomes_gateway_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with _gateway(handler) as gw:
            await gw.staff.get_all()

    with pytest.raises(GatewayError) as excinfo:
        _run(scenario())
    assert excinfo.value.status_code is None
    assert "ConnectError" in excinfo.value.reason


def test_malformed_body_becomes_gateway_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    async def scenario():
        async with _gateway(handler) as gw:
            await gw.orders.get_all()

    with pytest.raises(GatewayError):
        _run(scenario())


def test_customer_lookup_by_phone():
    def handler(request):
        if request.url.path.endswith("/9800000001"):
            return httpx.Response(200, json={"phone": "9800000001", "loyaltyPoints": 12, "visits": 3})
        return httpx.Response(404)

    async def scenario():
        async with _gateway(handler) as gw:
            return await gw.customers.get_by_phone("9800000001"), await gw.customers.get_by_phone("1")

    found, missing = _run(scenario())
    assert found.loyalty_points == 12
    assert missing is None


def test_settings_get_and_update():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, content=b"")
        return httpx.Response(200, json={"restaurantName": "Chiya Ghar", "kotPrintingEnabled": True})

    async def scenario():
        async with _gateway(handler) as gw:
            return await gw.settings.get(), await gw.settings.update({"restaurantName": "Chiya Ghar"})

    before, after = _run(scenario())
    assert before is None
    assert after.restaurant_name == "Chiya Ghar"
    assert after.kot_printing_enabled is True


def test_health_check():
    def healthy(request):
        assert request.url.path == "/api/health"
        return httpx.Response(200, json={"status": "ok"})

    def broken(request):
        return httpx.Response(500)

    def offline(request):
        raise httpx.ConnectError("no route", request=request)

    async def scenario(handler):
        async with _gateway(handler) as gw:
            return await gw.check_backend_health()

    assert _run(scenario(healthy)) is True
    assert _run(scenario(broken)) is False
    assert _run(scenario(offline)) is False
