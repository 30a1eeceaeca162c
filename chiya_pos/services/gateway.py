"""Typed HTTP access to the backend of record.

The gateway only moves records; it holds no entity state and applies no
business rules. Every failure (transport error, timeout, non-2xx status,
undecodable body) is raised as :class:`GatewayError` so the caller decides
how to degrade.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Generic, List, Mapping, Optional, Type, TypeVar

import httpx

from ..core.errors import GatewayError
from ..core.models import (
    Bill,
    Category,
    Customer,
    Expense,
    MenuItem,
    Order,
    Settings,
    Staff,
    Transaction,
    WaiterCall,
)

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
R = TypeVar("R")


def _wire(entity: Any) -> Dict[str, Any]:
    if hasattr(entity, "to_dict"):
        return entity.to_dict()
    if isinstance(entity, Mapping):
        return dict(entity)
    raise TypeError(f"cannot send {type(entity).__name__} to the backend")


def _unwrap(payload: Any) -> Any:
    # some deployments wrap bodies as {"data": ...}
    if isinstance(payload, dict) and set(payload) <= {"data", "success", "message"} and "data" in payload:
        return payload["data"]
    return payload


class EntityApi(Generic[R]):
    """CRUD calls for one entity family."""

    __slots__ = ("gateway", "family", "path", "record_type")

    def __init__(self, gateway: "BackendGateway", family: str, path: str, record_type: Type[R]) -> None:
        self.gateway = gateway
        self.family = family
        self.path = path
        self.record_type = record_type

    def _parse(self, operation: str, data: Any) -> R:
        try:
            return self.record_type.from_dict(data)  # type: ignore[attr-defined]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise GatewayError(self.family, operation, f"malformed record: {exc}") from exc

    def _parse_many(self, operation: str, data: Any) -> List[R]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise GatewayError(self.family, operation, "expected a list")
        return [self._parse(operation, row) for row in data]

    async def get_all(self) -> List[R]:
        data = await self.gateway.request(self.family, "get_all", "GET", self.path)
        return self._parse_many("get_all", data)

    async def create(self, entity: Any) -> R:
        data = await self.gateway.request(self.family, "create", "POST", self.path, json=_wire(entity))
        return self._parse("create", data)

    async def update(self, entity_id: str, partial: Mapping[str, Any]) -> R:
        data = await self.gateway.request(
            self.family, "update", "PUT", f"{self.path}/{entity_id}", json=dict(partial)
        )
        return self._parse("update", data)

    async def delete(self, entity_id: str) -> None:
        await self.gateway.request(self.family, "delete", "DELETE", f"{self.path}/{entity_id}")


class OrdersApi(EntityApi[Order]):
    __slots__ = ()

    async def update_status(self, order_id: str, status: str) -> Order:
        data = await self.gateway.request(
            self.family, "update_status", "PATCH", f"{self.path}/{order_id}/status", json={"status": status}
        )
        return self._parse("update_status", data)


class BillsApi(EntityApi[Bill]):
    __slots__ = ()

    async def pay(self, bill_id: str, payment_method: str, discount: int = 0) -> Bill:
        data = await self.gateway.request(
            self.family,
            "pay",
            "POST",
            f"{self.path}/{bill_id}/pay",
            json={"paymentMethod": payment_method, "discount": discount},
        )
        return self._parse("pay", data)


class CustomersApi(EntityApi[Customer]):
    __slots__ = ()

    async def get_by_phone(self, phone: str) -> Optional[Customer]:
        try:
            data = await self.gateway.request(self.family, "get_by_phone", "GET", f"{self.path}/{phone}")
        except GatewayError as exc:
            if exc.status_code == 404:
                return None
            raise
        if not data:
            return None
        return self._parse("get_by_phone", data)


class WaiterCallsApi(EntityApi[WaiterCall]):
    __slots__ = ()

    async def acknowledge(self, call_id: str) -> WaiterCall:
        data = await self.gateway.request(
            self.family, "acknowledge", "PATCH", f"{self.path}/{call_id}/acknowledge"
        )
        return self._parse("acknowledge", data)


class SettingsApi:
    __slots__ = ("gateway", "family", "path")

    def __init__(self, gateway: "BackendGateway") -> None:
        self.gateway = gateway
        self.family = "settings"
        self.path = "/api/settings"

    async def get(self) -> Optional[Settings]:
        data = await self.gateway.request(self.family, "get", "GET", self.path)
        if not data:
            return None
        if not isinstance(data, dict):
            raise GatewayError(self.family, "get", "expected an object")
        return Settings.from_dict(data)

    async def update(self, partial: Mapping[str, Any]) -> Settings:
        data = await self.gateway.request(self.family, "update", "PUT", self.path, json=dict(partial))
        return Settings.from_dict(data or {})


class BackendGateway:
    """One ``httpx.AsyncClient`` shared by every entity family."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers=dict(headers or {}),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )
        self.categories: EntityApi[Category] = EntityApi(self, "categories", "/api/categories", Category)
        self.menu: EntityApi[MenuItem] = EntityApi(self, "menu", "/api/menu", MenuItem)
        self.orders = OrdersApi(self, "orders", "/api/orders", Order)
        self.bills = BillsApi(self, "bills", "/api/bills", Bill)
        self.customers = CustomersApi(self, "customers", "/api/customers", Customer)
        self.staff: EntityApi[Staff] = EntityApi(self, "staff", "/api/staff", Staff)
        self.settings = SettingsApi(self)
        self.expenses: EntityApi[Expense] = EntityApi(self, "expenses", "/api/expenses", Expense)
        self.waiter_calls = WaiterCallsApi(self, "waiter_calls", "/api/waiter-calls", WaiterCall)
        self.transactions: EntityApi[Transaction] = EntityApi(
            self, "transactions", "/api/transactions", Transaction
        )

    async def __aenter__(self) -> "BackendGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        family: str,
        operation: str,
        method: str,
        path: str,
        *,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise GatewayError(family, operation, f"HTTP {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(family, operation, f"{type(exc).__name__}: {exc}") from exc
        if response.status_code == 204 or not response.content:
            return None
        try:
            return _unwrap(response.json())
        except ValueError as exc:
            raise GatewayError(family, operation, "invalid JSON body") from exc

    async def check_backend_health(self) -> bool:
        try:
            response = await self._client.get("/api/health", timeout=5.0)
        except httpx.HTTPError as exc:
            log.warning("backend health check failed: %s", exc)
            return False
        healthy = response.is_success
        if not healthy:
            log.warning("backend health check returned HTTP %s", response.status_code)
        return healthy
