"""Exception types shared across the terminal core."""
from __future__ import annotations


class PosError(Exception):
    __slots__ = ()


class StoreError(PosError):
    __slots__ = ()


class OrderNotFoundError(StoreError):
    __slots__ = ()


class InvalidTransitionError(StoreError):
    """Raised when an order status change is not allowed by the state machine."""

    def __init__(self, order_id: str, current: str, requested: str) -> None:
        super().__init__(f"order {order_id}: cannot move from '{current}' to '{requested}'")
        self.order_id = order_id
        self.current = current
        self.requested = requested


class GatewayError(PosError):
    """A backend call failed (transport error or non-2xx response)."""

    def __init__(self, family: str, operation: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(f"{family}.{operation}: {reason}")
        self.family = family
        self.operation = operation
        self.reason = reason
        self.status_code = status_code
