"""Order status transitions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable

from .models import (
    ACCEPTED,
    CANCELLED,
    ORDER_STATUSES,
    PAID,
    PENDING,
    PREPARING,
    READY,
    SERVED,
)

_RANK = {PENDING: 0, ACCEPTED: 1, PREPARING: 2, READY: 3, SERVED: 4}
TERMINAL_STATUSES = frozenset({PAID, CANCELLED})
KITCHEN_FLOW = (PENDING, PREPARING, READY, SERVED)


@dataclass(frozen=True, slots=True)
class CancelPolicy:
    """Which statuses an order may be cancelled from."""

    allowed_from: FrozenSet[str] = frozenset({PENDING})

    @classmethod
    def from_statuses(cls, statuses: Iterable[str]) -> "CancelPolicy":
        cleaned = frozenset(s for s in statuses if s in _RANK)
        return cls(cleaned or frozenset({PENDING}))

    @classmethod
    def until_served(cls) -> "CancelPolicy":
        return cls(frozenset({PENDING, ACCEPTED, PREPARING, READY}))


def is_transition_allowed(current: str, requested: str, policy: CancelPolicy) -> bool:
    """Single-order transitions: forward only, ``paid`` is reserved for bill payment."""
    if requested not in ORDER_STATUSES:
        return False
    if current in TERMINAL_STATUSES:
        return False
    if requested == PAID:
        return False
    if requested == CANCELLED:
        return current in policy.allowed_from
    if current not in _RANK:
        return False
    return _RANK[requested] > _RANK[current]


def next_kitchen_status(current: str) -> str | None:
    """The next step a kitchen display offers for *current*."""
    if current == ACCEPTED:
        return PREPARING
    try:
        idx = KITCHEN_FLOW.index(current)
    except ValueError:
        return None
    if idx >= len(KITCHEN_FLOW) - 1:
        return None
    return KITCHEN_FLOW[idx + 1]
