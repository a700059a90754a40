from __future__ import annotations

from store.models.order import OrderStatus

S = OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.CANCELLED, S.FAILED}),
    S.PROCESSING: frozenset({S.COMPLETED, S.REFUNDED, S.FAILED}),
    S.COMPLETED: frozenset({S.REFUNDED}),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
    S.FAILED: frozenset(),
}

CANCELLABLE_FROM = frozenset({S.PENDING})
REFUNDABLE_FROM = frozenset({S.COMPLETED, S.PROCESSING})
DELETABLE = frozenset({S.CANCELLED, S.FAILED})


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value.upper())
    except ValueError:
        raise ValueError(f"Unknown order status: {value}") from None


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def is_terminal(status: OrderStatus | str) -> bool:
    return not TRANSITIONS[OrderStatus(status)]
