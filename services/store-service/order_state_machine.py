"""Order fulfillment state machine."""
from typing import Dict, FrozenSet

from errors import ValidationError
from models import OrderStatus

# Admin-driven transitions. Pending -> Confirmed only happens through
# payment confirmation.
ADMIN_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ADMIN_TRANSITIONS.items() if not targets
)


def parse_status(value: str) -> OrderStatus:
    """Parse an order status name."""
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown order status: {value}")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Whether an admin may move an order from ``current`` to ``target``."""
    return target in ADMIN_TRANSITIONS[current]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    """
    Validate an admin transition.

    Raises:
        ValidationError: If the transition is not allowed
    """
    if not can_transition(current, target):
        raise ValidationError(
            f"Cannot change order status from {current.value} to {target.value}"
        )
