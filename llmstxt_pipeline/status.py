"""
Order status state machine.

The transition table is the single source of truth for which status changes
are legal. Every stage that writes a status validates the edge first, so a
stalled retry can never resurrect a cancelled or refunded order.
"""

from enum import Enum
from typing import Dict, FrozenSet, Tuple

from llmstxt_pipeline.errors import InvalidStatusTransitionError


class OrderStatus(str, Enum):
    CREATED = "created"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.QUEUED}),
    OrderStatus.PENDING_PAYMENT: frozenset(
        {OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PAID: frozenset({OrderStatus.QUEUED}),
    OrderStatus.QUEUED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.FAILED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.PAYMENT_FAILED: frozenset(),
}

# Display order for error messages.
_ORDER = list(OrderStatus)


def _coerce(status) -> OrderStatus:
    return status if isinstance(status, OrderStatus) else OrderStatus(status)


def allowed_transitions(from_status) -> Tuple[OrderStatus, ...]:
    """Return the statuses reachable from ``from_status`` in one step."""
    targets = TRANSITIONS[_coerce(from_status)]
    return tuple(s for s in _ORDER if s in targets)


def can_transition(from_status, to_status) -> bool:
    return _coerce(to_status) in TRANSITIONS[_coerce(from_status)]


def validate_transition(from_status, to_status) -> None:
    """
    Raise InvalidStatusTransitionError unless ``from_status → to_status`` is an edge.

    Self-loops are not edges, so re-applying a terminal status is rejected too.
    """
    source = _coerce(from_status)
    target = _coerce(to_status)
    if target not in TRANSITIONS[source]:
        raise InvalidStatusTransitionError(
            source.value,
            target.value,
            [s.value for s in allowed_transitions(source)],
        )


def is_terminal(status) -> bool:
    return not TRANSITIONS[_coerce(status)]
