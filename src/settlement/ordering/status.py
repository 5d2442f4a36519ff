"""OrderStateMachine: legal sub-order transitions and the derived parent status.

Sub-orders move through:
    PENDING_PAYMENT → PAID → FULFILLED
                          → PARTIALLY_REFUNDED → ... → REFUNDED
                          → REFUNDED
                          → CANCELLED
    PENDING_PAYMENT → CANCELLED

The parent order never transitions on its own; its status is recomputed from
its sub-orders after every change.
"""

from enum import Enum

from settlement.exceptions import InvalidTransition, PaymentPending


class SubOrderStatus(Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    FULFILLED = "fulfilled"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class OrderStatus(Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    MIXED = "mixed"


_VALID_TRANSITIONS = {
    SubOrderStatus.PENDING_PAYMENT: {SubOrderStatus.PAID, SubOrderStatus.CANCELLED},
    SubOrderStatus.PAID: {
        SubOrderStatus.FULFILLED,
        SubOrderStatus.PARTIALLY_REFUNDED,
        SubOrderStatus.REFUNDED,
        SubOrderStatus.CANCELLED,
    },
    SubOrderStatus.PARTIALLY_REFUNDED: {SubOrderStatus.PARTIALLY_REFUNDED, SubOrderStatus.REFUNDED},
    SubOrderStatus.FULFILLED: set(),  # Terminal
    SubOrderStatus.REFUNDED: set(),  # Terminal
    SubOrderStatus.CANCELLED: set(),  # Terminal
}

# Statuses that count as "at or beyond paid"
PAID_OR_LATER = {
    SubOrderStatus.PAID,
    SubOrderStatus.FULFILLED,
    SubOrderStatus.PARTIALLY_REFUNDED,
    SubOrderStatus.REFUNDED,
}

# Statuses whose sub-order totals count toward a seller's trailing volume
QUALIFYING_FOR_VOLUME = {
    SubOrderStatus.PAID,
    SubOrderStatus.FULFILLED,
    SubOrderStatus.PARTIALLY_REFUNDED,
}

REFUNDABLE = {SubOrderStatus.PAID, SubOrderStatus.PARTIALLY_REFUNDED}


def can_transition(current: SubOrderStatus, target: SubOrderStatus) -> bool:
    return target in _VALID_TRANSITIONS.get(current, set())


def assert_can_transition(sub_order_id, current: SubOrderStatus, target: SubOrderStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(sub_order_id, current.value, target.value)


def assert_refundable(sub_order_id, current: SubOrderStatus) -> None:
    if current == SubOrderStatus.PENDING_PAYMENT:
        raise PaymentPending(f"Sub-order {sub_order_id} has not been paid", sub_order_id=sub_order_id)
    if current not in REFUNDABLE:
        raise InvalidTransition(sub_order_id, current.value, SubOrderStatus.REFUNDED.value)


def derive_order_status(statuses) -> OrderStatus:
    """Parent status from its sub-order statuses."""
    statuses = set(statuses)
    if not statuses:
        raise ValueError("An order has at least one sub-order")

    if statuses == {SubOrderStatus.REFUNDED}:
        return OrderStatus.REFUNDED
    if statuses == {SubOrderStatus.CANCELLED}:
        return OrderStatus.CANCELLED
    if statuses == {SubOrderStatus.PENDING_PAYMENT}:
        return OrderStatus.PENDING_PAYMENT
    if statuses <= PAID_OR_LATER:
        return OrderStatus.PAID
    return OrderStatus.MIXED
