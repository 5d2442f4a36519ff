"""Domain events for orders and sub-orders.

Sub-order level events carry the parent order id so consumers can correlate
them without a lookup.
"""

from protean.fields import DateTime, Identifier, Integer, String, Text

from settlement.domain import settlement


@settlement.event(part_of="Order")
class OrderSplit:
    """A checkout was split into per-seller sub-orders awaiting payment."""

    __version__ = 1

    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    payment_ref = String(required=True)
    currency = String(max_length=3, default="USD")
    total_amount = Integer(required=True)
    rule_set_version = Integer(required=True)
    sub_orders = Text(required=True)  # JSON: list of sub-order summaries
    split_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderPaid:
    """Payment was confirmed and the paid sub-orders were credited to their sellers."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_ref = String(required=True)
    captured_amount = Integer(required=True)
    sub_order_ids = Text(required=True)  # JSON: list of sub-order ids
    paid_at = DateTime(required=True)


@settlement.event(part_of="Order")
class SubOrderFulfilled:
    __version__ = 1

    order_id = Identifier(required=True)
    sub_order_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    fulfilled_at = DateTime(required=True)


@settlement.event(part_of="Order")
class OrderCancelled:
    """A sub-order was cancelled. ``debited_amount`` is non-zero when it had been paid."""

    __version__ = 1

    order_id = Identifier(required=True)
    sub_order_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    previous_status = String(required=True)
    reason = String(max_length=500)
    debited_amount = Integer(default=0)
    cancelled_at = DateTime(required=True)
