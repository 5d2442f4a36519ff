"""Domain events for refunds."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from settlement.domain import settlement


@settlement.event(part_of="Order")
class OrderRefunded:
    """Units of a sub-order were refunded and its seller's earnings reversed."""

    __version__ = 1

    order_id = Identifier(required=True)
    sub_order_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    refund_ref = String(required=True)
    lines = Text(required=True)  # JSON: [{line_id, variant_id, quantity, amount, reversed_commission}]
    refunded_amount = Integer(required=True)
    reversed_commission = Integer(required=True)
    reversal_amount = Integer(required=True)
    remaining_total = Integer(required=True)
    status = String(required=True)
    refunded_at = DateTime(required=True)
