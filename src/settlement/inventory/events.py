"""Domain events for the VariantStock aggregate."""

from protean.fields import DateTime, Identifier, Integer

from settlement.domain import settlement


@settlement.event(part_of="VariantStock")
class LowStockDetected:
    """Available stock for a variant fell to or below its low-stock threshold."""

    __version__ = 1

    variant_id = Identifier(required=True)
    available = Integer(required=True)
    threshold = Integer(required=True)
    detected_at = DateTime(required=True)


@settlement.event(part_of="VariantStock")
class StockReceived:
    """On-hand stock for a variant was increased."""

    __version__ = 1

    variant_id = Identifier(required=True)
    quantity = Integer(required=True)
    new_on_hand = Integer(required=True)
    new_available = Integer(required=True)
    received_at = DateTime(required=True)
