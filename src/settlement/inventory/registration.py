"""Stock registration, receiving and thresholds: commands, handler and lookups."""

from protean import handle
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.inventory.reservation import InventoryReservation
from settlement.inventory.stock import VariantStock
from settlement.locking import locks


@settlement.command(part_of="VariantStock")
class RegisterStock:
    variant_id = Identifier(required=True)
    on_hand = Integer(required=True)
    low_stock_threshold = Integer()  # Falls back to default_low_stock_threshold


@settlement.command(part_of="VariantStock")
class ReceiveStock:
    variant_id = Identifier(required=True)
    quantity = Integer(required=True)


@settlement.command(part_of="VariantStock")
class UpdateLowStockThreshold:
    variant_id = Identifier(required=True)
    low_stock_threshold = Integer(required=True)


@settlement.command_handler(part_of=VariantStock)
class StockHandler:
    @handle(RegisterStock)
    def register_stock(self, command):
        with locks.scope() as scope:
            return InventoryReservation(scope).register(
                command.variant_id,
                on_hand=command.on_hand,
                low_stock_threshold=command.low_stock_threshold,
            )

    @handle(ReceiveStock)
    def receive_stock(self, command):
        with locks.scope() as scope:
            return InventoryReservation(scope).receive(command.variant_id, command.quantity)

    @handle(UpdateLowStockThreshold)
    def update_low_stock_threshold(self, command):
        with locks.scope() as scope:
            return InventoryReservation(scope).update_threshold(command.variant_id, command.low_stock_threshold)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def get_stock(variant_id) -> VariantStock:
    return current_domain.repository_for(VariantStock).get(variant_id)


def low_stock() -> list[VariantStock]:
    """Variants whose available stock is at or below their threshold, scarcest first."""
    records = current_domain.repository_for(VariantStock).query.order_by("available").limit(None).all().items
    return [stock for stock in records if stock.is_low_stock]


def out_of_stock() -> list[VariantStock]:
    """Variants with nothing available, most recently changed first."""
    query = current_domain.repository_for(VariantStock).query.filter(available=0)
    return list(query.order_by("-updated_at").limit(None).all().items)
