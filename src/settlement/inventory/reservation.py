"""Stock reservation: the InventoryReservation service, commands and handler.

InventoryReservation works inside the caller's unit of work so that holds,
orders and ledger entries commit together. It takes the lock of every
variant it touches through the caller's lock scope, and keeps one loaded
VariantStock per variant so that repeated changes to the same record in
one handler land on the same aggregate version.

ReservationHandler wraps single operations for callers outside a checkout
(the API, an external expiry sweeper).
"""

from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.inventory.stock import HoldStatus, InventoryHold, VariantStock
from settlement.locking import locks, variant_key

logger = structlog.get_logger(__name__)


class InventoryReservation:
    """Atomic per-variant holds."""

    def __init__(self, scope):
        self.scope = scope
        self._stocks: dict[str, VariantStock] = {}

    @property
    def stocks(self):
        return current_domain.repository_for(VariantStock)

    @property
    def holds(self):
        return current_domain.repository_for(InventoryHold)

    def _stock(self, variant_id) -> VariantStock:
        if variant_id not in self._stocks:
            self._stocks[variant_id] = self.stocks.get(variant_id)
        return self._stocks[variant_id]

    def _save(self, stock: VariantStock) -> VariantStock:
        self._stocks[stock.variant_id] = stock
        self.stocks.add(stock)
        return stock

    # -------------------------------------------------------------------
    # Stock records
    # -------------------------------------------------------------------
    def register(self, variant_id, on_hand, low_stock_threshold=None) -> VariantStock:
        self.scope.lock(variant_key(variant_id))
        if self.stocks.get_or_none(variant_id) is not None:
            raise ValidationError({"variant_id": [f"Stock for variant {variant_id} is already registered"]})

        if low_stock_threshold is None:
            low_stock_threshold = current_domain.default_low_stock_threshold
        stock = VariantStock.register(variant_id, on_hand=on_hand, low_stock_threshold=low_stock_threshold)
        self._save(stock)

        logger.info("Stock registered", variant_id=variant_id, on_hand=on_hand)
        return stock

    def ensure_stock(self, variant_id, on_hand) -> VariantStock:
        """Return the stock record, seeding it from ``on_hand`` on first sight."""
        self.scope.lock(variant_key(variant_id))
        if variant_id in self._stocks:
            return self._stocks[variant_id]

        stock = self.stocks.get_or_none(variant_id)
        if stock is None:
            stock = VariantStock.register(
                variant_id,
                on_hand=on_hand,
                low_stock_threshold=current_domain.default_low_stock_threshold,
            )
            self._save(stock)
            logger.info("Stock record seeded from catalogue", variant_id=variant_id, on_hand=on_hand)
        self._stocks[variant_id] = stock
        return stock

    def receive(self, variant_id, quantity) -> VariantStock:
        self.scope.lock(variant_key(variant_id))
        stock = self._stock(variant_id)
        stock.receive(quantity)
        self._save(stock)
        logger.info("Stock received", variant_id=variant_id, quantity=quantity, on_hand=stock.on_hand)
        return stock

    def restock(self, variant_id, quantity) -> VariantStock:
        """Return committed units to available (refund or cancellation after payment)."""
        self.scope.lock(variant_key(variant_id))
        stock = self._stock(variant_id)
        stock.restock(quantity)
        self._save(stock)
        logger.info("Stock restocked", variant_id=variant_id, quantity=quantity, available=stock.available)
        return stock

    def update_threshold(self, variant_id, threshold) -> VariantStock:
        self.scope.lock(variant_key(variant_id))
        stock = self._stock(variant_id)
        previous = stock.low_stock_threshold
        stock.update_low_stock_threshold(threshold)
        self._save(stock)
        logger.info("Low-stock threshold updated", variant_id=variant_id, previous=previous, threshold=threshold)
        return stock

    # -------------------------------------------------------------------
    # Holds
    # -------------------------------------------------------------------
    def reserve(self, variant_id, quantity, hold_token, expires_at=None, now=None) -> InventoryHold:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        self.scope.lock(variant_key(variant_id))
        stock = self._stock(variant_id)

        now = now or datetime.now(UTC)
        if expires_at is None:
            expires_at = now + timedelta(minutes=current_domain.hold_ttl_minutes)

        hold = stock.hold(quantity, hold_token, expires_at=expires_at, now=now)
        self._save(stock)
        self.holds.add(hold)

        logger.info(
            "Stock held",
            variant_id=variant_id,
            hold_token=hold_token,
            quantity=quantity,
            available=stock.available,
        )
        return hold

    def holds_for(self, hold_token, status: HoldStatus | None = None) -> list[InventoryHold]:
        query = self.holds.query.filter(hold_token=hold_token)
        if status is not None:
            query = query.filter(status=status.value)
        return list(query.order_by("created_at").limit(None).all().items)

    def _lock_active_holds(self, hold_token):
        active = self.holds_for(hold_token, HoldStatus.ACTIVE)
        self.scope.lock(*(variant_key(hold.variant_id) for hold in active))
        return active

    def commit(self, hold_token) -> list[InventoryHold]:
        """Convert every active hold under the token into a permanent deduction.

        Holds that are already committed or released are left alone, so a
        repeated call is a no-op.
        """
        committed = []
        for hold in self._lock_active_holds(hold_token):
            stock = self._stock(hold.variant_id)
            if stock.commit(hold):
                self._save(stock)
                self.holds.add(hold)
                committed.append(hold)

        if committed:
            logger.info("Holds committed", hold_token=hold_token, holds=len(committed))
        return committed

    def release(self, hold_token) -> list[InventoryHold]:
        """Return every active hold under the token to available. Idempotent."""
        released = []
        for hold in self._lock_active_holds(hold_token):
            stock = self._stock(hold.variant_id)
            if stock.release(hold):
                self._save(stock)
                self.holds.add(hold)
                released.append(hold)

        if released:
            logger.info("Holds released", hold_token=hold_token, holds=len(released))
        return released

    # -------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------
    @staticmethod
    def is_expired(hold: InventoryHold, now: datetime | None = None) -> bool:
        return hold.is_expired(now)

    def expired_holds(self, now: datetime | None = None) -> list[InventoryHold]:
        """Active holds past their expiry, oldest first."""
        now = now or datetime.now(UTC)
        query = self.holds.query.filter(status=HoldStatus.ACTIVE.value, expires_at__lte=now)
        return list(query.order_by("expires_at").limit(None).all().items)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@settlement.command(part_of="InventoryHold")
class ReserveStock:
    """Hold stock for a checkout or sub-order."""

    variant_id = Identifier(required=True)
    quantity = Integer(required=True)
    hold_token = Identifier(required=True)
    expires_at = DateTime()  # Defaults to hold_ttl_minutes from now


@settlement.command(part_of="InventoryHold")
class CommitHolds:
    hold_token = Identifier(required=True)


@settlement.command(part_of="InventoryHold")
class ReleaseHolds:
    hold_token = Identifier(required=True)
    reason = String(max_length=100, default="released")


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@settlement.command_handler(part_of=InventoryHold)
class ReservationHandler:
    @handle(ReserveStock)
    def reserve_stock(self, command):
        with locks.scope() as scope:
            return InventoryReservation(scope).reserve(
                command.variant_id,
                command.quantity,
                command.hold_token,
                expires_at=command.expires_at,
            )

    @handle(CommitHolds)
    def commit_holds(self, command):
        with locks.scope() as scope:
            return InventoryReservation(scope).commit(command.hold_token)

    @handle(ReleaseHolds)
    def release_holds(self, command):
        with locks.scope() as scope:
            holds = InventoryReservation(scope).release(command.hold_token)
        if holds:
            logger.info("Hold token released", hold_token=command.hold_token, reason=command.reason)
        return holds


def expired_holds(now: datetime | None = None) -> list[InventoryHold]:
    return InventoryReservation(scope=None).expired_holds(now)
