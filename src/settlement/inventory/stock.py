"""VariantStock aggregate: stock levels for one catalogue variant.

Stock Level Model:
    on_hand:    Units the seller physically owns
    held:       Claimed by checkouts that have not been paid yet
    committed:  Deducted for paid sub-orders
    available:  on_hand - held - committed (what can be sold)

``available + held + committed == on_hand`` holds after every method, and no
method lets ``available`` go negative. ``available`` is denormalized onto the
record so that stock queries can filter on it.

Holds are InventoryHold aggregates keyed by a hold token (the sub-order id
for checkouts) and move through: ACTIVE → COMMITTED (payment confirmed) or
ACTIVE → RELEASED (cancelled, expired, or a failed checkout).
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String

from settlement.domain import settlement
from settlement.exceptions import InsufficientStock
from settlement.inventory.events import LowStockDetected, StockReceived
from settlement.utils.clock import as_utc


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class HoldStatus(Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    RELEASED = "released"


# ---------------------------------------------------------------------------
# Holds
# ---------------------------------------------------------------------------
@settlement.aggregate
class InventoryHold:
    """A claim on a quantity of one variant under a hold token."""

    hold_token = Identifier(required=True)
    variant_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    status = String(choices=HoldStatus, default=HoldStatus.ACTIVE.value)
    created_at = DateTime(required=True)
    expires_at = DateTime(required=True)
    closed_at = DateTime()

    @property
    def is_active(self) -> bool:
        return self.status == HoldStatus.ACTIVE.value

    def is_expired(self, now: datetime | None = None) -> bool:
        """An active hold whose expiry has passed. Closed holds never expire."""
        now = now or datetime.now(UTC)
        return self.is_active and as_utc(self.expires_at) <= as_utc(now)

    def close(self, status: HoldStatus, now: datetime) -> None:
        self.status = status.value
        self.closed_at = now


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@settlement.aggregate
class VariantStock:
    variant_id = Identifier(identifier=True)
    on_hand = Integer(default=0)
    held = Integer(default=0)
    committed = Integer(default=0)
    available = Integer(default=0)
    low_stock_threshold = Integer(default=10)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def register(cls, variant_id, on_hand=0, low_stock_threshold=10):
        if on_hand < 0:
            raise ValidationError({"on_hand": ["On-hand quantity cannot be negative"]})
        if low_stock_threshold < 0:
            raise ValidationError({"low_stock_threshold": ["Threshold cannot be negative"]})

        now = datetime.now(UTC)
        return cls(
            variant_id=variant_id,
            on_hand=on_hand,
            held=0,
            committed=0,
            available=on_hand,
            low_stock_threshold=low_stock_threshold,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_low_stock(self) -> bool:
        return self.available <= self.low_stock_threshold

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _refresh(self, now=None):
        self.available = self.on_hand - self.held - self.committed
        self.updated_at = now or datetime.now(UTC)

    def _check_low_stock(self, was_low, now):
        """Raise LowStockDetected when availability has just crossed down to the threshold."""
        if not was_low and self.is_low_stock:
            self.raise_(
                LowStockDetected(
                    variant_id=self.variant_id,
                    available=self.available,
                    threshold=self.low_stock_threshold,
                    detected_at=now,
                )
            )

    def _belongs_here(self, hold):
        if hold.variant_id != self.variant_id:
            raise ValidationError({"hold": [f"Hold {hold.id} is for variant {hold.variant_id}"]})

    # -------------------------------------------------------------------
    # Holds
    # -------------------------------------------------------------------
    def hold(self, quantity, hold_token, expires_at, now=None) -> InventoryHold:
        """Claim ``quantity`` units under ``hold_token``."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        if self.available < quantity:
            raise InsufficientStock(self.variant_id, requested=quantity, available=self.available)

        now = now or datetime.now(UTC)
        was_low = self.is_low_stock
        self.held += quantity
        self._refresh(now)

        hold = InventoryHold(
            hold_token=hold_token,
            variant_id=self.variant_id,
            quantity=quantity,
            created_at=now,
            expires_at=expires_at,
        )
        self._check_low_stock(was_low, now)
        return hold

    def release(self, hold: InventoryHold, now=None) -> bool:
        """Return an active hold to available. Closed holds are left alone."""
        self._belongs_here(hold)
        if not hold.is_active:
            return False

        now = now or datetime.now(UTC)
        self.held -= hold.quantity
        self._refresh(now)
        hold.close(HoldStatus.RELEASED, now)
        return True

    def commit(self, hold: InventoryHold, now=None) -> bool:
        """Turn an active hold into a permanent deduction."""
        self._belongs_here(hold)
        if not hold.is_active:
            return False

        now = now or datetime.now(UTC)
        self.held -= hold.quantity
        self.committed += hold.quantity
        self._refresh(now)
        hold.close(HoldStatus.COMMITTED, now)
        return True

    # -------------------------------------------------------------------
    # Stock movements
    # -------------------------------------------------------------------
    def restock(self, quantity):
        """Return committed units to available after a refund or cancellation."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if quantity > self.committed:
            raise ValidationError(
                {"quantity": [f"Cannot restock {quantity} units; only {self.committed} are committed"]}
            )

        self.committed -= quantity
        self._refresh()

    def receive(self, quantity):
        """Receive new units into on-hand stock."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        now = datetime.now(UTC)
        self.on_hand += quantity
        self._refresh(now)

        self.raise_(
            StockReceived(
                variant_id=self.variant_id,
                quantity=quantity,
                new_on_hand=self.on_hand,
                new_available=self.available,
                received_at=now,
            )
        )

    def update_low_stock_threshold(self, threshold):
        if threshold is None or threshold < 0:
            raise ValidationError({"low_stock_threshold": ["Threshold cannot be negative"]})

        self.low_stock_threshold = threshold
        self._refresh()
