"""Order aggregate: a buyer's checkout and its per-seller sub-orders.

An Order is the parent record of one checkout. It owns one SubOrder per
seller, and each SubOrder owns the LineItems bought from that seller, in
checkout order. Prices, categories and commission rates are snapshotted on
the lines when the order is split, so later catalogue or rule changes never
reprice an existing order.

Invariants maintained by every method:
    order.total_amount     == Σ sub_order.total_amount
    sub_order.total_amount == Σ line.unit_price × line.remaining_quantity
    sub_order.net_payable  == max(0, total_amount − commission_amount)

Sub-order status changes go through the OrderStateMachine
(``settlement.ordering.status``); the parent status is derived from them.
Orders are never deleted.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal
from operator import attrgetter

from protean import Index
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from settlement.commission.calculator import line_commission, net_payable
from settlement.domain import settlement
from settlement.ordering.events import (
    OrderCancelled,
    OrderPaid,
    OrderSplit,
    SubOrderFulfilled,
)
from settlement.ordering.status import (
    OrderStatus,
    SubOrderStatus,
    assert_can_transition,
    derive_order_status,
)
from settlement.refunds.events import OrderRefunded


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@settlement.entity(part_of="Order")
class SubOrder:
    """The part of an order fulfilled and settled by one seller."""

    seller_id = Identifier(required=True)
    position = Integer(required=True, min_value=0)
    status = String(choices=SubOrderStatus, default=SubOrderStatus.PENDING_PAYMENT.value)
    seller_tier = String(max_length=64)
    rule_set_version = Integer(required=True)
    total_amount = Integer(default=0)
    commission_amount = Integer(default=0)
    net_payable = Integer(default=0)
    lines = HasMany("LineItem")
    created_at = DateTime()
    paid_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, seller_id, position, seller_tier, rule_set_version, sub_order_id=None, now=None):
        now = now or datetime.now(UTC)
        kwargs = {"id": sub_order_id} if sub_order_id else {}
        return cls(
            seller_id=seller_id,
            position=position,
            status=SubOrderStatus.PENDING_PAYMENT.value,
            seller_tier=seller_tier,
            rule_set_version=rule_set_version,
            total_amount=0,
            commission_amount=0,
            net_payable=0,
            created_at=now,
            updated_at=now,
            **kwargs,
        )

    @property
    def current_status(self) -> SubOrderStatus:
        return SubOrderStatus(self.status)

    @property
    def ordered_lines(self) -> list["LineItem"]:
        """Lines in checkout order."""
        return sorted(self.lines, key=attrgetter("position"))

    @property
    def remaining_quantity(self) -> int:
        return sum(line.remaining_quantity for line in self.lines)

    def line(self, line_id) -> "LineItem":
        for line in self.lines:
            if line.id == line_id:
                return line
        raise ObjectNotFoundError(f"Line {line_id} is not part of sub-order {self.id}")

    def add_line(self, line: "LineItem"):
        self.add_lines(line)
        self.recalculate()

    def recalculate(self):
        self.total_amount = sum(line.line_total for line in self.lines)
        self.commission_amount = sum(line.commission_amount for line in self.lines)
        self.net_payable = net_payable(self.total_amount, self.commission_amount)

    def summary(self) -> dict:
        return {
            "sub_order_id": self.id,
            "seller_id": self.seller_id,
            "total_amount": self.total_amount,
            "commission_amount": self.commission_amount,
            "net_payable": self.net_payable,
            "seller_tier": self.seller_tier,
        }

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def transition_to(self, target: SubOrderStatus, now=None):
        assert_can_transition(self.id, self.current_status, target)
        self.status = target.value
        self.updated_at = now or datetime.now(UTC)

    def mark_paid(self, now=None):
        now = now or datetime.now(UTC)
        self.transition_to(SubOrderStatus.PAID, now)
        self.paid_at = now

    def fulfil(self, now=None):
        now = now or datetime.now(UTC)
        self.transition_to(SubOrderStatus.FULFILLED, now)
        self.raise_(
            SubOrderFulfilled(
                order_id=self.order_id,
                sub_order_id=self.id,
                seller_id=self.seller_id,
                fulfilled_at=now,
            )
        )

    def cancel(self, reason=None, debited_amount=0, now=None):
        now = now or datetime.now(UTC)
        previous = self.current_status
        self.transition_to(SubOrderStatus.CANCELLED, now)
        self.raise_(
            OrderCancelled(
                order_id=self.order_id,
                sub_order_id=self.id,
                seller_id=self.seller_id,
                previous_status=previous.value,
                reason=reason,
                debited_amount=debited_amount,
                cancelled_at=now,
            )
        )

    def record_refund(self, refund_ref, refunded_lines, refunded_amount, reversed_commission, now=None):
        """Recompute totals after line refunds and move to (partially) refunded."""
        now = now or datetime.now(UTC)
        self.recalculate()

        target = SubOrderStatus.REFUNDED if self.remaining_quantity == 0 else SubOrderStatus.PARTIALLY_REFUNDED
        self.transition_to(target, now)

        self.raise_(
            OrderRefunded(
                order_id=self.order_id,
                sub_order_id=self.id,
                seller_id=self.seller_id,
                refund_ref=refund_ref,
                lines=json.dumps(refunded_lines),
                refunded_amount=refunded_amount,
                reversed_commission=reversed_commission,
                reversal_amount=refunded_amount - reversed_commission,
                remaining_total=self.total_amount,
                status=self.status,
                refunded_at=now,
            )
        )


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@settlement.entity(part_of=SubOrder)
class LineItem:
    """One checkout line. ``quantity`` never changes; refunds grow ``refunded_quantity``."""

    position = Integer(required=True, min_value=0)
    variant_id = Identifier(required=True)
    category_id = String(max_length=64)
    quantity = Integer(required=True, min_value=1)
    refunded_quantity = Integer(default=0)
    unit_price = Integer(required=True, min_value=0)  # Minor units
    commission_rate = String(required=True, max_length=16)  # Exact decimal string
    commission_amount = Integer(default=0)

    @classmethod
    def create(cls, position, variant_id, category_id, quantity, unit_price, commission_rate):
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})
        if unit_price < 0:
            raise ValidationError({"unit_price": ["Unit price cannot be negative"]})

        return cls(
            position=position,
            variant_id=variant_id,
            category_id=category_id,
            quantity=quantity,
            refunded_quantity=0,
            unit_price=unit_price,
            commission_rate=str(commission_rate),
            commission_amount=line_commission(unit_price, quantity, Decimal(str(commission_rate))),
        )

    @property
    def rate(self) -> Decimal:
        return Decimal(self.commission_rate)

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - self.refunded_quantity

    @property
    def line_total(self) -> int:
        """Value of the units that have not been refunded."""
        return self.unit_price * self.remaining_quantity

    def refund_units(self, quantity) -> int:
        """Refund ``quantity`` units and return the commission they carried.

        The carried commission is the current line commission minus the
        commission on what remains, so a line refunded in several steps ends
        up reversing exactly what a one-step refund would.
        """
        if quantity < 1:
            raise ValidationError({"quantity": ["Refund quantity must be at least 1"]})
        if quantity > self.remaining_quantity:
            raise ValidationError(
                {"quantity": [f"Cannot refund {quantity} units of line {self.id}; {self.remaining_quantity} remain"]}
            )

        before = self.commission_amount
        self.refunded_quantity += quantity
        self.commission_amount = line_commission(self.unit_price, self.remaining_quantity, self.rate)
        return before - self.commission_amount


@settlement.aggregate(indexes=[Index("payment_ref", unique=True)])
class Order:
    buyer_id = Identifier(required=True)
    payment_ref = String(required=True, max_length=128)
    currency = String(max_length=3, default="USD")
    total_amount = Integer(default=0)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING_PAYMENT.value)
    sub_orders = HasMany(SubOrder)
    ordered_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, buyer_id, payment_ref, currency, ordered_at=None, order_id=None):
        if not buyer_id:
            raise ValidationError({"buyer_id": ["Buyer is required"]})
        if not payment_ref:
            raise ValidationError({"payment_ref": ["Payment reference is required"]})

        ordered_at = ordered_at or datetime.now(UTC)
        kwargs = {"id": order_id} if order_id else {}
        return cls(
            buyer_id=buyer_id,
            payment_ref=payment_ref,
            currency=currency,
            total_amount=0,
            status=OrderStatus.PENDING_PAYMENT.value,
            ordered_at=ordered_at,
            updated_at=ordered_at,
            **kwargs,
        )

    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def ordered_sub_orders(self) -> list[SubOrder]:
        """Sub-orders in order of each seller's first appearance at checkout."""
        return sorted(self.sub_orders, key=attrgetter("position"))

    def sub_order(self, sub_order_id) -> SubOrder:
        for sub_order in self.sub_orders:
            if sub_order.id == sub_order_id:
                return sub_order
        raise ObjectNotFoundError(f"Sub-order {sub_order_id} is not part of order {self.id}")

    def add_sub_order(self, sub_order: SubOrder):
        self.add_sub_orders(sub_order)

    def recalculate(self, now=None):
        """Re-derive the total and status from the sub-orders."""
        self.total_amount = sum(sub_order.total_amount for sub_order in self.sub_orders)
        self.status = derive_order_status(sub_order.current_status for sub_order in self.sub_orders).value
        self.updated_at = now or datetime.now(UTC)

    def mark_split(self, rule_set_version, now=None):
        now = now or self.ordered_at
        self.recalculate(now)
        self.raise_(
            OrderSplit(
                order_id=self.id,
                buyer_id=self.buyer_id,
                payment_ref=self.payment_ref,
                currency=self.currency,
                total_amount=self.total_amount,
                rule_set_version=rule_set_version,
                sub_orders=json.dumps([sub_order.summary() for sub_order in self.ordered_sub_orders]),
                split_at=now,
            )
        )

    def record_payment(self, captured_amount, paid_sub_orders, now=None):
        now = now or datetime.now(UTC)
        self.recalculate(now)
        self.raise_(
            OrderPaid(
                order_id=self.id,
                payment_ref=self.payment_ref,
                captured_amount=captured_amount,
                sub_order_ids=json.dumps([sub_order.id for sub_order in paid_sub_orders]),
                paid_at=now,
            )
        )
