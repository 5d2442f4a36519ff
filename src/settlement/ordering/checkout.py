"""Checkout: split a multi-seller purchase into per-seller sub-orders.

The OrderSplitter runs inside the handler's unit of work:

1. Validate the lines and resolve every variant through the catalogue
2. Load the active commission rule set
3. Group lines by seller, sellers in order of first appearance
4. Hold stock for every line under its sub-order's id
5. Price each line with the seller's rate and snapshot it
6. Create the parent order and its pending sub-orders, and raise OrderSplit

If any hold fails, InsufficientStock surfaces with the seller attached and
the unit of work rolls back, taking every hold of the checkout with it.

Checkouts are idempotent on the payment reference: a resubmitted checkout
returns the order created the first time.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from settlement.catalogue import get_catalogue
from settlement.commission.calculator import resolve_rate, resolve_tier
from settlement.commission.management import get_active_rules
from settlement.domain import settlement
from settlement.exceptions import AlreadyProcessed, InsufficientStock, InvalidVariant
from settlement.idempotency import checkout_key, ensure_not_processed, mark_processed
from settlement.inventory.reservation import InventoryReservation
from settlement.locking import locks, message_key, variant_key
from settlement.ordering.order import LineItem, Order, SubOrder
from settlement.ordering.queries import load_order, trailing_sales_volume

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@settlement.command(part_of="Order")
class PlaceCheckout:
    """Split a buyer's checkout into sub-orders awaiting payment."""

    buyer_id = Identifier(required=True)
    payment_ref = String(required=True, max_length=128)
    lines = Text(required=True)  # JSON: [{"variant_id": str, "quantity": int}]


@dataclass(frozen=True)
class CheckoutLine:
    variant_id: str
    quantity: int


def parse_lines(raw) -> list[CheckoutLine]:
    items = json.loads(raw) if isinstance(raw, str) else raw
    try:
        return [CheckoutLine(variant_id=str(item["variant_id"]), quantity=int(item["quantity"])) for item in items]
    except (KeyError, TypeError, ValueError):
        raise ValidationError({"lines": ["Each line needs a variant_id and an integer quantity"]}) from None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LineResult:
    line_id: str
    variant_id: str
    quantity: int
    unit_price: int
    commission_rate: str
    commission_amount: int


@dataclass(frozen=True)
class SubOrderResult:
    sub_order_id: str
    seller_id: str
    status: str
    seller_tier: str | None
    total_amount: int
    commission_amount: int
    net_payable: int
    lines: tuple[LineResult, ...]


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    status: str
    total_amount: int
    currency: str
    rule_set_version: int
    sub_orders: tuple[SubOrderResult, ...]
    replayed: bool = False

    @classmethod
    def from_order(cls, order: Order, replayed=False) -> "CheckoutResult":
        sub_orders = order.ordered_sub_orders
        return cls(
            order_id=order.id,
            status=order.status,
            total_amount=order.total_amount,
            currency=order.currency,
            rule_set_version=sub_orders[0].rule_set_version,
            sub_orders=tuple(
                SubOrderResult(
                    sub_order_id=sub_order.id,
                    seller_id=sub_order.seller_id,
                    status=sub_order.status,
                    seller_tier=sub_order.seller_tier,
                    total_amount=sub_order.total_amount,
                    commission_amount=sub_order.commission_amount,
                    net_payable=sub_order.net_payable,
                    lines=tuple(
                        LineResult(
                            line_id=line.id,
                            variant_id=line.variant_id,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            commission_rate=line.commission_rate,
                            commission_amount=line.commission_amount,
                        )
                        for line in sub_order.ordered_lines
                    ),
                )
                for sub_order in sub_orders
            ),
            replayed=replayed,
        )


# ---------------------------------------------------------------------------
# Splitter
# ---------------------------------------------------------------------------
class OrderSplitter:
    def __init__(self, scope, catalogue=None):
        self.scope = scope
        self.catalogue = catalogue or get_catalogue()

    def _validate(self, buyer_id, payment_ref, lines):
        errors = {}
        if not buyer_id:
            errors["buyer_id"] = ["Buyer is required"]
        if not payment_ref:
            errors["payment_ref"] = ["Payment reference is required"]
        if not lines:
            errors["lines"] = ["Checkout must contain at least one line"]
        for index, line in enumerate(lines):
            if line.quantity < 1:
                errors.setdefault("lines", []).append(f"Line {index}: quantity must be at least 1")
        if errors:
            raise ValidationError(errors)

    def _resolve(self, line: CheckoutLine):
        listing = self.catalogue.lookup(line.variant_id)
        if listing is None:
            raise InvalidVariant(f"Variant {line.variant_id} is not sold", variant_id=line.variant_id)
        return listing

    def split(self, buyer_id, payment_ref, lines: list[CheckoutLine]) -> Order:
        self._validate(buyer_id, payment_ref, lines)
        priced = [(line, self._resolve(line)) for line in lines]
        rules = get_active_rules()
        self.scope.lock(*(variant_key(line.variant_id) for line in lines))

        groups: dict[str, list] = {}
        for line, listing in priced:
            groups.setdefault(listing.seller_id, []).append((line, listing))

        now = datetime.now(UTC)
        sub_order_ids = {seller_id: str(uuid4()) for seller_id in groups}
        reservation = InventoryReservation(self.scope)

        seller_id = None
        try:
            for seller_id, items in groups.items():
                for line, listing in items:
                    reservation.ensure_stock(line.variant_id, listing.on_hand)
                    reservation.reserve(line.variant_id, line.quantity, sub_order_ids[seller_id], now=now)
        except InsufficientStock as exc:
            exc.context["seller_id"] = seller_id
            logger.warning(
                "Checkout rejected for insufficient stock",
                buyer_id=buyer_id,
                payment_ref=payment_ref,
                seller_id=seller_id,
                variant_id=exc.variant_id,
                requested=exc.requested,
                available=exc.available,
            )
            raise

        order = Order.create(buyer_id, payment_ref, current_domain.currency, ordered_at=now)
        for position, (seller_id, items) in enumerate(groups.items()):
            volume = trailing_sales_volume(seller_id, now, current_domain.tier_window_days)
            tier = resolve_tier(volume, rules.tier_thresholds)

            sub_order = SubOrder.create(
                seller_id,
                position,
                seller_tier=tier,
                rule_set_version=rules.version,
                sub_order_id=sub_order_ids[seller_id],
                now=now,
            )
            order.add_sub_order(sub_order)
            for line_position, (line, listing) in enumerate(items):
                sub_order.add_line(
                    LineItem.create(
                        position=line_position,
                        variant_id=line.variant_id,
                        category_id=listing.category_id,
                        quantity=line.quantity,
                        unit_price=listing.unit_price,
                        commission_rate=resolve_rate(rules, tier, listing.category_id, seller_id),
                    )
                )

        order.mark_split(rules.version, now)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order split",
            order_id=order.id,
            buyer_id=order.buyer_id,
            sellers=len(groups),
            total_amount=order.total_amount,
            rule_set_version=rules.version,
        )
        return order


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@settlement.command_handler(part_of=Order)
class CheckoutHandler:
    @handle(PlaceCheckout)
    def place_checkout(self, command: PlaceCheckout) -> CheckoutResult:
        key = checkout_key(command.payment_ref)
        with locks.scope() as scope:
            scope.lock(message_key(key))
            try:
                ensure_not_processed(key)
            except AlreadyProcessed as exc:
                logger.info("Checkout already processed", payment_ref=command.payment_ref, **exc.outcome)
                return CheckoutResult.from_order(load_order(exc.outcome["order_id"]), replayed=True)

            order = OrderSplitter(scope).split(command.buyer_id, command.payment_ref, parse_lines(command.lines))
            mark_processed(key, "checkout", {"order_id": order.id})
        return CheckoutResult.from_order(order)
