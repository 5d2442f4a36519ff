"""Refunds: reverse inventory, commission and seller earnings for a sub-order.

A refund event names a sub-order, a refund reference and optionally the
lines and amount being refunded. With no lines every remaining unit is
refunded. In one transaction, holding the sub-order lock:

1. Check the sub-order is refundable and the requested units remain
2. Refund units line by line; each line gives back the commission its
   refunded units carried (current commission − commission on the rest)
3. Return the units to stock
4. Post one reversal of ``refunded gross − reversed commission``
5. Move the sub-order to ``partially_refunded`` or ``refunded``, re-derive
   the parent order and raise OrderRefunded

Refunds are idempotent on the refund reference. Because each step reverses
exactly the commission still attached to the refunded units, a partial
refund followed by a refund of the rest leaves the ledger where a single
full refund would.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.exceptions import AlreadyProcessed
from settlement.idempotency import ensure_not_processed, mark_processed, refund_key
from settlement.inventory.reservation import InventoryReservation
from settlement.ledger.ledger import EarningsLedger
from settlement.locking import locks, message_key, sub_order_key, variant_key
from settlement.ordering.order import Order
from settlement.ordering.queries import load_sub_order
from settlement.ordering.status import assert_refundable

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RefundLine:
    """Units of one variant to refund. ``line_id`` pins a specific order line."""

    variant_id: str
    quantity: int
    line_id: str | None = None


@settlement.command(part_of="Order")
class ProcessRefund:
    sub_order_id = Identifier(required=True)
    refund_ref = String(required=True, max_length=128)
    lines = Text()  # JSON: [{"variant_id", "quantity", "line_id"?}]; empty refunds everything left
    amount = Integer()  # Refunded gross as stated by the gateway
    reason = String(max_length=500)


def parse_refund_lines(raw) -> list[RefundLine]:
    if not raw:
        return []
    items = json.loads(raw) if isinstance(raw, str) else raw
    try:
        return [
            RefundLine(
                variant_id=str(item["variant_id"]),
                quantity=int(item["quantity"]),
                line_id=item.get("line_id"),
            )
            for item in items
        ]
    except (KeyError, TypeError, ValueError):
        raise ValidationError({"lines": ["Each line needs a variant_id and an integer quantity"]}) from None


@dataclass(frozen=True)
class RefundOutcome:
    sub_order_id: str
    order_id: str
    refund_ref: str
    status: str
    refunded_amount: int
    reversed_commission: int
    reversal_amount: int
    remaining_total: int
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "sub_order_id": self.sub_order_id,
            "order_id": self.order_id,
            "refund_ref": self.refund_ref,
            "status": self.status,
            "refunded_amount": self.refunded_amount,
            "reversed_commission": self.reversed_commission,
            "reversal_amount": self.reversal_amount,
            "remaining_total": self.remaining_total,
        }


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------
class RefundProcessor:
    def __init__(self, scope):
        self.scope = scope

    def _allocate(self, sub_order, requested):
        """Map requested units onto order lines, in checkout order.

        Returns ``[(line, quantity)]``. A variant bought on several lines is
        drawn from the earliest line first.
        """
        lines = sub_order.ordered_lines
        if not requested:
            return [(line, line.remaining_quantity) for line in lines if line.remaining_quantity]

        taken: dict[str, int] = {}
        errors = []
        for refund_line in requested:
            if refund_line.quantity < 1:
                errors.append(f"{refund_line.variant_id}: quantity must be at least 1")
                continue

            if refund_line.line_id is not None:
                candidates = [line for line in lines if line.id == refund_line.line_id]
                if not candidates:
                    errors.append(f"Line {refund_line.line_id} is not part of sub-order {sub_order.id}")
                    continue
                if candidates[0].variant_id != refund_line.variant_id:
                    errors.append(f"Line {refund_line.line_id} is not for variant {refund_line.variant_id}")
                    continue
            else:
                candidates = [line for line in lines if line.variant_id == refund_line.variant_id]
                if not candidates:
                    errors.append(f"{refund_line.variant_id} is not part of sub-order {sub_order.id}")
                    continue

            outstanding = refund_line.quantity
            for line in candidates:
                free = line.remaining_quantity - taken.get(line.id, 0)
                share = min(free, outstanding)
                if share > 0:
                    taken[line.id] = taken.get(line.id, 0) + share
                    outstanding -= share
            if outstanding:
                errors.append(
                    f"{refund_line.variant_id}: requested {refund_line.quantity} units exceeds the remaining quantity"
                )

        if errors:
            raise ValidationError({"lines": errors})

        return [(line, taken[line.id]) for line in lines if taken.get(line.id)]

    def refund(self, sub_order, refund_ref, requested, amount=None, now=None) -> RefundOutcome:
        """Refund units of a locked sub-order inside the caller's unit of work."""
        assert_refundable(sub_order.id, sub_order.current_status)

        allocation = self._allocate(sub_order, requested)
        if not allocation:
            raise ValidationError({"lines": ["Nothing left to refund"]})

        refunded_amount = sum(line.unit_price * quantity for line, quantity in allocation)
        if amount is not None and amount != refunded_amount:
            raise ValidationError(
                {"amount": [f"Stated amount {amount} does not match refunded total {refunded_amount}"]}
            )

        now = now or datetime.now(UTC)
        self.scope.lock(*(variant_key(line.variant_id) for line, _ in allocation))
        reservation = InventoryReservation(self.scope)

        refunded_lines = []
        reversed_commission = 0
        for line, quantity in allocation:
            carried = line.refund_units(quantity)
            reversed_commission += carried
            reservation.restock(line.variant_id, quantity)
            refunded_lines.append(
                {
                    "line_id": line.id,
                    "variant_id": line.variant_id,
                    "quantity": quantity,
                    "amount": line.unit_price * quantity,
                    "reversed_commission": carried,
                }
            )

        reversal_amount = refunded_amount - reversed_commission
        sub_order.record_refund(refund_ref, refunded_lines, refunded_amount, reversed_commission, now)

        ledger = EarningsLedger()
        ledger.post_reversal(sub_order, reversal_amount, reference=refund_ref, now=now)
        ledger.verify(sub_order)

        return RefundOutcome(
            sub_order_id=sub_order.id,
            order_id=sub_order.order_id,
            refund_ref=refund_ref,
            status=sub_order.status,
            refunded_amount=refunded_amount,
            reversed_commission=reversed_commission,
            reversal_amount=reversal_amount,
            remaining_total=sub_order.total_amount,
        )


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------
@settlement.command_handler(part_of=Order)
class RefundHandler:
    @handle(ProcessRefund)
    def process_refund(self, command: ProcessRefund) -> RefundOutcome:
        key = refund_key(command.refund_ref)
        with locks.scope() as scope:
            scope.lock(message_key(key), sub_order_key(command.sub_order_id))
            try:
                ensure_not_processed(key)
            except AlreadyProcessed as exc:
                logger.info("Refund already processed", refund_ref=command.refund_ref)
                return RefundOutcome(**exc.outcome, replayed=True)

            order, sub_order = load_sub_order(command.sub_order_id)

            now = datetime.now(UTC)
            outcome = RefundProcessor(scope).refund(
                sub_order,
                command.refund_ref,
                parse_refund_lines(command.lines),
                amount=command.amount,
                now=now,
            )
            order.recalculate(now)
            current_domain.repository_for(Order).add(order)

            mark_processed(key, "refund", outcome.to_dict())

        logger.info(
            "Refund processed",
            sub_order_id=outcome.sub_order_id,
            refund_ref=outcome.refund_ref,
            refunded_amount=outcome.refunded_amount,
            reversal_amount=outcome.reversal_amount,
            status=outcome.status,
            reason=command.reason,
        )
        return outcome
