"""Payment confirmation: command and handler.

The payment gateway reports a captured payment for an order. In one
transaction every sub-order still awaiting payment moves to ``paid``, its
stock holds are committed and its seller is credited with the net payable.
Confirmations are idempotent on the payment reference.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.exceptions import AlreadyProcessed, InvalidTransition
from settlement.idempotency import ensure_not_processed, mark_processed, payment_key
from settlement.inventory.reservation import InventoryReservation
from settlement.inventory.stock import HoldStatus
from settlement.ledger.ledger import EarningsLedger
from settlement.locking import locks, message_key, sub_order_key, variant_key
from settlement.ordering.order import Order
from settlement.ordering.queries import load_order, sub_order_ids_for
from settlement.ordering.status import SubOrderStatus

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Order")
class ConfirmPayment:
    order_id = Identifier(required=True)
    payment_ref = String(required=True, max_length=128)
    captured_amount = Integer(required=True, min_value=0)


@dataclass(frozen=True)
class PaymentOutcome:
    order_id: str
    payment_ref: str
    status: str
    captured_amount: int
    paid_sub_order_ids: tuple[str, ...]
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "payment_ref": self.payment_ref,
            "status": self.status,
            "captured_amount": self.captured_amount,
            "paid_sub_order_ids": list(self.paid_sub_order_ids),
        }

    @classmethod
    def replay(cls, stored: dict) -> "PaymentOutcome":
        stored = dict(stored)
        stored["paid_sub_order_ids"] = tuple(stored.get("paid_sub_order_ids", ()))
        return cls(**stored, replayed=True)


@settlement.command_handler(part_of=Order)
class PaymentHandler:
    @handle(ConfirmPayment)
    def confirm_payment(self, command: ConfirmPayment) -> PaymentOutcome:
        key = payment_key(command.payment_ref)
        with locks.scope() as scope:
            scope.lock(message_key(key))
            scope.lock(*(sub_order_key(sub_order_id) for sub_order_id in sub_order_ids_for(command.order_id)))
            try:
                ensure_not_processed(key)
            except AlreadyProcessed as exc:
                logger.info("Payment already processed", payment_ref=command.payment_ref, order_id=command.order_id)
                return PaymentOutcome.replay(exc.outcome)

            outcome = self._confirm(scope, command)
            mark_processed(key, "payment", outcome.to_dict())

        logger.info(
            "Payment confirmed",
            order_id=outcome.order_id,
            payment_ref=outcome.payment_ref,
            captured_amount=outcome.captured_amount,
            sub_orders=len(outcome.paid_sub_order_ids),
        )
        return outcome

    def _confirm(self, scope, command: ConfirmPayment) -> PaymentOutcome:
        order = load_order(command.order_id)

        if order.payment_ref != command.payment_ref:
            raise ValidationError({"payment_ref": ["Payment reference does not match the order"]})

        payable = [s for s in order.ordered_sub_orders if s.current_status == SubOrderStatus.PENDING_PAYMENT]
        if not payable:
            raise InvalidTransition(order.id, order.status, SubOrderStatus.PAID.value, order_id=order.id)

        expected = sum(sub_order.total_amount for sub_order in payable)
        if command.captured_amount != expected:
            raise ValidationError({"captured_amount": [f"Captured {command.captured_amount} but {expected} is payable"]})

        scope.lock(*(variant_key(line.variant_id) for sub_order in payable for line in sub_order.lines))

        now = datetime.now(UTC)
        reservation = InventoryReservation(scope)
        ledger = EarningsLedger()
        for sub_order in payable:
            sub_order.mark_paid(now)

            if not reservation.holds_for(sub_order.id, HoldStatus.ACTIVE):
                # Holds were swept after expiry; claim the stock again before committing
                logger.warning("Re-reserving expired holds", sub_order_id=sub_order.id)
                for line in sub_order.ordered_lines:
                    reservation.reserve(line.variant_id, line.quantity, sub_order.id, now=now)
            reservation.commit(sub_order.id)

            ledger.post_credit(sub_order, reference=command.payment_ref, now=now)
            ledger.verify(sub_order)

        order.record_payment(command.captured_amount, payable, now)
        current_domain.repository_for(Order).add(order)

        return PaymentOutcome(
            order_id=order.id,
            payment_ref=command.payment_ref,
            status=order.status,
            captured_amount=command.captured_amount,
            paid_sub_order_ids=tuple(sub_order.id for sub_order in payable),
        )
