"""Order cancellation: commands and handler.

A sub-order awaiting payment is cancelled by releasing its stock holds. A
paid sub-order is cancelled by returning its committed stock and debiting
the seller for whatever is still outstanding on its credit. Cancelling the
whole order cancels every sub-order that can still be cancelled.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.exceptions import InvalidTransition
from settlement.inventory.reservation import InventoryReservation
from settlement.ledger.ledger import EarningsLedger
from settlement.locking import locks, sub_order_key, variant_key
from settlement.ordering.order import Order
from settlement.ordering.queries import load_order, load_sub_order, sub_order_ids_for
from settlement.ordering.status import SubOrderStatus, can_transition

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Order")
class CancelSubOrder:
    sub_order_id = Identifier(required=True)
    reason = String(max_length=500)
    cancelled_by = String(max_length=64)


@settlement.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=500)
    cancelled_by = String(max_length=64)


def cancel_sub_order(scope, reservation, ledger, sub_order, reason=None, now=None):
    """Cancel one sub-order inside the caller's unit of work. The sub-order lock must be held."""
    now = now or datetime.now(UTC)
    previous = sub_order.current_status

    debited = 0
    if previous == SubOrderStatus.PENDING_PAYMENT:
        sub_order.cancel(reason=reason, now=now)
        reservation.release(sub_order.id)
    elif previous == SubOrderStatus.PAID:
        scope.lock(*(variant_key(line.variant_id) for line in sub_order.lines))
        debited = ledger.outstanding(sub_order.id)
        sub_order.cancel(reason=reason, debited_amount=debited, now=now)
        for line in sub_order.ordered_lines:
            if line.remaining_quantity:
                reservation.restock(line.variant_id, line.remaining_quantity)
        ledger.post_debit(sub_order, reference=f"cancel:{sub_order.id}", now=now)
    else:
        # Let the state machine produce the error
        sub_order.transition_to(SubOrderStatus.CANCELLED, now)

    ledger.verify(sub_order)
    logger.info(
        "Sub-order cancelled",
        sub_order_id=sub_order.id,
        seller_id=sub_order.seller_id,
        previous_status=previous.value,
        debited_amount=debited,
        reason=reason,
    )
    return sub_order


@settlement.command_handler(part_of=Order)
class CancellationHandler:
    @handle(CancelSubOrder)
    def cancel_sub_order(self, command: CancelSubOrder) -> Order:
        with locks.scope() as scope:
            scope.lock(sub_order_key(command.sub_order_id))
            order, sub_order = load_sub_order(command.sub_order_id)

            now = datetime.now(UTC)
            cancel_sub_order(
                scope,
                InventoryReservation(scope),
                EarningsLedger(),
                sub_order,
                reason=command.reason,
                now=now,
            )
            order.recalculate(now)
            current_domain.repository_for(Order).add(order)
        return order

    @handle(CancelOrder)
    def cancel_order(self, command: CancelOrder) -> Order:
        with locks.scope() as scope:
            scope.lock(*(sub_order_key(sub_order_id) for sub_order_id in sub_order_ids_for(command.order_id)))
            order = load_order(command.order_id)

            cancellable = [
                s for s in order.ordered_sub_orders if can_transition(s.current_status, SubOrderStatus.CANCELLED)
            ]
            if not cancellable:
                raise InvalidTransition(order.id, order.status, SubOrderStatus.CANCELLED.value, order_id=order.id)

            now = datetime.now(UTC)
            reservation = InventoryReservation(scope)
            ledger = EarningsLedger()
            for sub_order in cancellable:
                cancel_sub_order(scope, reservation, ledger, sub_order, reason=command.reason, now=now)
            order.recalculate(now)
            current_domain.repository_for(Order).add(order)

        logger.info(
            "Order cancelled",
            order_id=order.id,
            sub_orders=len(cancellable),
            status=order.status,
            cancelled_by=command.cancelled_by,
        )
        return order
