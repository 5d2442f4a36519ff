"""Sub-order fulfilment: the seller has shipped a paid sub-order."""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.exceptions import PaymentPending
from settlement.locking import locks, sub_order_key
from settlement.ordering.order import Order
from settlement.ordering.queries import load_sub_order
from settlement.ordering.status import SubOrderStatus

logger = structlog.get_logger(__name__)


@settlement.command(part_of="Order")
class FulfilSubOrder:
    sub_order_id = Identifier(required=True)


@settlement.command_handler(part_of=Order)
class FulfilmentHandler:
    @handle(FulfilSubOrder)
    def fulfil_sub_order(self, command: FulfilSubOrder):
        with locks.scope() as scope:
            scope.lock(sub_order_key(command.sub_order_id))
            order, sub_order = load_sub_order(command.sub_order_id)

            if sub_order.current_status == SubOrderStatus.PENDING_PAYMENT:
                raise PaymentPending(
                    f"Sub-order {sub_order.id} cannot be fulfilled before payment",
                    sub_order_id=sub_order.id,
                )

            now = datetime.now(UTC)
            sub_order.fulfil(now)
            order.recalculate(now)
            current_domain.repository_for(Order).add(order)

        logger.info("Sub-order fulfilled", sub_order_id=sub_order.id, seller_id=sub_order.seller_id)
        return sub_order
