"""Read-side lookups for orders and the trailing sales volume used for tiering."""

from datetime import datetime, timedelta

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from settlement.ordering.order import Order, SubOrder
from settlement.ordering.status import QUALIFYING_FOR_VOLUME
from settlement.utils.clock import as_utc


def _sub_orders():
    return current_domain.repository_for(SubOrder)._dao.query


def trailing_sales_volume(seller_id: str, as_of: datetime, window_days: int) -> int:
    """Current totals of the seller's paid sub-orders inside the trailing window.

    Only paid, fulfilled and partially refunded sub-orders qualify; refunded
    and cancelled ones contribute nothing.
    """
    since = as_of - timedelta(days=window_days)
    query = _sub_orders().filter(
        seller_id=seller_id,
        status__in=[status.value for status in QUALIFYING_FOR_VOLUME],
    )
    # Qualifying sub-orders always carry paid_at; the window is applied here
    return sum(
        sub_order.total_amount
        for sub_order in query.limit(None).all().items
        if since < as_utc(sub_order.paid_at) <= as_of
    )


def load_order(order_id: str) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def order_id_for(sub_order_id: str) -> str:
    """Id of the order owning ``sub_order_id``."""
    record = _sub_orders().filter(id=sub_order_id).all().first
    if record is None:
        raise ObjectNotFoundError(f"Sub-order {sub_order_id} does not exist")
    return record.order_id


def load_sub_order(sub_order_id: str) -> tuple[Order, SubOrder]:
    """The owning order, loaded through its repository, and the sub-order within it."""
    order = load_order(order_id_for(sub_order_id))
    return order, order.sub_order(sub_order_id)


def sub_order_ids_for(order_id: str) -> list[str]:
    return [record.id for record in _sub_orders().filter(order_id=order_id).order_by("position").limit(None).all().items]


def get_order(order_id: str) -> Order:
    return load_order(order_id)


def get_sub_order(sub_order_id: str) -> SubOrder:
    return load_sub_order(sub_order_id)[1]
