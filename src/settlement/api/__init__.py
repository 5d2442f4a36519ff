from settlement.api.errors import register_error_handlers
from settlement.api.routes import (
    commission_router,
    inventory_router,
    orders_router,
    sellers_router,
    sub_orders_router,
    webhooks_router,
)

__all__ = [
    "commission_router",
    "inventory_router",
    "orders_router",
    "register_error_handlers",
    "sellers_router",
    "sub_orders_router",
    "webhooks_router",
]
