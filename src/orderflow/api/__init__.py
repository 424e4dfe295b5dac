"""Orderflow API package."""

from orderflow.api.routes import (
    admin_router,
    order_router,
    payment_webhook_router,
    register_exception_handlers,
    supplier_webhook_router,
)

__all__ = [
    "order_router",
    "payment_webhook_router",
    "supplier_webhook_router",
    "admin_router",
    "register_exception_handlers",
]
