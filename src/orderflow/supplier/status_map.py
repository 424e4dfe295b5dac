"""Translation from supplier status vocabulary to SupplierOrder statuses.

Labels are matched case-insensitively. Anything not listed is unknown and is
never guessed at.
"""

from orderflow.order.order import EventKind
from orderflow.supplier.supplier_order import SupplierOrderStatus

SUPPLIER_STATUS_TABLE: dict[str, SupplierOrderStatus] = {
    "CREATED": SupplierOrderStatus.SUBMITTED,
    "IN_CART": SupplierOrderStatus.SUBMITTED,
    "UNPAID": SupplierOrderStatus.SUBMITTED,
    "WAIT_PAY": SupplierOrderStatus.SUBMITTED,
    "UNSHIPPED": SupplierOrderStatus.ACKNOWLEDGED,
    "PAID": SupplierOrderStatus.ACKNOWLEDGED,
    "PROCESSING": SupplierOrderStatus.ACKNOWLEDGED,
    "DISPATCHED": SupplierOrderStatus.ACKNOWLEDGED,
    "SHIPPED": SupplierOrderStatus.SHIPPED,
    "IN_TRANSIT": SupplierOrderStatus.SHIPPED,
    "DELIVERED": SupplierOrderStatus.DELIVERED,
    "FINISHED": SupplierOrderStatus.DELIVERED,
    "CANCELLED": SupplierOrderStatus.CANCELLED,
    "CANCELED": SupplierOrderStatus.CANCELLED,
}

# Supplier statuses the customer-visible order follows. CANCELLED is absent:
# the customer has paid, so an operator decides what happens next.
ORDER_EVENT_FOR: dict[SupplierOrderStatus, EventKind] = {
    SupplierOrderStatus.ACKNOWLEDGED: EventKind.SUPPLIER_PROCESSING,
    SupplierOrderStatus.SHIPPED: EventKind.SUPPLIER_SHIPPED,
    SupplierOrderStatus.DELIVERED: EventKind.SUPPLIER_DELIVERED,
}


def normalize_label(label: str | None) -> str:
    return (label or "").strip().upper().replace(" ", "_").replace("-", "_")


def translate(label: str | None) -> SupplierOrderStatus | None:
    return SUPPLIER_STATUS_TABLE.get(normalize_label(label))
