"""Domain events for the SupplierOrder aggregate."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from orderflow.domain import orderflow


@orderflow.event(part_of="SupplierOrder")
class SupplierOrderSubmitted:
    """The supplier accepted the fulfillment request and assigned its own id."""

    __version__ = 1

    supplier_order_id = Identifier(required=True)
    order_id = Identifier(required=True)
    supplier_id = String(required=True)
    external_order_id = String(required=True)
    attempts = Integer(required=True)
    submitted_at = DateTime(required=True)


@orderflow.event(part_of="SupplierOrder")
class SupplierOrderSyncFailed:
    """Automatic submission gave up. An operator has to step in."""

    __version__ = 1

    supplier_order_id = Identifier(required=True)
    order_id = Identifier(required=True)
    supplier_id = String(required=True)
    attempts = Integer(required=True)
    last_error = Text(required=True)
    failed_at = DateTime(required=True)


@orderflow.event(part_of="SupplierOrder")
class SupplierOrderStatusChanged:
    __version__ = 1

    supplier_order_id = Identifier(required=True)
    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    status_label = Text()
    tracking_number = String()
    changed_at = DateTime(required=True)
