"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from orderflow.domain import orderflow


@orderflow.event(part_of="Order")
class OrderPlaced:
    """A customer checked out and a PENDING order was recorded."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_email = String(required=True)
    subtotal = Float(required=True)
    shipping_cost = Float(required=True)
    total = Float(required=True)
    currency = String(required=True)
    payment_method = String(required=True)
    placed_at = DateTime(required=True)


@orderflow.event(part_of="Order")
class OrderStatusChanged:
    """An event was accepted by the transition table and moved the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    event_kind = String(required=True)
    source = String(required=True)
    tracking_number = String()
    changed_at = DateTime(required=True)
