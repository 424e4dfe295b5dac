"""Order aggregate with OrderItem and StatusHistoryEntry entities and the CustomerSnapshot value object.

The Order is the one authoritative record the customer sees. Its status only
moves along the transition table below; every accepted move appends exactly
one StatusHistoryEntry, whose dedup key makes replays of the same external
event detectable.

Status graph:
    PENDING → CONFIRMED → PROCESSING → SHIPPED → DELIVERED
    PENDING → FAILED
    any non-terminal → CANCELLED | REFUNDED
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Integer, String, Text, ValueObject

from orderflow.domain import orderflow
from orderflow.errors import InvalidTransition
from orderflow.order.events import OrderPlaced, OrderStatusChanged


class OrderStatus(Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class PaymentStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class EventKind(Enum):
    """Closed set of things that can happen to an order."""

    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
    SUPPLIER_PROCESSING = "SUPPLIER_PROCESSING"
    SUPPLIER_SHIPPED = "SUPPLIER_SHIPPED"
    SUPPLIER_DELIVERED = "SUPPLIER_DELIVERED"
    OPERATOR_CONFIRM = "OPERATOR_CONFIRM"
    OPERATOR_PROCESS = "OPERATOR_PROCESS"
    OPERATOR_SHIP = "OPERATOR_SHIP"
    OPERATOR_DELIVER = "OPERATOR_DELIVER"
    OPERATOR_CANCEL = "OPERATOR_CANCEL"
    OPERATOR_REFUND = "OPERATOR_REFUND"


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})
_NON_TERMINAL = [s for s in OrderStatus if s not in TERMINAL_STATUSES]

_TRANSITIONS: dict[tuple[OrderStatus, EventKind], OrderStatus] = {
    (OrderStatus.PENDING, EventKind.PAYMENT_SUCCEEDED): OrderStatus.CONFIRMED,
    (OrderStatus.PENDING, EventKind.PAYMENT_FAILED): OrderStatus.FAILED,
    (OrderStatus.PENDING, EventKind.OPERATOR_CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.CONFIRMED, EventKind.SUPPLIER_PROCESSING): OrderStatus.PROCESSING,
    (OrderStatus.CONFIRMED, EventKind.OPERATOR_PROCESS): OrderStatus.PROCESSING,
    (OrderStatus.CONFIRMED, EventKind.SUPPLIER_SHIPPED): OrderStatus.SHIPPED,
    (OrderStatus.CONFIRMED, EventKind.OPERATOR_SHIP): OrderStatus.SHIPPED,
    (OrderStatus.PROCESSING, EventKind.SUPPLIER_SHIPPED): OrderStatus.SHIPPED,
    (OrderStatus.PROCESSING, EventKind.OPERATOR_SHIP): OrderStatus.SHIPPED,
    (OrderStatus.CONFIRMED, EventKind.SUPPLIER_DELIVERED): OrderStatus.DELIVERED,
    (OrderStatus.PROCESSING, EventKind.SUPPLIER_DELIVERED): OrderStatus.DELIVERED,
    (OrderStatus.SHIPPED, EventKind.SUPPLIER_DELIVERED): OrderStatus.DELIVERED,
    (OrderStatus.SHIPPED, EventKind.OPERATOR_DELIVER): OrderStatus.DELIVERED,
}
for _status in _NON_TERMINAL:
    _TRANSITIONS[(_status, EventKind.OPERATOR_CANCEL)] = OrderStatus.CANCELLED
    _TRANSITIONS[(_status, EventKind.OPERATOR_REFUND)] = OrderStatus.REFUNDED
    _TRANSITIONS[(_status, EventKind.PAYMENT_REFUNDED)] = OrderStatus.REFUNDED


def next_status(status: OrderStatus, kind: EventKind) -> OrderStatus | None:
    """Target status for an event, or None when the table has no edge."""
    return _TRANSITIONS.get((status, kind))


def transition_table() -> dict[tuple[OrderStatus, EventKind], OrderStatus]:
    return dict(_TRANSITIONS)


def round_money(value: float) -> float:
    return round(float(value), 2)


@orderflow.value_object(part_of="Order")
class CustomerSnapshot:
    """Contact and shipping details captured at checkout. Never edited afterwards."""

    first_name: String(required=True, max_length=100)
    last_name: String(required=True, max_length=100)
    email: String(required=True, max_length=254)
    phone: String(required=True, max_length=30)
    address: String(required=True, max_length=255)
    city: String(required=True, max_length=100)
    state: String(required=True, max_length=100)
    postal_code: String(required=True, max_length=20)
    country: String(required=True, max_length=2)

    @invariant.post
    def email_must_look_like_an_address(self):
        if self.email and "@" not in self.email:
            raise ValidationError({"email": ["Invalid email address"]})

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@orderflow.entity(part_of="Order")
class OrderItem:
    product_id: String(required=True, max_length=100)
    variant_id: String(max_length=100)
    title: String(max_length=255)
    quantity: Integer(required=True, min_value=1)
    unit_price: Float(required=True, min_value=0.0)
    line_total: Float(required=True, min_value=0.0)


@orderflow.entity(part_of="Order")
class StatusHistoryEntry:
    """One accepted transition. Appended, never edited or removed."""

    from_status: String(required=True, choices=OrderStatus)
    to_status: String(required=True, choices=OrderStatus)
    event_kind: String(required=True, choices=EventKind)
    source: String(required=True, max_length=100)
    dedup_key: String(required=True, max_length=255)
    note: Text()
    occurred_at: DateTime(required=True)


@orderflow.aggregate
class Order:
    """A customer's purchase, from checkout through payment, supplier fulfillment and delivery."""

    order_number: String(required=True, max_length=30, unique=True)
    customer: ValueObject(CustomerSnapshot, required=True)
    items: HasMany(OrderItem)
    subtotal: Float(required=True, min_value=0.0)
    shipping_cost: Float(required=True, min_value=0.0)
    total: Float(required=True, min_value=0.0)
    currency: String(max_length=3, default="USD")
    status: String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status: String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    payment_method: String(required=True, max_length=30)
    payment_provider: String(max_length=30)
    payment_provider_reference: String(max_length=255)
    tracking_number: String(max_length=100)
    tracking_url: String(max_length=500)
    carrier: String(max_length=100)
    status_history: HasMany(StatusHistoryEntry)
    created_at: DateTime(default=lambda: datetime.now(UTC))
    confirmed_at: DateTime()
    shipped_at: DateTime()
    delivered_at: DateTime()
    cancelled_at: DateTime()
    updated_at: DateTime(default=lambda: datetime.now(UTC))

    @invariant.post
    def total_equals_subtotal_plus_shipping(self):
        if self.subtotal is None or self.shipping_cost is None or self.total is None:
            return
        if round_money(self.subtotal + self.shipping_cost) != round_money(self.total):
            raise ValidationError({"total": ["Total must equal subtotal plus shipping cost"]})

    @classmethod
    def place(
        cls,
        order_number: str,
        customer: dict,
        items: list[dict],
        shipping_cost: float,
        payment_method: str,
        currency: str = "USD",
    ) -> "Order":
        """Build a PENDING order, computing every money figure from the line items."""
        if not items:
            raise ValidationError({"items": ["An order needs at least one line item"]})

        lines = []
        for item in items:
            quantity = int(item["quantity"])
            unit_price = round_money(item["unit_price"])
            lines.append(
                OrderItem(
                    product_id=item["product_id"],
                    variant_id=item.get("variant_id"),
                    title=item.get("title"),
                    quantity=quantity,
                    unit_price=unit_price,
                    line_total=round_money(quantity * unit_price),
                )
            )

        subtotal = round_money(sum(line.line_total for line in lines))
        shipping_cost = round_money(shipping_cost)
        order = cls(
            order_number=order_number,
            customer=CustomerSnapshot(**customer),
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            total=round_money(subtotal + shipping_cost),
            currency=currency,
            payment_method=payment_method,
        )
        with atomic_change(order):
            for line in lines:
                order.add_items(line)

        order.raise_(
            OrderPlaced(
                order_id=order.id,
                order_number=order.order_number,
                customer_email=order.customer.email,
                subtotal=order.subtotal,
                shipping_cost=order.shipping_cost,
                total=order.total,
                currency=order.currency,
                payment_method=order.payment_method,
                placed_at=order.created_at,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    def has_processed(self, dedup_key: str) -> bool:
        return any(entry.dedup_key == dedup_key for entry in self.status_history)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def attach_charge(self, provider: str, reference: str | None) -> None:
        """Remember which provider charge belongs to this order. Only while unpaid."""
        if self.status != OrderStatus.PENDING.value:
            raise ValidationError({"status": ["Charges can only be attached to pending orders"]})
        self.payment_provider = provider
        self.payment_provider_reference = reference
        self.updated_at = datetime.now(UTC)

    def transition(
        self,
        kind: EventKind,
        source: str,
        dedup_key: str,
        note: str | None = None,
        tracking_number: str | None = None,
        tracking_url: str | None = None,
        carrier: str | None = None,
        payment_provider: str | None = None,
        payment_reference: str | None = None,
    ) -> OrderStatus:
        """Apply one event through the transition table and record it.

        Only the fields belonging to the event kind are written: payment fields
        for payment events, tracking fields for shipping events, timestamps for
        the status reached.
        """
        current = self.current_status
        target = next_status(current, kind)
        if target is None:
            raise InvalidTransition(self.id, current.value, kind.value)

        now = datetime.now(UTC)
        self.status = target.value

        if target == OrderStatus.CONFIRMED:
            self.payment_status = PaymentStatus.PAID.value
            self.confirmed_at = now
            if payment_provider:
                self.payment_provider = payment_provider
            if payment_reference:
                self.payment_provider_reference = payment_reference
        elif target == OrderStatus.FAILED:
            self.payment_status = PaymentStatus.FAILED.value
        elif target == OrderStatus.REFUNDED:
            if self.payment_status == PaymentStatus.PAID.value:
                self.payment_status = PaymentStatus.REFUNDED.value
        elif target == OrderStatus.CANCELLED:
            self.cancelled_at = now

        if target in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            self.tracking_number = tracking_number or self.tracking_number
            self.tracking_url = tracking_url or self.tracking_url
            self.carrier = carrier or self.carrier
            if target == OrderStatus.SHIPPED:
                self.shipped_at = now
            else:
                self.delivered_at = now

        self.updated_at = now
        self.add_status_history(
            StatusHistoryEntry(
                from_status=current.value,
                to_status=target.value,
                event_kind=kind.value,
                source=source,
                dedup_key=dedup_key,
                note=note,
                occurred_at=now,
            )
        )
        self.raise_(
            OrderStatusChanged(
                order_id=self.id,
                order_number=self.order_number,
                from_status=current.value,
                to_status=target.value,
                event_kind=kind.value,
                source=source,
                tracking_number=self.tracking_number,
                changed_at=now,
            )
        )
        return target
