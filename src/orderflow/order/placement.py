"""Order placement: command, handler and the shipping policy.

Every money figure is computed here from the line items. A total sent by the
client is only compared against the computed one, never stored.
"""

import json
import secrets
import string
import time
from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, String, Text
from protean.utils.globals import current_domain

from orderflow.config import ShippingSettings
from orderflow.domain import orderflow
from orderflow.order.order import Order, round_money

logger = structlog.get_logger(__name__)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
_MAX_NUMBER_ATTEMPTS = 5

REQUIRED_CUSTOMER_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "address",
    "city",
    "state",
    "postal_code",
    "country",
)


def generate_order_number(now: float | None = None) -> str:
    """``ORD-<unix seconds>-<5 uppercase alphanumerics>``"""
    stamp = int(now if now is not None else time.time())
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(5))
    return f"ORD-{stamp}-{suffix}"


@dataclass(frozen=True)
class ShippingPolicy:
    flat_rate: float
    free_shipping_threshold: float | None = None

    @classmethod
    def from_settings(cls, settings: ShippingSettings) -> "ShippingPolicy":
        return cls(flat_rate=settings.flat_rate, free_shipping_threshold=settings.free_shipping_threshold)

    def quote(self, subtotal: float) -> float:
        if self.free_shipping_threshold is not None and subtotal >= self.free_shipping_threshold:
            return 0.0
        return round_money(self.flat_rate)


def subtotal_of(items: list[dict]) -> float:
    return round_money(sum(round_money(int(i["quantity"]) * round_money(i["unit_price"])) for i in items))


@orderflow.command(part_of="Order")
class PlaceOrder:
    customer = Text(required=True)  # JSON: customer snapshot dict
    items = Text(required=True)  # JSON: list of {product_id, variant_id, title, quantity, unit_price}
    shipping_cost = Float(required=True, min_value=0.0)
    payment_method = String(required=True, max_length=30)
    currency = String(max_length=3, default="USD")
    client_total = Float()
    order_number = String(max_length=30)


@orderflow.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        customer = json.loads(command.customer) if isinstance(command.customer, str) else command.customer
        items = json.loads(command.items) if isinstance(command.items, str) else command.items

        _validate_customer(customer)
        _validate_items(items)

        repo = current_domain.repository_for(Order)
        order_number = command.order_number or _unused_order_number(repo)
        if command.order_number and repo.find_by_number(command.order_number) is not None:
            raise ValidationError({"order_number": [f"{command.order_number} is already taken"]})

        order = Order.place(
            order_number=order_number,
            customer={field: customer[field] for field in REQUIRED_CUSTOMER_FIELDS},
            items=items,
            shipping_cost=command.shipping_cost,
            payment_method=command.payment_method,
            currency=command.currency or "USD",
        )

        if command.client_total is not None and abs(round_money(command.client_total) - order.total) > 0.01:
            logger.warning(
                "Client total rejected",
                order_number=order_number,
                client_total=command.client_total,
                computed_total=order.total,
            )
            raise ValidationError(
                {"total": [f"Submitted total {command.client_total:.2f} does not match {order.total:.2f}"]}
            )

        repo.add(order)
        logger.info("Order placed", order_id=order.id, order_number=order.order_number, total=order.total)
        return str(order.id)


def _unused_order_number(repo) -> str:
    for _ in range(_MAX_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        if repo.find_by_number(candidate) is None:
            return candidate
    raise ValidationError({"order_number": ["Could not allocate a unique order number"]})


def _validate_customer(customer) -> None:
    if not isinstance(customer, dict):
        raise ValidationError({"customer": ["Customer details are required"]})
    missing = [field for field in REQUIRED_CUSTOMER_FIELDS if not customer.get(field)]
    if missing:
        raise ValidationError({field: ["is required"] for field in missing})


def _validate_items(items) -> None:
    if not isinstance(items, list) or not items:
        raise ValidationError({"items": ["An order needs at least one line item"]})
    errors = []
    for index, item in enumerate(items):
        if not item.get("product_id"):
            errors.append(f"Item {index}: product_id is required")
        if int(item.get("quantity") or 0) < 1:
            errors.append(f"Item {index}: quantity must be at least 1")
        if item.get("unit_price") is None or float(item["unit_price"]) < 0:
            errors.append(f"Item {index}: unit_price must be zero or more")
    if errors:
        raise ValidationError({"items": errors})
