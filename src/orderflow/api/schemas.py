"""Pydantic request/response schemas for the orderflow API.

These are external contracts, kept separate from the protean commands and
aggregates they are translated into.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class CustomerSchema(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=254)
    phone: str = Field(min_length=3, max_length=30)
    address: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=2, max_length=2, description="ISO 3166-1 alpha-2 code")


class LineItemSchema(BaseModel):
    product_id: str = Field(min_length=1)
    variant_id: str | None = None
    title: str | None = None
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class StatusHistorySchema(BaseModel):
    from_status: str
    to_status: str
    event_kind: str
    source: str
    note: str | None = None
    occurred_at: datetime


# ---------------------------------------------------------------------------
# Order requests / responses
# ---------------------------------------------------------------------------
class PlaceOrderRequest(BaseModel):
    customer: CustomerSchema
    items: list[LineItemSchema] = Field(min_length=1)
    payment_method: str
    total: float | None = Field(default=None, ge=0, description="Client-side total, checked against the server's")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer": {
                        "first_name": "Ana",
                        "last_name": "Quispe",
                        "email": "ana@example.com",
                        "phone": "+51987654321",
                        "address": "Av. Larco 123",
                        "city": "Lima",
                        "state": "Lima",
                        "postal_code": "15074",
                        "country": "PE",
                    },
                    "items": [{"product_id": "prod-1", "variant_id": "var-1", "quantity": 1, "unit_price": 18.53}],
                    "payment_method": "stripe",
                    "total": 23.52,
                }
            ]
        }
    }


class PaymentSchema(BaseModel):
    provider: str
    reference: str | None = None
    redirect_url: str | None = None
    instructions: dict = Field(default_factory=dict)


class PlaceOrderResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    subtotal: float
    shipping_cost: float
    total: float
    payment: PaymentSchema | None = None
    payment_error: str | None = None


class OrderItemView(BaseModel):
    product_id: str
    variant_id: str | None = None
    title: str | None = None
    quantity: int
    unit_price: float
    line_total: float


class OrderView(BaseModel):
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    subtotal: float
    shipping_cost: float
    total: float
    currency: str
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    items: list[OrderItemView]
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None


class AdminOrderView(OrderView):
    order_id: str
    customer: CustomerSchema
    payment_provider: str | None = None
    payment_provider_reference: str | None = None
    history: list[StatusHistorySchema]


class UpdateStatusRequest(BaseModel):
    status: str
    operator_id: str = Field(min_length=1)
    note: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    requested_at: datetime | None = Field(
        default=None, description="When the operator issued the action; replays with the same value are ignored"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"status": "CANCELLED", "operator_id": "ops-ana", "note": "Customer asked to cancel"},
                {"status": "SHIPPED", "operator_id": "ops-ana", "tracking_number": "CJ123", "carrier": "CJ Packet"},
            ]
        }
    }


class TransitionResponse(BaseModel):
    order_id: str
    applied: bool
    result: str
    from_status: str
    status: str


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------
class WebhookAck(BaseModel):
    received: bool = True
    result: str
    event_id: str | None = None


class SupplierWebhookRequest(BaseModel):
    orderId: str
    orderStatus: str
    trackingNumber: str | None = None
    trackingUrl: str | None = None
    logisticName: str | None = None


# ---------------------------------------------------------------------------
# Supplier administration
# ---------------------------------------------------------------------------
class SupplierOrderView(BaseModel):
    id: str
    order_id: str
    order_number: str
    supplier_id: str
    external_order_id: str | None = None
    status: str
    attempts: int
    last_error: str | None = None
    last_status_label: str | None = None
    tracking_number: str | None = None
    last_synced_at: datetime | None = None
    next_attempt_at: datetime | None = None


class SyncReportResponse(BaseModel):
    resumed: int
    selected: int
    changed: int
    unchanged: int
    unknown: int
    rejected: int
    failed: int
