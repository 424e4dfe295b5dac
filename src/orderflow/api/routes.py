"""FastAPI routes for orderflow: checkout, webhooks and operator actions.

Handlers that reach payment providers, the supplier or the database are plain
functions, so FastAPI runs them in its threadpool and a slow provider never
holds up the event loop.
"""

import hmac
import json
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers as register_protean_handlers
from protean.utils.globals import current_domain

from orderflow.api.dependencies import get_services, require_operator
from orderflow.api.schemas import (
    AdminOrderView,
    CustomerSchema,
    OrderItemView,
    OrderView,
    PaymentSchema,
    PlaceOrderRequest,
    PlaceOrderResponse,
    StatusHistorySchema,
    SupplierOrderView,
    SupplierWebhookRequest,
    SyncReportResponse,
    TransitionResponse,
    UpdateStatusRequest,
    WebhookAck,
)
from orderflow.errors import AmountMismatch, GatewayError, InvalidTransition, VerificationError
from orderflow.order.order import Order, OrderStatus
from orderflow.order.placement import PlaceOrder, subtotal_of
from orderflow.order.state_machine import OperatorEvent
from orderflow.payment.gateway.port import ChargeHandle
from orderflow.services import Services
from orderflow.supplier.adapter.port import SupplierStatusReport
from orderflow.supplier.supplier_order import SupplierOrder, SupplierOrderStatus


# ---------------------------------------------------------------------------
# View builders
# ---------------------------------------------------------------------------
def _payment_view(handle: ChargeHandle) -> PaymentSchema:
    return PaymentSchema(
        provider=handle.provider_name,
        reference=handle.provider_reference,
        redirect_url=handle.redirect_url,
        instructions=dict(handle.instructions or {}),
    )


def _order_fields(order: Order) -> dict:
    return {
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "total": order.total,
        "currency": order.currency,
        "tracking_number": order.tracking_number,
        "tracking_url": order.tracking_url,
        "carrier": order.carrier,
        "items": [
            OrderItemView(
                product_id=item.product_id,
                variant_id=item.variant_id,
                title=item.title,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for item in order.items
        ],
        "created_at": order.created_at,
        "confirmed_at": order.confirmed_at,
        "shipped_at": order.shipped_at,
        "delivered_at": order.delivered_at,
    }


def _admin_order_view(order: Order) -> AdminOrderView:
    customer = order.customer
    return AdminOrderView(
        order_id=str(order.id),
        customer=CustomerSchema(
            first_name=customer.first_name,
            last_name=customer.last_name,
            email=customer.email,
            phone=customer.phone,
            address=customer.address,
            city=customer.city,
            state=customer.state,
            postal_code=customer.postal_code,
            country=customer.country,
        ),
        payment_provider=order.payment_provider,
        payment_provider_reference=order.payment_provider_reference,
        history=[
            StatusHistorySchema(
                from_status=entry.from_status,
                to_status=entry.to_status,
                event_kind=entry.event_kind,
                source=entry.source,
                note=entry.note,
                occurred_at=entry.occurred_at,
            )
            for entry in sorted(order.status_history, key=lambda e: e.occurred_at)
        ],
        **_order_fields(order),
    )


def _supplier_order_view(supplier_order: SupplierOrder) -> SupplierOrderView:
    return SupplierOrderView(
        id=str(supplier_order.id),
        order_id=str(supplier_order.order_id),
        order_number=supplier_order.order_number,
        supplier_id=supplier_order.supplier_id,
        external_order_id=supplier_order.external_order_id,
        status=supplier_order.status,
        attempts=supplier_order.attempts or 0,
        last_error=supplier_order.last_error,
        last_status_label=supplier_order.last_status_label,
        tracking_number=supplier_order.tracking_number,
        last_synced_at=supplier_order.last_synced_at,
        next_attempt_at=supplier_order.next_attempt_at,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=PlaceOrderResponse)
def place_order(body: PlaceOrderRequest, services: Services = Depends(get_services)) -> PlaceOrderResponse:
    """Place an order and open the payment with the chosen provider.

    The order is kept even when the provider is unreachable; the client can
    ask for a new charge through ``POST /orders/{order_number}/charge``.
    """
    if body.payment_method not in services.gateways:
        raise ValidationError({"payment_method": [f"{body.payment_method} is not an enabled payment method"]})

    items = [item.model_dump() for item in body.items]
    command = PlaceOrder(
        customer=json.dumps(body.customer.model_dump()),
        items=json.dumps(items),
        shipping_cost=services.shipping.quote(subtotal_of(items)),
        payment_method=body.payment_method,
        currency=services.settings.shipping.currency,
        client_total=body.total,
    )
    order_id = current_domain.process(command, asynchronous=False)

    payment, payment_error = None, None
    try:
        payment = _payment_view(services.checkout.start_payment(order_id))
    except GatewayError as exc:
        payment_error = exc.reason

    order = current_domain.repository_for(Order).get(order_id)
    return PlaceOrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        total=order.total,
        payment=payment,
        payment_error=payment_error,
    )


@order_router.get("/{order_number}", response_model=OrderView)
def track_order(order_number: str, email: str) -> OrderView:
    """Customer-facing order lookup. The email must match the one used at checkout."""
    order = current_domain.repository_for(Order).find_by_number(order_number)
    if order is None or order.customer.email.strip().lower() != email.strip().lower():
        raise ObjectNotFoundError(f"Order `{order_number}` not found")
    return OrderView(**_order_fields(order))


@order_router.post("/{order_number}/charge", response_model=PaymentSchema)
def recreate_charge(order_number: str, services: Services = Depends(get_services)) -> PaymentSchema:
    """Open a fresh charge for an order still awaiting payment."""
    order = current_domain.repository_for(Order).find_by_number(order_number)
    if order is None:
        raise ObjectNotFoundError(f"Order `{order_number}` not found")
    try:
        handle = services.checkout.start_payment(order.id)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=f"Payment provider unavailable: {exc.reason}") from exc
    return _payment_view(handle)


@order_router.patch(
    "/{order_id}/status",
    response_model=TransitionResponse,
    dependencies=[Depends(require_operator)],
)
def update_order_status(
    order_id: str, body: UpdateStatusRequest, services: Services = Depends(get_services)
) -> TransitionResponse:
    """Operator override, applied through the same transition table as every other source."""
    try:
        target = OrderStatus(body.status.strip().upper())
    except ValueError:
        raise ValidationError({"status": [f"Unknown order status `{body.status}`"]}) from None

    event = OperatorEvent.for_target(
        target,
        operator_id=body.operator_id,
        requested_at=body.requested_at or datetime.now(UTC),
        note=body.note,
        tracking_number=body.tracking_number,
        tracking_url=body.tracking_url,
        carrier=body.carrier,
    )
    result = services.state_machine.apply(order_id, event)
    return TransitionResponse(
        order_id=order_id,
        applied=result.applied,
        result=result.reason,
        from_status=result.from_status.value,
        status=result.to_status.value,
    )


# ---------------------------------------------------------------------------
# Payment Webhook Router
# ---------------------------------------------------------------------------
payment_webhook_router = APIRouter(prefix="/payments/webhooks", tags=["payments"])


@payment_webhook_router.post("/{provider}", response_model=WebhookAck)
async def payment_webhook(
    provider: str, request: Request, services: Services = Depends(get_services)
) -> WebhookAck:
    """Receive a provider notification. Signatures are checked against the raw body."""
    raw_payload = await request.body()
    try:
        receipt = await run_in_threadpool(services.webhooks.handle, provider, raw_payload, request.headers)
    except VerificationError as exc:
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from exc
    except GatewayError as exc:
        # Provider state could not be fetched; a non-2xx answer makes the provider redeliver
        raise HTTPException(status_code=503, detail=f"Payment provider unavailable: {exc.reason}") from exc
    return WebhookAck(result=receipt.result, event_id=receipt.raw_event_id)


# ---------------------------------------------------------------------------
# Supplier Webhook Router
# ---------------------------------------------------------------------------
supplier_webhook_router = APIRouter(prefix="/suppliers/webhooks", tags=["suppliers"])


@supplier_webhook_router.post("/{supplier_id}", response_model=WebhookAck)
def supplier_webhook(
    supplier_id: str,
    body: SupplierWebhookRequest,
    services: Services = Depends(get_services),
    x_supplier_secret: str = Header(default=""),
) -> WebhookAck:
    """Status push from the supplier, handled exactly like a polled report."""
    orchestrator = services.orchestrator
    if supplier_id != orchestrator.supplier_id:
        raise ObjectNotFoundError(f"Unknown supplier `{supplier_id}`")

    expected = services.settings.supplier.webhook_secret
    if not expected or not hmac.compare_digest(x_supplier_secret.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid supplier webhook secret")

    supplier_order = current_domain.repository_for(SupplierOrder).find_by_external_id(supplier_id, body.orderId)
    if supplier_order is None:
        return WebhookAck(result="unknown_order", event_id=body.orderId)

    report = SupplierStatusReport(
        external_order_id=body.orderId,
        status_label=body.orderStatus,
        tracking_number=body.trackingNumber,
        tracking_url=body.trackingUrl,
        carrier=body.logisticName,
    )
    outcome = orchestrator.apply_report(supplier_order.order_id, report)
    return WebhookAck(result=outcome.result.value, event_id=body.orderId)


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_operator)])


@admin_router.get("/orders/{order_id}", response_model=AdminOrderView)
def get_order(order_id: str) -> AdminOrderView:
    order = current_domain.repository_for(Order).get(order_id)
    return _admin_order_view(order)


@admin_router.get("/supplier-orders", response_model=list[SupplierOrderView])
def list_supplier_orders(status: str = SupplierOrderStatus.SYNC_FAILED.value) -> list[SupplierOrderView]:
    """Supplier orders in one status, SYNC_FAILED by default."""
    try:
        wanted = SupplierOrderStatus(status.strip().upper())
    except ValueError:
        raise ValidationError({"status": [f"Unknown supplier order status `{status}`"]}) from None
    supplier_orders = current_domain.repository_for(SupplierOrder).find_by_statuses([wanted])
    return [_supplier_order_view(so) for so in supplier_orders]


@admin_router.post("/supplier-orders/{order_id}/retry", response_model=SupplierOrderView)
def retry_supplier_order(order_id: str, services: Services = Depends(get_services)) -> SupplierOrderView:
    """Resubmit a supplier order that exhausted its attempts."""
    return _supplier_order_view(services.orchestrator.retry_failed(order_id))


@admin_router.post("/tracking/sync", response_model=SyncReportResponse)
def run_tracking_sync(services: Services = Depends(get_services)) -> SyncReportResponse:
    """Run one tracking sync immediately instead of waiting for the schedule."""
    report = services.scheduler.run_once()
    return SyncReportResponse(**report.as_dict())


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------
def register_exception_handlers(app: FastAPI) -> None:
    """Protean's handlers for validation and lookup errors, plus 409 for rejected transitions."""
    register_protean_handlers(app)

    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"error": str(exc), "status": exc.status, "event_kind": exc.event_kind},
        )

    @app.exception_handler(AmountMismatch)
    async def _amount_mismatch(request: Request, exc: AmountMismatch) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"error": str(exc), "expected": exc.expected, "received": exc.received},
        )
