"""Stripe payment gateway adapter.

Charges are Stripe Checkout Sessions; the order number travels as
``client_reference_id`` and in metadata so webhooks can be matched back.
Webhook signatures (``Stripe-Signature``) are checked with the stripe SDK
before the JSON body is trusted.
"""

import json
from collections.abc import Mapping

import stripe
import structlog

from orderflow.errors import GatewayError, VerificationError
from orderflow.payment.gateway.port import (
    ChargeHandle,
    ChargeRequest,
    OutcomeKind,
    PaymentGateway,
    PaymentOutcome,
    header,
)

logger = structlog.get_logger(__name__)

_EVENT_OUTCOMES = {
    "checkout.session.async_payment_succeeded": OutcomeKind.SUCCEEDED,
    "payment_intent.succeeded": OutcomeKind.SUCCEEDED,
    "checkout.session.async_payment_failed": OutcomeKind.FAILED,
    "checkout.session.expired": OutcomeKind.FAILED,
    "payment_intent.payment_failed": OutcomeKind.FAILED,
    "charge.refunded": OutcomeKind.REFUNDED,
}

_RETRYABLE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


def _cents(amount: float) -> int:
    return int(round(amount * 100))


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        success_url: str,
        cancel_url: str,
        tolerance: int = 300,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.tolerance = tolerance

    def verify(self, raw_payload: bytes, headers: Mapping[str, str]) -> PaymentOutcome:
        signature = header(headers, "Stripe-Signature")
        if not signature:
            raise VerificationError(self.name, "Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                raw_payload.decode("utf-8"), signature, self.webhook_secret, tolerance=self.tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise VerificationError(self.name, str(exc)) from exc

        try:
            event = json.loads(raw_payload)
            obj = event["data"]["object"]
            event_id = event["id"]
            event_type = event["type"]
        except (ValueError, KeyError, TypeError) as exc:
            raise VerificationError(self.name, f"Malformed event: {exc}") from exc

        metadata = obj.get("metadata") or {}
        order_reference = obj.get("client_reference_id") or metadata.get("order_number")

        if event_type == "checkout.session.completed":
            # Delayed methods complete the session before money arrives
            kind = OutcomeKind.SUCCEEDED if obj.get("payment_status") == "paid" else OutcomeKind.PENDING
        else:
            kind = _EVENT_OUTCOMES.get(event_type, OutcomeKind.PENDING)

        if event_type.startswith("checkout.session."):
            reference = obj.get("payment_intent") or obj.get("id")
            amount = obj.get("amount_total")
        elif event_type == "charge.refunded":
            reference = obj.get("payment_intent") or obj.get("id")
            amount = obj.get("amount_refunded")
        else:
            reference = obj.get("id")
            amount = obj.get("amount_received") or obj.get("amount")

        return PaymentOutcome(
            provider_name=self.name,
            provider_reference=reference,
            order_reference=order_reference,
            outcome=kind,
            amount=amount / 100 if amount is not None else None,
            currency=(obj.get("currency") or "").upper() or None,
            raw_event_id=event_id,
        )

    def create_charge(self, request: ChargeRequest, method: str) -> ChargeHandle:
        currency = request.currency.lower()
        line_items = [
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": line.title},
                    "unit_amount": _cents(line.unit_price),
                },
                "quantity": line.quantity,
            }
            for line in request.lines
        ]
        if request.shipping_cost:
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": "Shipping"},
                        "unit_amount": _cents(request.shipping_cost),
                    },
                    "quantity": 1,
                }
            )
        metadata = {"order_id": request.order_id, "order_number": request.order_number}

        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=line_items,
                client_reference_id=request.order_number,
                customer_email=request.customer_email,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                success_url=self.success_url.format(order_number=request.order_number),
                cancel_url=self.cancel_url.format(order_number=request.order_number),
                idempotency_key=f"checkout-{request.order_number}",
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe checkout session failed", order_number=request.order_number, error=str(exc))
            raise GatewayError(self.name, str(exc), retryable=isinstance(exc, _RETRYABLE_ERRORS)) from exc

        return ChargeHandle(provider_name=self.name, provider_reference=session.id, redirect_url=session.url)
