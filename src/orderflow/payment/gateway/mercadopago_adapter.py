"""MercadoPago payment gateway adapter.

Notifications only carry the payment id, so after the ``x-signature`` check the
payment itself is fetched from the API to learn its status and the order
number (``external_reference``). Charges are checkout preferences whose
``init_point`` the customer is redirected to.
"""

import hashlib
import hmac
import json
from collections.abc import Mapping

import httpx
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

_STATUSES = {
    "approved": OutcomeKind.SUCCEEDED,
    "authorized": OutcomeKind.PENDING,
    "pending": OutcomeKind.PENDING,
    "in_process": OutcomeKind.PENDING,
    "in_mediation": OutcomeKind.PENDING,
    "rejected": OutcomeKind.FAILED,
    "cancelled": OutcomeKind.FAILED,
    "refunded": OutcomeKind.REFUNDED,
    "charged_back": OutcomeKind.REFUNDED,
}


def _parse_signature(value: str) -> dict[str, str]:
    parts = {}
    for chunk in value.split(","):
        key, _, val = chunk.strip().partition("=")
        parts[key] = val
    return parts


class MercadoPagoGateway(PaymentGateway):
    name = "mercadopago"

    def __init__(
        self,
        access_token: str,
        webhook_secret: str,
        notification_url: str = "",
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.notification_url = notification_url
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def verify(self, raw_payload: bytes, headers: Mapping[str, str]) -> PaymentOutcome:
        signature = header(headers, "x-signature")
        request_id = header(headers, "x-request-id") or ""
        if not signature:
            raise VerificationError(self.name, "Missing x-signature header")

        try:
            body = json.loads(raw_payload)
            data_id = str(body["data"]["id"])
            topic = body.get("type") or body.get("topic") or ""
        except (ValueError, KeyError, TypeError) as exc:
            raise VerificationError(self.name, f"Malformed notification: {exc}") from exc

        parts = _parse_signature(signature)
        manifest = f"id:{data_id.lower()};request-id:{request_id};ts:{parts.get('ts', '')};"
        expected = hmac.new(self.webhook_secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, parts.get("v1", "")):
            raise VerificationError(self.name, "Signature mismatch")

        if topic != "payment":
            return PaymentOutcome(
                provider_name=self.name,
                provider_reference=data_id,
                order_reference=None,
                outcome=OutcomeKind.PENDING,
                amount=None,
                currency=None,
                raw_event_id=f"{topic}:{data_id}",
            )

        payment = self._request("GET", f"/v1/payments/{data_id}")
        status = payment.get("status", "")
        kind = _STATUSES.get(status)
        if kind is None:
            logger.warning("Unrecognized MercadoPago payment status", payment_id=data_id, status=status)
            kind = OutcomeKind.PENDING

        return PaymentOutcome(
            provider_name=self.name,
            provider_reference=str(payment.get("id", data_id)),
            order_reference=payment.get("external_reference"),
            outcome=kind,
            amount=payment.get("transaction_amount"),
            currency=payment.get("currency_id"),
            # One notification per status change; retries repeat the pair
            raw_event_id=f"{data_id}:{status}",
        )

    def create_charge(self, request: ChargeRequest, method: str) -> ChargeHandle:
        items = [
            {
                "title": line.title,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "currency_id": request.currency,
            }
            for line in request.lines
        ]
        preference = {
            "items": items,
            "external_reference": request.order_number,
            "payer": {"email": request.customer_email},
            "shipments": {"cost": request.shipping_cost, "mode": "not_specified"},
            "metadata": {"order_id": request.order_id, "payment_method": method},
        }
        if self.notification_url:
            preference["notification_url"] = self.notification_url

        created = self._request(
            "POST",
            "/checkout/preferences",
            json=preference,
            headers={"X-Idempotency-Key": f"preference-{request.order_number}"},
        )
        return ChargeHandle(
            provider_name=self.name,
            provider_reference=created.get("id"),
            redirect_url=created.get("init_point"),
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise GatewayError(self.name, f"{method} {path} failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise GatewayError(self.name, f"{method} {path} returned {response.status_code}")
        if response.status_code >= 400:
            raise GatewayError(
                self.name, f"{method} {path} returned {response.status_code}: {response.text}", retryable=False
            )
        return response.json()
