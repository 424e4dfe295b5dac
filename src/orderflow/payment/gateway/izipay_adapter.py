"""Izipay (Lyra krypton) payment gateway adapter.

The IPN posts ``kr-answer`` (a JSON document) and ``kr-hash``, the hex
HMAC-SHA256 of the answer under the shop key. Charges are form tokens the
storefront's embedded form is initialised with.
"""

import hashlib
import hmac
import json
from collections.abc import Mapping
from urllib.parse import parse_qs

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

_ORDER_STATUSES = {
    "PAID": OutcomeKind.SUCCEEDED,
    "RUNNING": OutcomeKind.PENDING,
    "UNPAID": OutcomeKind.FAILED,
    "ABANDONED": OutcomeKind.FAILED,
}


def _read_fields(raw_payload: bytes, headers: Mapping[str, str]) -> dict[str, str]:
    content_type = header(headers, "content-type") or ""
    text = raw_payload.decode("utf-8")
    if "application/x-www-form-urlencoded" in content_type:
        return {key: values[0] for key, values in parse_qs(text).items()}
    body = json.loads(text)
    # Older integrations post snake_case keys
    return {key.replace("_", "-"): value for key, value in body.items()}


class IzipayGateway(PaymentGateway):
    name = "izipay"

    def __init__(
        self,
        username: str,
        password: str,
        hmac_key: str,
        base_url: str = "https://api.micuentaweb.pe",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.hmac_key = hmac_key
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout, auth=(username, password))

    def sign(self, answer: str) -> str:
        return hmac.new(self.hmac_key.encode(), answer.encode(), hashlib.sha256).hexdigest()

    def verify(self, raw_payload: bytes, headers: Mapping[str, str]) -> PaymentOutcome:
        try:
            fields = _read_fields(raw_payload, headers)
            answer = fields["kr-answer"]
            received_hash = fields["kr-hash"]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise VerificationError(self.name, f"Malformed IPN: {exc}") from exc

        if not hmac.compare_digest(self.sign(answer), received_hash):
            raise VerificationError(self.name, "kr-hash mismatch")

        try:
            document = json.loads(answer)
            order_status = document["orderStatus"]
            details = document.get("orderDetails") or {}
            transaction = (document.get("transactions") or [{}])[0]
        except (ValueError, KeyError, TypeError) as exc:
            raise VerificationError(self.name, f"Malformed kr-answer: {exc}") from exc

        kind = _ORDER_STATUSES.get(order_status, OutcomeKind.PENDING)
        if transaction.get("detailedStatus") in ("REFUNDED", "CANCELLED") and order_status == "PAID":
            kind = OutcomeKind.REFUNDED

        transaction_id = transaction.get("uuid") or details.get("orderId")
        amount = details.get("orderTotalAmount", transaction.get("amount"))
        return PaymentOutcome(
            provider_name=self.name,
            provider_reference=transaction_id,
            order_reference=details.get("orderId"),
            outcome=kind,
            amount=amount / 100 if amount is not None else None,
            currency=details.get("orderCurrency") or transaction.get("currency"),
            raw_event_id=f"{transaction_id}:{order_status}:{transaction.get('detailedStatus', '')}",
        )

    def create_charge(self, request: ChargeRequest, method: str) -> ChargeHandle:
        payload = {
            "amount": int(round(request.amount * 100)),
            "currency": request.currency,
            "orderId": request.order_number,
            "customer": {"email": request.customer_email, "reference": request.order_id},
            "metadata": {"payment_method": method},
        }
        try:
            response = self._client.post("/api-payment/V4/Charge/CreatePayment", json=payload)
        except httpx.HTTPError as exc:
            raise GatewayError(self.name, f"CreatePayment failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise GatewayError(self.name, f"CreatePayment returned {response.status_code}")
        body = response.json()
        if response.status_code >= 400 or body.get("status") != "SUCCESS":
            error = (body.get("answer") or {}).get("errorMessage") or response.text
            raise GatewayError(self.name, f"CreatePayment rejected: {error}", retryable=False)

        form_token = body["answer"]["formToken"]
        return ChargeHandle(
            provider_name=self.name,
            provider_reference=request.order_number,
            instructions={"form_token": form_token},
        )
