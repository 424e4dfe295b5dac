"""Configurable fake payment gateway for development and testing.

Webhooks are JSON bodies signed with HMAC-SHA256 over the raw bytes and sent
in ``X-Gateway-Signature``, the same scheme most card processors use, so the
whole verify → apply pipeline can be exercised without external calls.

    {"event_id": "evt_1", "order_number": "ORD-...", "reference": "fake_ch_...",
     "status": "succeeded", "amount": 23.52, "currency": "USD"}
"""

import hashlib
import hmac
import json
from collections.abc import Mapping
from uuid import uuid4

from orderflow.errors import GatewayError, VerificationError
from orderflow.payment.gateway.port import (
    ChargeHandle,
    ChargeRequest,
    OutcomeKind,
    PaymentGateway,
    PaymentOutcome,
    header,
)

SIGNATURE_HEADER = "X-Gateway-Signature"

_STATUSES = {
    "succeeded": OutcomeKind.SUCCEEDED,
    "failed": OutcomeKind.FAILED,
    "pending": OutcomeKind.PENDING,
    "refunded": OutcomeKind.REFUNDED,
}


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self, signing_secret: str) -> None:
        self.signing_secret = signing_secret
        self.should_succeed: bool = True
        self.retryable: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable", retryable: bool = True):
        """Configure charge creation behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.retryable = retryable

    def sign(self, raw_payload: bytes) -> str:
        return hmac.new(self.signing_secret.encode(), raw_payload, hashlib.sha256).hexdigest()

    def verify(self, raw_payload: bytes, headers: Mapping[str, str]) -> PaymentOutcome:
        signature = header(headers, SIGNATURE_HEADER)
        if not signature:
            raise VerificationError(self.name, "Missing signature header")
        if not hmac.compare_digest(self.sign(raw_payload), signature):
            raise VerificationError(self.name, "Signature mismatch")

        try:
            body = json.loads(raw_payload)
            kind = _STATUSES[body["status"]]
            event_id = body["event_id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise VerificationError(self.name, f"Malformed payload: {exc}") from exc

        return PaymentOutcome(
            provider_name=self.name,
            provider_reference=body.get("reference"),
            order_reference=body.get("order_number"),
            outcome=kind,
            amount=body.get("amount"),
            currency=body.get("currency"),
            raw_event_id=str(event_id),
        )

    def create_charge(self, request: ChargeRequest, method: str) -> ChargeHandle:
        self.calls.append(
            {
                "method": "create_charge",
                "order_number": request.order_number,
                "amount": request.amount,
                "currency": request.currency,
                "payment_method": method,
            }
        )
        if not self.should_succeed:
            raise GatewayError(self.name, self.failure_reason, retryable=self.retryable)

        reference = f"fake_ch_{uuid4().hex[:12]}"
        return ChargeHandle(
            provider_name=self.name,
            provider_reference=reference,
            redirect_url=f"https://pay.example.test/checkout/{reference}",
        )
