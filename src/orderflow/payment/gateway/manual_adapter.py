"""Manual payments: bank transfer or wallet transfer confirmed by an operator.

There is no provider behind this adapter, so it never authenticates a webhook.
Payment is confirmed through the operator status endpoint instead.
"""

from collections.abc import Mapping

from orderflow.errors import VerificationError
from orderflow.payment.gateway.port import ChargeHandle, ChargeRequest, PaymentGateway, PaymentOutcome


class ManualGateway(PaymentGateway):
    name = "manual"

    def __init__(self, instructions: dict | None = None) -> None:
        self.instructions = instructions or {
            "type": "transfer",
            "message": "Send the order total quoting your order number; we confirm payment once it arrives.",
        }

    def verify(self, raw_payload: bytes, headers: Mapping[str, str]) -> PaymentOutcome:
        raise VerificationError(self.name, "Manual payments are confirmed by an operator, not by webhook")

    def create_charge(self, request: ChargeRequest, method: str) -> ChargeHandle:
        return ChargeHandle(
            provider_name=self.name,
            instructions={
                **self.instructions,
                "method": method,
                "order_number": request.order_number,
                "amount": request.amount,
                "currency": request.currency,
            },
        )
