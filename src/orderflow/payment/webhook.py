"""Inbound payment webhooks: verify → canonical event → apply.

Authentication failures propagate as ``VerificationError`` so the HTTP layer
can refuse the request. Everything past verification is acknowledged: the
provider cannot do anything useful with a rejected transition, so those are
logged and reported in the receipt instead of raised.
"""

from collections.abc import Mapping
from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from orderflow.errors import TransitionError
from orderflow.order.order import Order
from orderflow.order.state_machine import OrderStateMachine, PaymentEvent
from orderflow.payment.gateway import GatewayRegistry
from orderflow.payment.gateway.port import OutcomeKind, PaymentOutcome

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WebhookReceipt:
    provider: str
    result: str  # processed | duplicate | already_paid | rejected | pending | unknown_order
    raw_event_id: str
    order_id: str | None = None
    order_status: str | None = None


class PaymentWebhookProcessor:
    def __init__(self, gateways: GatewayRegistry, state_machine: OrderStateMachine) -> None:
        self._gateways = gateways
        self._state_machine = state_machine

    def handle(self, provider: str, raw_payload: bytes, headers: Mapping[str, str]) -> WebhookReceipt:
        gateway = self._gateways.get(provider)
        if gateway is None:
            raise ObjectNotFoundError(f"Unknown payment provider `{provider}`")

        outcome = gateway.verify(raw_payload, headers)
        log = logger.bind(provider=provider, raw_event_id=outcome.raw_event_id, outcome=outcome.outcome.value)

        if outcome.outcome == OutcomeKind.PENDING:
            log.info("Pending payment notification acknowledged", order_reference=outcome.order_reference)
            return WebhookReceipt(provider, "pending", outcome.raw_event_id)

        order = self._find_order(outcome)
        if order is None:
            log.warning(
                "Payment notification for unknown order",
                order_reference=outcome.order_reference,
                provider_reference=outcome.provider_reference,
            )
            return WebhookReceipt(provider, "unknown_order", outcome.raw_event_id)

        try:
            result = self._state_machine.apply(order.id, PaymentEvent(outcome))
        except TransitionError as exc:
            log.warning("Payment notification rejected", order_id=order.id, status=order.status, reason=str(exc))
            return WebhookReceipt(provider, "rejected", outcome.raw_event_id, order.id, order.status)

        return WebhookReceipt(
            provider,
            "processed" if result.applied else result.reason,
            outcome.raw_event_id,
            order.id,
            result.to_status.value,
        )

    @staticmethod
    def _find_order(outcome: PaymentOutcome) -> Order | None:
        repo = current_domain.repository_for(Order)
        if outcome.order_reference:
            order = repo.find_by_number(outcome.order_reference)
            if order is not None:
                return order
        if outcome.provider_reference:
            return repo.find_by_payment_reference(outcome.provider_name, outcome.provider_reference)
        return None
