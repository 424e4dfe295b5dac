"""Opening a provider charge for a freshly placed order."""

import time
from typing import Callable

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orderflow.errors import GatewayError
from orderflow.order.order import Order, OrderStatus
from orderflow.order.state_machine import OrderStateMachine
from orderflow.payment.gateway import GatewayRegistry
from orderflow.payment.gateway.port import ChargeHandle, ChargeLine, ChargeRequest
from orderflow.utils.retry import RetryPolicy, call_with_retry

logger = structlog.get_logger(__name__)


def charge_request_for(order: Order) -> ChargeRequest:
    return ChargeRequest(
        order_id=order.id,
        order_number=order.order_number,
        amount=order.total,
        currency=order.currency,
        customer_email=order.customer.email,
        customer_name=order.customer.full_name,
        lines=tuple(
            ChargeLine(title=item.title or item.product_id, quantity=item.quantity, unit_price=item.unit_price)
            for item in order.items
        ),
        shipping_cost=order.shipping_cost,
    )


class Checkout:
    def __init__(
        self,
        gateways: GatewayRegistry,
        state_machine: OrderStateMachine,
        policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._gateways = gateways
        self._state_machine = state_machine
        self._policy = policy
        self._sleep = sleep

    def start_payment(self, order_id: str) -> ChargeHandle:
        """Create the charge for a PENDING order and remember its provider reference.

        Retryable gateway failures are retried with backoff; the last one is
        raised and the order simply stays PENDING.
        """
        order = current_domain.repository_for(Order).get(order_id)
        if order.status != OrderStatus.PENDING.value:
            raise ValidationError({"status": [f"Order {order.order_number} is {order.status}, not awaiting payment"]})

        gateway = self._gateways.get(order.payment_method)
        if gateway is None:
            raise ValidationError({"payment_method": [f"{order.payment_method} is not an enabled payment method"]})

        try:
            handle = call_with_retry(
                gateway.create_charge,
                charge_request_for(order),
                order.payment_method,
                policy=self._policy,
                retry_on=(GatewayError,),
                should_retry=lambda exc: exc.retryable,
                sleep=self._sleep,
            )
        except GatewayError as exc:
            logger.error("Charge creation failed", order_id=order_id, provider=gateway.name, error=exc.reason)
            raise

        self._state_machine.attach_charge(order_id, gateway.name, handle.provider_reference)
        logger.info("Charge created", order_id=order_id, provider=gateway.name, reference=handle.provider_reference)
        return handle
