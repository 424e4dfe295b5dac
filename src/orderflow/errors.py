"""Exception taxonomy for the orderflow context.

Input validation failures use protean's ``ValidationError`` and missing records
use ``ObjectNotFoundError``; everything raised here is specific to talking to
external systems or to the order state machine.
"""


class OrderflowError(Exception):
    """Base class for orderflow errors."""


class VerificationError(OrderflowError):
    """An inbound webhook did not authenticate as coming from the named provider."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider}: {reason}")


class TransitionError(OrderflowError):
    """An event could not be applied to an order."""


class InvalidTransition(TransitionError):
    """No transition table entry exists for the order's status and the event kind."""

    def __init__(self, order_id: str, status: str, event_kind: str):
        self.order_id = order_id
        self.status = status
        self.event_kind = event_kind
        super().__init__(f"Cannot apply {event_kind} to order {order_id} in status {status}")


class AmountMismatch(TransitionError):
    """A successful payment reported an amount different from the order total."""

    def __init__(self, order_id: str, expected: float, received: float):
        self.order_id = order_id
        self.expected = expected
        self.received = received
        super().__init__(f"Order {order_id} expects {expected:.2f}, payment reported {received:.2f}")


class GatewayError(OrderflowError):
    """A payment provider call failed."""

    def __init__(self, provider: str, reason: str, retryable: bool = True):
        self.provider = provider
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"{provider}: {reason}")


class SupplierError(OrderflowError):
    """A supplier submission, status query or cancellation failed."""

    def __init__(self, supplier_id: str, reason: str, retryable: bool = True):
        self.supplier_id = supplier_id
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"{supplier_id}: {reason}")
