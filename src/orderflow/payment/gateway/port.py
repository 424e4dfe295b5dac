"""Payment gateway port (abstract interface).

Every provider, whether card processor, regional wallet or manual transfer,
sits behind this contract. Adapters turn inbound webhooks into a canonical
``PaymentOutcome`` and open charges for new orders. They never write to the
order store.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutcomeKind(Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    PENDING = "PENDING"
    REFUNDED = "REFUNDED"


@dataclass(frozen=True)
class PaymentOutcome:
    """Provider-independent view of one authenticated webhook event."""

    provider_name: str
    provider_reference: str | None
    order_reference: str | None
    outcome: OutcomeKind
    amount: float | None
    currency: str | None
    raw_event_id: str


@dataclass(frozen=True)
class ChargeHandle:
    """What the customer needs to pay: a redirect, or instructions to follow."""

    provider_name: str
    provider_reference: str | None = None
    redirect_url: str | None = None
    instructions: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChargeLine:
    title: str
    quantity: int
    unit_price: float


@dataclass(frozen=True)
class ChargeRequest:
    """The parts of an order a provider needs to open a charge."""

    order_id: str
    order_number: str
    amount: float
    currency: str
    customer_email: str
    customer_name: str
    lines: tuple[ChargeLine, ...] = ()
    shipping_cost: float = 0.0


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str

    @abstractmethod
    def verify(self, raw_payload: bytes, headers: Mapping[str, str]) -> PaymentOutcome:
        """Authenticate a webhook and normalize it. Raises ``VerificationError``."""
        ...

    @abstractmethod
    def create_charge(self, request: ChargeRequest, method: str) -> ChargeHandle:
        """Open a charge with the provider. Raises ``GatewayError``."""
        ...


def header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup that works for plain dicts and Starlette headers."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None
