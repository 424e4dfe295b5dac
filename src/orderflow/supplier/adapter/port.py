"""Supplier port: abstract interface for dropshipping supplier integrations.

The orchestrator and the tracking scheduler program against this port;
adapters are chosen by configuration. Every failure is reported as a
``SupplierError`` whose ``retryable`` flag tells the caller whether trying
again can help.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class SupplierLine:
    product_id: str
    variant_id: str | None
    quantity: int


@dataclass(frozen=True)
class SupplierOrderRequest:
    order_number: str
    recipient_name: str
    phone: str
    email: str
    address: str
    city: str
    province: str
    postal_code: str
    country_code: str
    lines: tuple[SupplierLine, ...]


@dataclass(frozen=True)
class SupplierAck:
    external_order_id: str
    status_label: str | None = None


@dataclass(frozen=True)
class SupplierStatusReport:
    external_order_id: str
    status_label: str
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None


class SupplierPort(ABC):
    """Abstract interface for supplier adapters."""

    supplier_id: str

    @abstractmethod
    def create_order(self, request: SupplierOrderRequest) -> SupplierAck:
        """Place the fulfillment request. Returns the supplier's own order id."""
        ...

    @abstractmethod
    def get_order_status(self, external_order_id: str) -> SupplierStatusReport:
        """Read the supplier-side status label and any tracking details."""
        ...

    @abstractmethod
    def cancel_order(self, external_order_id: str) -> None:
        """Ask the supplier to drop an order it has not shipped yet."""
        ...
