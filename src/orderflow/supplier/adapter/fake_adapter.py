"""Fake supplier adapter: deterministic in-memory supplier for testing and development.

Orders are accepted with a generated id and start out ``CREATED``. Tests can
script failures (``fail_times``), hangs (``delay_seconds``) and the status
the supplier reports later (``set_status``).
"""

import threading
import time
from uuid import uuid4

from orderflow.errors import SupplierError
from orderflow.supplier.adapter.port import (
    SupplierAck,
    SupplierOrderRequest,
    SupplierPort,
    SupplierStatusReport,
)


class FakeSupplier(SupplierPort):
    """Fake supplier that always succeeds by default."""

    def __init__(self, supplier_id: str = "fake"):
        self.supplier_id = supplier_id
        self.should_succeed = True
        self.retryable = True
        self.failure_reason = "Supplier unavailable"
        self.delay_seconds = 0.0
        self.calls: list[dict] = []
        self._pending_failures = 0
        self._failing_polls: set[str] = set()
        self._reports: dict[str, SupplierStatusReport] = {}
        self._lock = threading.Lock()

    def configure(self, should_succeed: bool = True, failure_reason: str = "Supplier unavailable", retryable=True):
        """Configure the fake supplier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.retryable = retryable

    def fail_times(self, count: int, failure_reason: str = "503 Service Unavailable") -> None:
        """Fail the next ``count`` create-order calls, then go back to normal."""
        self._pending_failures = count
        self.failure_reason = failure_reason

    def fail_polls_for(self, external_order_id: str) -> None:
        self._failing_polls.add(external_order_id)

    def set_status(
        self, external_order_id: str, status_label: str, tracking_number=None, tracking_url=None, carrier=None
    ):
        self._reports[external_order_id] = SupplierStatusReport(
            external_order_id=external_order_id,
            status_label=status_label,
            tracking_number=tracking_number,
            tracking_url=tracking_url,
            carrier=carrier,
        )

    def create_order(self, request: SupplierOrderRequest) -> SupplierAck:
        with self._lock:
            self.calls.append({"method": "create_order", "order_number": request.order_number})
            if self._pending_failures > 0:
                self._pending_failures -= 1
                raise SupplierError(self.supplier_id, self.failure_reason, retryable=True)
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if not self.should_succeed:
            raise SupplierError(self.supplier_id, self.failure_reason, retryable=self.retryable)

        external_order_id = f"FAKE-{uuid4().hex[:10].upper()}"
        self.set_status(external_order_id, "CREATED")
        return SupplierAck(external_order_id=external_order_id, status_label="CREATED")

    def get_order_status(self, external_order_id: str) -> SupplierStatusReport:
        with self._lock:
            self.calls.append({"method": "get_order_status", "external_order_id": external_order_id})
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if external_order_id in self._failing_polls:
            raise SupplierError(self.supplier_id, "Status endpoint unavailable", retryable=True)
        report = self._reports.get(external_order_id)
        if report is None:
            raise SupplierError(self.supplier_id, f"Unknown order {external_order_id}", retryable=False)
        return report

    def cancel_order(self, external_order_id: str) -> None:
        with self._lock:
            self.calls.append({"method": "cancel_order", "external_order_id": external_order_id})
        if not self.should_succeed:
            raise SupplierError(self.supplier_id, self.failure_reason, retryable=self.retryable)
        self.set_status(external_order_id, "CANCELLED")
