"""SupplierOrder aggregate: the fulfillment request mirrored at the dropshipping supplier.

One per confirmed Order. The customer-visible Order follows this record,
never the other way round.

State Machine:
    PENDING → SUBMITTED → ACKNOWLEDGED → SHIPPED → DELIVERED
    PENDING → SYNC_FAILED → PENDING (operator retry)
    any non-terminal → CANCELLED
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text

from orderflow.domain import orderflow
from orderflow.supplier.events import (
    SupplierOrderStatusChanged,
    SupplierOrderSubmitted,
    SupplierOrderSyncFailed,
)


class SupplierOrderStatus(Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    SYNC_FAILED = "SYNC_FAILED"


_VALID_TRANSITIONS = {
    SupplierOrderStatus.PENDING: {
        SupplierOrderStatus.SUBMITTED,
        SupplierOrderStatus.SYNC_FAILED,
        SupplierOrderStatus.CANCELLED,
    },
    SupplierOrderStatus.SUBMITTED: {
        SupplierOrderStatus.ACKNOWLEDGED,
        SupplierOrderStatus.SHIPPED,
        SupplierOrderStatus.DELIVERED,
        SupplierOrderStatus.CANCELLED,
    },
    SupplierOrderStatus.ACKNOWLEDGED: {
        SupplierOrderStatus.SHIPPED,
        SupplierOrderStatus.DELIVERED,
        SupplierOrderStatus.CANCELLED,
    },
    SupplierOrderStatus.SHIPPED: {SupplierOrderStatus.DELIVERED, SupplierOrderStatus.CANCELLED},
    SupplierOrderStatus.SYNC_FAILED: {SupplierOrderStatus.PENDING, SupplierOrderStatus.CANCELLED},
    SupplierOrderStatus.DELIVERED: set(),  # terminal
    SupplierOrderStatus.CANCELLED: set(),  # terminal
}

IN_FLIGHT_STATUSES = (
    SupplierOrderStatus.SUBMITTED,
    SupplierOrderStatus.ACKNOWLEDGED,
    SupplierOrderStatus.SHIPPED,
)


@orderflow.aggregate
class SupplierOrder:
    order_id: Identifier(required=True, unique=True)
    order_number: String(required=True, max_length=30)
    supplier_id: String(required=True, max_length=50)
    external_order_id: String(max_length=100)
    status: String(choices=SupplierOrderStatus, default=SupplierOrderStatus.PENDING.value)
    attempts: Integer(default=0, min_value=0)
    next_attempt_at: DateTime()
    last_synced_at: DateTime()
    last_error: Text()
    last_status_label: Text()
    tracking_number: String(max_length=100)
    tracking_url: String(max_length=500)
    carrier: String(max_length=100)
    submitted_at: DateTime()
    created_at: DateTime(default=lambda: datetime.now(UTC))
    updated_at: DateTime(default=lambda: datetime.now(UTC))

    @classmethod
    def open(cls, order_id: str, order_number: str, supplier_id: str) -> "SupplierOrder":
        return cls(order_id=order_id, order_number=order_number, supplier_id=supplier_id)

    @property
    def current_status(self) -> SupplierOrderStatus:
        return SupplierOrderStatus(self.status)

    def can_move_to(self, target_status: SupplierOrderStatus) -> bool:
        """True when ``target_status`` is the current status or an allowed next one."""
        current = self.current_status
        return target_status == current or target_status in _VALID_TRANSITIONS.get(current, set())

    def _assert_can_transition(self, target_status: SupplierOrderStatus) -> None:
        current = self.current_status
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    # -------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------
    def record_submission_failure(self, error: str, next_attempt_at: datetime | None) -> None:
        """Count a failed create-order call. The record stays PENDING for the next attempt."""
        if self.current_status != SupplierOrderStatus.PENDING:
            raise ValidationError({"status": ["Only pending supplier orders record submission attempts"]})
        self.attempts = (self.attempts or 0) + 1
        self.last_error = error
        self.next_attempt_at = next_attempt_at
        self.updated_at = datetime.now(UTC)

    def mark_submitted(self, external_order_id: str, status_label: str | None = None) -> None:
        self._assert_can_transition(SupplierOrderStatus.SUBMITTED)
        now = datetime.now(UTC)
        self.status = SupplierOrderStatus.SUBMITTED.value
        self.external_order_id = external_order_id
        self.last_status_label = status_label
        self.attempts = (self.attempts or 0) + 1
        self.last_error = None
        self.next_attempt_at = None
        self.submitted_at = now
        self.last_synced_at = now
        self.updated_at = now
        self.raise_(
            SupplierOrderSubmitted(
                supplier_order_id=self.id,
                order_id=self.order_id,
                supplier_id=self.supplier_id,
                external_order_id=external_order_id,
                attempts=self.attempts,
                submitted_at=now,
            )
        )

    def mark_sync_failed(self, error: str) -> None:
        self._assert_can_transition(SupplierOrderStatus.SYNC_FAILED)
        now = datetime.now(UTC)
        self.status = SupplierOrderStatus.SYNC_FAILED.value
        self.last_error = error
        self.next_attempt_at = None
        self.updated_at = now
        self.raise_(
            SupplierOrderSyncFailed(
                supplier_order_id=self.id,
                order_id=self.order_id,
                supplier_id=self.supplier_id,
                attempts=self.attempts or 0,
                last_error=error,
                failed_at=now,
            )
        )

    def reopen(self) -> None:
        """Operator retry: start a fresh round of submission attempts."""
        self._assert_can_transition(SupplierOrderStatus.PENDING)
        self.status = SupplierOrderStatus.PENDING.value
        self.attempts = 0
        self.next_attempt_at = None
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Synchronization
    # -------------------------------------------------------------------
    def record_sync(
        self,
        target: SupplierOrderStatus | None,
        status_label: str | None,
        tracking_number: str | None = None,
        tracking_url: str | None = None,
        carrier: str | None = None,
    ) -> bool:
        """Record a successful status read. Returns True when the status moved.

        ``target`` None (or equal to the current status) only refreshes the
        sync bookkeeping. A target the graph does not allow, a regression for
        instance, raises ``ValidationError`` and changes nothing.
        """
        current = self.current_status
        moving = target is not None and target != current
        if moving:
            self._assert_can_transition(target)

        now = datetime.now(UTC)
        self.last_synced_at = now
        self.last_status_label = status_label
        self.last_error = None
        self.tracking_number = tracking_number or self.tracking_number
        self.tracking_url = tracking_url or self.tracking_url
        self.carrier = carrier or self.carrier
        self.updated_at = now

        if not moving:
            return False

        self.status = target.value
        self.raise_(
            SupplierOrderStatusChanged(
                supplier_order_id=self.id,
                order_id=self.order_id,
                from_status=current.value,
                to_status=target.value,
                status_label=status_label,
                tracking_number=self.tracking_number,
                changed_at=now,
            )
        )
        return True

    def record_sync_error(self, error: str) -> None:
        """A failed poll. ``last_synced_at`` is left alone so the next run picks it up again."""
        self.last_error = error
        self.updated_at = datetime.now(UTC)

    def cancel(self, reason: str | None = None) -> None:
        self._assert_can_transition(SupplierOrderStatus.CANCELLED)
        current = self.current_status
        now = datetime.now(UTC)
        self.status = SupplierOrderStatus.CANCELLED.value
        self.next_attempt_at = None
        self.last_error = reason
        self.updated_at = now
        self.raise_(
            SupplierOrderStatusChanged(
                supplier_order_id=self.id,
                order_id=self.order_id,
                from_status=current.value,
                to_status=SupplierOrderStatus.CANCELLED.value,
                status_label=None,
                tracking_number=self.tracking_number,
                changed_at=now,
            )
        )
