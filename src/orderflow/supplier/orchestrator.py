"""Supplier order orchestration: submission with retries, status application, cancellation.

Money has already been collected by the time an order reaches the supplier,
so a SupplierOrder is never dropped: failed submissions stay PENDING with a
``next_attempt_at`` until attempts run out, then sit in SYNC_FAILED for an
operator.
"""

import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Callable

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orderflow.errors import SupplierError, TransitionError
from orderflow.order.order import Order, OrderStatus
from orderflow.order.state_machine import OrderLocks, OrderStateMachine, SupplierEvent
from orderflow.supplier.adapter.port import SupplierLine, SupplierOrderRequest, SupplierPort, SupplierStatusReport
from orderflow.supplier.calls import SupplierCalls, SupplierTimeout
from orderflow.supplier.status_map import ORDER_EVENT_FOR, normalize_label, translate
from orderflow.supplier.supplier_order import SupplierOrder, SupplierOrderStatus
from orderflow.utils.retry import RetryPolicy

logger = structlog.get_logger(__name__)

ELIGIBLE_ORDER_STATUSES = frozenset(
    {
        OrderStatus.CONFIRMED.value,
        OrderStatus.PROCESSING.value,
        OrderStatus.SHIPPED.value,
        OrderStatus.DELIVERED.value,
    }
)


class SyncResult(Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    UNKNOWN_STATUS = "unknown_status"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SyncOutcome:
    supplier_order: SupplierOrder
    result: SyncResult
    order_status: str | None = None


def supplier_request_for(order: Order) -> SupplierOrderRequest:
    customer = order.customer
    return SupplierOrderRequest(
        order_number=order.order_number,
        recipient_name=customer.full_name,
        phone=customer.phone,
        email=customer.email,
        address=customer.address,
        city=customer.city,
        province=customer.state,
        postal_code=customer.postal_code,
        country_code=customer.country,
        lines=tuple(
            SupplierLine(product_id=item.product_id, variant_id=item.variant_id, quantity=item.quantity)
            for item in order.items
        ),
    )


class SupplierOrchestrator:
    def __init__(
        self,
        supplier: SupplierPort,
        calls: SupplierCalls,
        policy: RetryPolicy,
        locks: OrderLocks,
        state_machine: OrderStateMachine,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.supplier = supplier
        self.calls = calls
        self._policy = policy
        self._locks = locks
        self._state_machine = state_machine
        self._sleep = sleep

    @property
    def supplier_id(self) -> str:
        return self.supplier.supplier_id

    # -------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------
    def submit(self, order_id: str) -> SupplierOrder:
        """Make sure the supplier has a fulfillment request for a confirmed order.

        Idempotent: an existing SupplierOrder that is past submission (or still
        counting attempts) is returned as is. A SYNC_FAILED one is reopened.
        """
        repo = current_domain.repository_for(SupplierOrder)
        with self._locks.hold(f"supplier-order:{order_id}"):
            existing = repo.find_by_order(order_id)
            if existing is not None and existing.status not in (
                SupplierOrderStatus.PENDING.value,
                SupplierOrderStatus.SYNC_FAILED.value,
            ):
                logger.info("Supplier order already submitted", order_id=order_id, status=existing.status)
                return existing

            order = current_domain.repository_for(Order).get(order_id)
            if order.status not in ELIGIBLE_ORDER_STATUSES:
                raise ValidationError({"status": [f"Order {order.order_number} is {order.status}, not confirmed"]})

            if existing is None:
                supplier_order = SupplierOrder.open(order.id, order.order_number, self.supplier_id)
                repo.add(supplier_order)
            else:
                supplier_order = existing
                if supplier_order.status == SupplierOrderStatus.SYNC_FAILED.value:
                    supplier_order.reopen()
                    repo.add(supplier_order)

            return self._attempt_submission(supplier_order, order)

    def retry_failed(self, order_id: str) -> SupplierOrder:
        """Operator action: resubmit a supplier order that gave up."""
        existing = current_domain.repository_for(SupplierOrder).find_by_order(order_id)
        if existing is None or existing.status != SupplierOrderStatus.SYNC_FAILED.value:
            status = existing.status if existing is not None else "missing"
            raise ValidationError({"status": [f"Supplier order for {order_id} is {status}, not SYNC_FAILED"]})
        logger.info("Operator retry of supplier submission", order_id=order_id)
        return self.submit(order_id)

    def resume_due(self, now: datetime | None = None) -> list[SupplierOrder]:
        """Continue PENDING submissions whose backoff has elapsed."""
        now = now or datetime.now(UTC)
        repo = current_domain.repository_for(SupplierOrder)
        resumed = []
        for supplier_order in repo.find_by_statuses([SupplierOrderStatus.PENDING]):
            due_at = supplier_order.next_attempt_at
            if due_at is None or _as_utc(due_at) > now:
                continue
            try:
                resumed.append(self.submit(supplier_order.order_id))
            except Exception as exc:
                logger.error("Resuming supplier submission failed", order_id=supplier_order.order_id, error=str(exc))
        return resumed

    def _attempt_submission(self, supplier_order: SupplierOrder, order: Order) -> SupplierOrder:
        repo = current_domain.repository_for(SupplierOrder)
        request = supplier_request_for(order)
        log = logger.bind(order_id=order.id, order_number=order.order_number, supplier_id=self.supplier_id)

        while True:
            attempt = (supplier_order.attempts or 0) + 1
            try:
                ack = self.calls.call(self.supplier_id, self.supplier.create_order, request)
            except SupplierError as exc:
                if attempt >= self._policy.max_attempts or not exc.retryable:
                    supplier_order.record_submission_failure(exc.reason, None)
                    supplier_order.mark_sync_failed(exc.reason)
                    repo.add(supplier_order)
                    log.error("Supplier submission gave up", attempts=supplier_order.attempts, error=exc.reason)
                    return supplier_order

                delay = self._policy.delay_for(attempt)
                supplier_order.record_submission_failure(exc.reason, datetime.now(UTC) + timedelta(seconds=delay))
                repo.add(supplier_order)

                if isinstance(exc, SupplierTimeout):
                    # The supplier may still act on it; leave it to the next scheduled run
                    log.warning("Supplier submission timed out", attempt=attempt, next_attempt_in=delay)
                    return supplier_order

                log.warning("Supplier submission failed, retrying", attempt=attempt, delay=delay, error=exc.reason)
                self._sleep(delay)
                continue

            supplier_order.mark_submitted(ack.external_order_id, ack.status_label)
            repo.add(supplier_order)
            log.info("Supplier order submitted", external_order_id=ack.external_order_id, attempts=attempt)
            return supplier_order

    # -------------------------------------------------------------------
    # Status synchronization
    # -------------------------------------------------------------------
    def apply_report(self, order_id: str, report: SupplierStatusReport) -> SyncOutcome:
        """Fold a supplier status report into the SupplierOrder, then project it onto the Order."""
        repo = current_domain.repository_for(SupplierOrder)
        with self._locks.hold(f"supplier-order:{order_id}"):
            supplier_order = repo.find_by_order(order_id)
            if supplier_order is None:
                raise ValidationError({"order_id": [f"No supplier order for {order_id}"]})

            log = logger.bind(
                order_id=order_id,
                supplier_order_id=supplier_order.id,
                external_order_id=report.external_order_id,
                status_label=report.status_label,
            )
            target = translate(report.status_label)
            tracking = {
                "tracking_number": report.tracking_number,
                "tracking_url": report.tracking_url,
                "carrier": report.carrier,
            }

            if target is None:
                supplier_order.record_sync(None, report.status_label)
                repo.add(supplier_order)
                log.warning("Unrecognized supplier status left unchanged", status=supplier_order.status)
                return SyncOutcome(supplier_order, SyncResult.UNKNOWN_STATUS)

            if not supplier_order.can_move_to(target):
                supplier_order.record_sync(None, report.status_label)
                repo.add(supplier_order)
                log.warning("Supplier status regression rejected", status=supplier_order.status, reported=target.value)
                return SyncOutcome(supplier_order, SyncResult.REJECTED)

            changed = supplier_order.record_sync(target, report.status_label, **tracking)
            repo.add(supplier_order)

        if not changed:
            return SyncOutcome(supplier_order, SyncResult.UNCHANGED)

        log.info("Supplier order status changed", status=supplier_order.status)
        if target == SupplierOrderStatus.CANCELLED:
            log.error("Supplier cancelled a paid order, operator action needed")
            return SyncOutcome(supplier_order, SyncResult.CHANGED)

        kind = ORDER_EVENT_FOR.get(target)
        order_status = None
        if kind is not None:
            event = SupplierEvent(
                supplier_id=supplier_order.supplier_id,
                external_order_id=report.external_order_id,
                status_label=normalize_label(report.status_label),
                kind=kind,
                **tracking,
            )
            try:
                order_status = self._state_machine.apply(order_id, event).to_status.value
            except TransitionError as exc:
                log.warning("Order did not follow supplier status", reason=str(exc))
        return SyncOutcome(supplier_order, SyncResult.CHANGED, order_status)

    def record_poll_failure(self, order_id: str, error: str) -> None:
        repo = current_domain.repository_for(SupplierOrder)
        with self._locks.hold(f"supplier-order:{order_id}"):
            supplier_order = repo.find_by_order(order_id)
            if supplier_order is None:
                return
            supplier_order.record_sync_error(error)
            repo.add(supplier_order)

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def cancel_for_order(self, order_id: str) -> SupplierOrder | None:
        """Best-effort supplier cancellation after an order was cancelled or refunded."""
        repo = current_domain.repository_for(SupplierOrder)
        with self._locks.hold(f"supplier-order:{order_id}"):
            supplier_order = repo.find_by_order(order_id)
            if supplier_order is None:
                return None
            log = logger.bind(order_id=order_id, supplier_order_id=supplier_order.id, status=supplier_order.status)

            status = supplier_order.current_status
            if status in (SupplierOrderStatus.PENDING, SupplierOrderStatus.SYNC_FAILED):
                supplier_order.cancel("Order cancelled before supplier submission")
                repo.add(supplier_order)
                log.info("Pending supplier order cancelled locally")
                return supplier_order
            if status not in (SupplierOrderStatus.SUBMITTED, SupplierOrderStatus.ACKNOWLEDGED):
                log.warning("Supplier order can no longer be cancelled")
                return supplier_order

            try:
                self.calls.call(self.supplier_id, self.supplier.cancel_order, supplier_order.external_order_id)
            except SupplierError as exc:
                supplier_order.record_sync_error(f"Cancellation failed: {exc.reason}")
                repo.add(supplier_order)
                log.error("Supplier cancellation failed", error=exc.reason)
                return supplier_order

            supplier_order.cancel()
            repo.add(supplier_order)
            log.info("Supplier order cancelled")
            return supplier_order


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value
