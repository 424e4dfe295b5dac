"""Order state machine: the single entry point for changing an order's status.

Payment webhooks, supplier updates and operator actions are all expressed as
typed events carrying a dedup key. ``OrderStateMachine.apply`` runs, under a
per-order lock:

1. replay check against the order's status history (same key → no-op)
2. double-payment check (already PAID → no-op)
3. transition table lookup (no edge → ``InvalidTransition``, nothing written)
4. persist the new status together with its history entry

Follow-up work (supplier submission, notifications) is handed to the task
runner only after the write has committed and the lock is released.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orderflow.errors import AmountMismatch, InvalidTransition
from orderflow.notifications import NotificationDispatcher, StatusChange
from orderflow.order.order import EventKind, Order, OrderStatus, round_money
from orderflow.payment.gateway.port import OutcomeKind, PaymentOutcome

logger = structlog.get_logger(__name__)

_PAYMENT_KINDS = {
    OutcomeKind.SUCCEEDED: EventKind.PAYMENT_SUCCEEDED,
    OutcomeKind.FAILED: EventKind.PAYMENT_FAILED,
    OutcomeKind.REFUNDED: EventKind.PAYMENT_REFUNDED,
}

_OPERATOR_KINDS = {
    OrderStatus.CONFIRMED: EventKind.OPERATOR_CONFIRM,
    OrderStatus.PROCESSING: EventKind.OPERATOR_PROCESS,
    OrderStatus.SHIPPED: EventKind.OPERATOR_SHIP,
    OrderStatus.DELIVERED: EventKind.OPERATOR_DELIVER,
    OrderStatus.CANCELLED: EventKind.OPERATOR_CANCEL,
    OrderStatus.REFUNDED: EventKind.OPERATOR_REFUND,
}


@dataclass(frozen=True)
class PaymentEvent:
    outcome: PaymentOutcome

    def __post_init__(self):
        if self.outcome.outcome not in _PAYMENT_KINDS:
            raise ValueError(f"{self.outcome.outcome.value} outcomes do not move orders")

    @property
    def kind(self) -> EventKind:
        return _PAYMENT_KINDS[self.outcome.outcome]

    @property
    def dedup_key(self) -> str:
        return f"payment:{self.outcome.provider_name}:{self.outcome.raw_event_id}"

    @property
    def source(self) -> str:
        return f"payment:{self.outcome.provider_name}"


@dataclass(frozen=True)
class SupplierEvent:
    supplier_id: str
    external_order_id: str
    status_label: str
    kind: EventKind
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None

    @property
    def dedup_key(self) -> str:
        return f"supplier:{self.supplier_id}:{self.external_order_id}:{self.status_label}"

    @property
    def source(self) -> str:
        return f"supplier:{self.supplier_id}"


@dataclass(frozen=True)
class OperatorEvent:
    operator_id: str
    kind: EventKind
    requested_at: datetime
    note: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None

    @classmethod
    def for_target(cls, target: OrderStatus, operator_id: str, requested_at: datetime, **kwargs) -> "OperatorEvent":
        kind = _OPERATOR_KINDS.get(target)
        if kind is None:
            raise ValidationError({"status": [f"Operators cannot move an order to {target.value}"]})
        return cls(operator_id=operator_id, kind=kind, requested_at=requested_at, **kwargs)

    @property
    def dedup_key(self) -> str:
        return f"operator:{self.operator_id}:{self.requested_at.isoformat()}"

    @property
    def source(self) -> str:
        return f"operator:{self.operator_id}"


OrderEvent = PaymentEvent | SupplierEvent | OperatorEvent


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    applied: bool
    reason: str
    from_status: OrderStatus
    to_status: OrderStatus


class OrderLocks(Protocol):
    def hold(self, key: str): ...


class TaskRunner(Protocol):
    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any): ...


class OrderStateMachine:
    def __init__(self, locks: OrderLocks, tasks: TaskRunner, notifier: NotificationDispatcher) -> None:
        self._locks = locks
        self._tasks = tasks
        self._notifier = notifier
        self._followups: dict[OrderStatus, list[tuple[str, Callable[[str], Any]]]] = defaultdict(list)

    def on_enter(self, status: OrderStatus, name: str, callback: Callable[[str], Any]) -> None:
        """Run ``callback(order_id)`` as a follow-up task whenever an order enters ``status``."""
        self._followups[status].append((name, callback))

    def apply(self, order_id: str, event: OrderEvent) -> TransitionResult:
        repo = current_domain.repository_for(Order)

        with self._locks.hold(f"order:{order_id}"):
            order = repo.get(order_id)
            current = order.current_status

            if order.has_processed(event.dedup_key):
                logger.info(
                    "Duplicate order event ignored",
                    order_id=order_id,
                    dedup_key=event.dedup_key,
                    status=current.value,
                )
                return TransitionResult(order, False, "duplicate", current, current)

            if event.kind == EventKind.PAYMENT_SUCCEEDED and order.is_paid:
                logger.info(
                    "Order already paid, payment event absorbed",
                    order_id=order_id,
                    dedup_key=event.dedup_key,
                )
                return TransitionResult(order, False, "already_paid", current, current)

            if isinstance(event, PaymentEvent) and event.kind == EventKind.PAYMENT_SUCCEEDED:
                self._check_amount(order, event.outcome)

            kwargs = self._event_fields(event)
            try:
                target = order.transition(event.kind, source=event.source, dedup_key=event.dedup_key, **kwargs)
            except InvalidTransition:
                logger.warning(
                    "Order transition rejected",
                    order_id=order_id,
                    status=current.value,
                    event_kind=event.kind.value,
                    source=event.source,
                )
                raise
            repo.add(order)

        logger.info(
            "Order transitioned",
            order_id=order_id,
            order_number=order.order_number,
            from_status=current.value,
            to_status=target.value,
            cause=event.kind.value,
            source=event.source,
        )
        self._dispatch_followups(order, current, target, event.kind)
        return TransitionResult(order, True, "applied", current, target)

    def attach_charge(self, order_id: str, provider: str, reference: str | None) -> Order:
        """Record the provider charge opened for an unpaid order. No status change."""
        repo = current_domain.repository_for(Order)
        with self._locks.hold(f"order:{order_id}"):
            if reference:
                existing = repo.find_by_payment_reference(provider, reference)
                if existing is not None and existing.id != order_id:
                    raise ValidationError(
                        {"payment_provider_reference": [f"{provider} reference already belongs to another order"]}
                    )
            order = repo.get(order_id)
            order.attach_charge(provider, reference)
            repo.add(order)
        logger.info("Charge attached", order_id=order_id, provider=provider, reference=reference)
        return order

    def _check_amount(self, order: Order, outcome: PaymentOutcome) -> None:
        if outcome.amount is None:
            return
        if abs(round_money(outcome.amount) - round_money(order.total)) > 0.005:
            logger.warning(
                "Payment amount does not match order total",
                order_id=order.id,
                expected=order.total,
                received=outcome.amount,
                provider=outcome.provider_name,
            )
            raise AmountMismatch(order.id, order.total, outcome.amount)

    @staticmethod
    def _event_fields(event: OrderEvent) -> dict:
        if isinstance(event, PaymentEvent):
            return {
                "payment_provider": event.outcome.provider_name,
                "payment_reference": event.outcome.provider_reference,
            }
        fields = {
            "tracking_number": event.tracking_number,
            "tracking_url": event.tracking_url,
            "carrier": event.carrier,
        }
        if isinstance(event, OperatorEvent):
            fields["note"] = event.note
        return fields

    def _dispatch_followups(self, order: Order, from_status: OrderStatus, to_status: OrderStatus, kind: EventKind):
        change = StatusChange(
            order_id=order.id,
            order_number=order.order_number,
            customer_email=order.customer.email,
            from_status=from_status.value,
            to_status=to_status.value,
            event_kind=kind.value,
            tracking_number=order.tracking_number,
            tracking_url=order.tracking_url,
        )
        self._tasks.submit("notify-status-change", self._notifier.order_status_changed, change)
        for name, callback in self._followups.get(to_status, []):
            self._tasks.submit(name, callback, order.id)
