"""Outbound notification port.

Delivering emails or messages is somebody else's job. The state machine hands
every accepted transition to a dispatcher after it has been committed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StatusChange:
    order_id: str
    order_number: str
    customer_email: str
    from_status: str
    to_status: str
    event_kind: str
    tracking_number: str | None = None
    tracking_url: str | None = None


class NotificationDispatcher(ABC):
    @abstractmethod
    def order_status_changed(self, change: StatusChange) -> None:
        """Tell the customer (or an operator) that an order moved."""


class LoggingNotifier(NotificationDispatcher):
    """Default dispatcher: records the change in the log stream."""

    def order_status_changed(self, change: StatusChange) -> None:
        logger.info(
            "Order status notification",
            order_id=change.order_id,
            order_number=change.order_number,
            from_status=change.from_status,
            to_status=change.to_status,
            tracking_number=change.tracking_number,
        )


class RecordingNotifier(NotificationDispatcher):
    """Keeps every change in memory. Handy in development shells and tests."""

    def __init__(self) -> None:
        self.changes: list[StatusChange] = []

    def order_status_changed(self, change: StatusChange) -> None:
        self.changes.append(change)
