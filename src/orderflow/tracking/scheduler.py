"""Tracking sync scheduler: periodic reconciliation of in-flight supplier orders.

Each run:
1. resumes PENDING submissions whose backoff has elapsed
2. selects SUBMITTED / ACKNOWLEDGED / SHIPPED supplier orders not synced
   within the staleness window, oldest first
3. polls the supplier through the shared call pool, one chunk of
   ``max_workers`` at a time
4. hands every report to the orchestrator, which moves the Order through
   the state machine when the supplier status changed

A failed poll only records ``last_error``; the item is picked up again next run.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable

import structlog
from protean.domain import Domain
from protean.utils.globals import current_domain

from orderflow.config import TrackingSettings
from orderflow.errors import SupplierError
from orderflow.supplier.orchestrator import SupplierOrchestrator, SyncResult
from orderflow.supplier.supplier_order import IN_FLIGHT_STATUSES, SupplierOrder

logger = structlog.get_logger(__name__)


@dataclass
class SyncReport:
    resumed: int = 0
    selected: int = 0
    changed: int = 0
    unchanged: int = 0
    unknown: int = 0
    rejected: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _sync_age_key(supplier_order: SupplierOrder) -> datetime:
    if supplier_order.last_synced_at is None:
        return datetime.min.replace(tzinfo=UTC)
    return _as_utc(supplier_order.last_synced_at)


class TrackingSyncScheduler:
    def __init__(
        self,
        orchestrator: SupplierOrchestrator,
        settings: TrackingSettings,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._orchestrator = orchestrator
        self._settings = settings
        self._clock = clock

    def due_supplier_orders(self, now: datetime) -> list[SupplierOrder]:
        repo = current_domain.repository_for(SupplierOrder)
        stale_before = now - timedelta(seconds=self._settings.staleness_seconds)

        candidates = [
            supplier_order
            for supplier_order in repo.find_least_recently_synced(IN_FLIGHT_STATUSES, limit=self._settings.batch_size)
            if supplier_order.external_order_id
            and (supplier_order.last_synced_at is None or _as_utc(supplier_order.last_synced_at) <= stale_before)
        ]
        candidates.sort(key=_sync_age_key)
        return candidates[: self._settings.batch_size]

    def run_once(self, now: datetime | None = None) -> SyncReport:
        now = now or self._clock()
        report = SyncReport()

        report.resumed = len(self._orchestrator.resume_due(now))

        due = self.due_supplier_orders(now)
        report.selected = len(due)

        calls = self._orchestrator.calls
        supplier = self._orchestrator.supplier
        for start in range(0, len(due), calls.max_workers):
            chunk = due[start : start + calls.max_workers]
            pending = [(so, calls.submit(supplier.get_order_status, so.external_order_id)) for so in chunk]
            for supplier_order, future in pending:
                self._settle(supplier_order, future, report)

        logger.info("Tracking sync finished", **report.as_dict())
        return report

    def _settle(self, supplier_order: SupplierOrder, future, report: SyncReport) -> None:
        calls = self._orchestrator.calls
        log = logger.bind(order_id=supplier_order.order_id, external_order_id=supplier_order.external_order_id)
        try:
            status_report = calls.result(future, supplier_order.supplier_id)
            outcome = self._orchestrator.apply_report(supplier_order.order_id, status_report)
        except SupplierError as exc:
            report.failed += 1
            self._orchestrator.record_poll_failure(supplier_order.order_id, exc.reason)
            log.warning("Supplier status poll failed", error=exc.reason)
            return
        except Exception as exc:
            # One broken item never aborts the batch
            report.failed += 1
            log.exception("Tracking sync item failed", error=str(exc))
            return

        if outcome.result == SyncResult.CHANGED:
            report.changed += 1
        elif outcome.result == SyncResult.UNCHANGED:
            report.unchanged += 1
        elif outcome.result == SyncResult.UNKNOWN_STATUS:
            report.unknown += 1
        else:
            report.rejected += 1

    async def run_forever(self, domain: Domain, stop: asyncio.Event) -> None:
        """Run ``run_once`` every ``interval_seconds`` until ``stop`` is set."""
        logger.info("Tracking sync scheduler started", interval=self._settings.interval_seconds)
        while not stop.is_set():
            try:
                await asyncio.to_thread(self._run_in_context, domain)
            except Exception:
                logger.exception("Tracking sync run failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._settings.interval_seconds)
            except TimeoutError:
                pass
        logger.info("Tracking sync scheduler stopped")

    def _run_in_context(self, domain: Domain) -> SyncReport:
        with domain.domain_context():
            return self.run_once()
