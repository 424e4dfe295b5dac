"""Component wiring for one process.

Builds every collaborator from ``OrderflowSettings`` and connects the state
machine's follow-ups to the supplier orchestrator. The HTTP app, the
scheduler runner and the tests all go through ``build_services``.
"""

from dataclasses import dataclass

import structlog
from protean.domain import Domain

from orderflow.config import OrderflowSettings
from orderflow.notifications import LoggingNotifier, NotificationDispatcher
from orderflow.order.order import OrderStatus
from orderflow.order.placement import ShippingPolicy
from orderflow.order.state_machine import OrderStateMachine
from orderflow.payment.checkout import Checkout
from orderflow.payment.gateway import GatewayRegistry, build_gateways
from orderflow.payment.webhook import PaymentWebhookProcessor
from orderflow.supplier.adapter import build_supplier
from orderflow.supplier.adapter.port import SupplierPort
from orderflow.supplier.calls import SupplierCalls
from orderflow.supplier.orchestrator import SupplierOrchestrator
from orderflow.tracking.scheduler import TrackingSyncScheduler
from orderflow.utils.locks import AdvisoryLocks, KeyedLocks
from orderflow.utils.retry import RetryPolicy
from orderflow.utils.tasks import BackgroundTasks, InlineTasks

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: OrderflowSettings
    gateways: GatewayRegistry
    supplier: SupplierPort
    shipping: ShippingPolicy
    state_machine: OrderStateMachine
    checkout: Checkout
    webhooks: PaymentWebhookProcessor
    orchestrator: SupplierOrchestrator
    scheduler: TrackingSyncScheduler
    tasks: BackgroundTasks | InlineTasks

    def shutdown(self) -> None:
        self.tasks.shutdown(wait=True)
        self.orchestrator.calls.shutdown(wait=False)


def build_services(
    settings: OrderflowSettings,
    domain: Domain,
    *,
    tasks=None,
    supplier: SupplierPort | None = None,
    gateways: GatewayRegistry | None = None,
    notifier: NotificationDispatcher | None = None,
    locks=None,
    sleep=None,
) -> Services:
    """Assemble the orderflow components. Keyword overrides exist for tests and tooling."""
    if locks is None:
        locks = AdvisoryLocks.from_uri(settings.database_uri) if settings.lock_backend == "postgres" else KeyedLocks()
    tasks = tasks or BackgroundTasks(domain, max_workers=settings.task_workers)
    gateways = gateways or build_gateways(settings.payments)
    supplier = supplier or build_supplier(settings.supplier)
    sleep_kwargs = {"sleep": sleep} if sleep is not None else {}

    state_machine = OrderStateMachine(locks=locks, tasks=tasks, notifier=notifier or LoggingNotifier())

    supplier_settings = settings.supplier
    calls = SupplierCalls(
        max_workers=supplier_settings.max_workers,
        timeout=supplier_settings.timeout_seconds,
        rate_per_second=supplier_settings.rate_limit_per_second,
    )
    orchestrator = SupplierOrchestrator(
        supplier=supplier,
        calls=calls,
        policy=RetryPolicy(
            max_attempts=supplier_settings.max_attempts,
            initial_delay=supplier_settings.initial_delay_seconds,
            max_delay=supplier_settings.max_delay_seconds,
            backoff_factor=supplier_settings.backoff_factor,
        ),
        locks=locks,
        state_machine=state_machine,
        **sleep_kwargs,
    )
    state_machine.on_enter(OrderStatus.CONFIRMED, "submit-supplier-order", orchestrator.submit)
    state_machine.on_enter(OrderStatus.CANCELLED, "cancel-supplier-order", orchestrator.cancel_for_order)
    state_machine.on_enter(OrderStatus.REFUNDED, "cancel-supplier-order", orchestrator.cancel_for_order)

    checkout = Checkout(
        gateways=gateways,
        state_machine=state_machine,
        policy=RetryPolicy(max_attempts=settings.payments.charge_max_attempts, initial_delay=0.5, max_delay=5.0),
        **sleep_kwargs,
    )

    logger.info(
        "Orderflow services ready",
        payment_providers=gateways.names(),
        supplier_id=supplier.supplier_id,
        lock_backend=settings.lock_backend,
    )
    return Services(
        settings=settings,
        gateways=gateways,
        supplier=supplier,
        shipping=ShippingPolicy.from_settings(settings.shipping),
        state_machine=state_machine,
        checkout=checkout,
        webhooks=PaymentWebhookProcessor(gateways, state_machine),
        orchestrator=orchestrator,
        scheduler=TrackingSyncScheduler(orchestrator, settings.tracking),
        tasks=tasks,
    )
