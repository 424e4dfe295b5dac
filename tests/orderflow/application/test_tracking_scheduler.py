"""Application tests for the tracking sync scheduler."""

from datetime import UTC, datetime, timedelta

from orderflow.config import TrackingSettings
from orderflow.order.order import Order, OrderStatus, PaymentStatus
from orderflow.supplier.supplier_order import SupplierOrder, SupplierOrderStatus
from orderflow.tracking.scheduler import TrackingSyncScheduler
from protean import current_domain

ORDER_NUMBER = "ORD-1700000000-AB12C"


def _later(hours=1):
    """A run time past the staleness window of freshly submitted orders."""
    return datetime.now(UTC) + timedelta(hours=hours)


def _supplier_order(order_id):
    return current_domain.repository_for(SupplierOrder).find_by_order(order_id)


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _confirm(services, place_order, signed_webhook, order_number):
    place_order(order_number=order_number)
    return services.webhooks.handle("fake", *signed_webhook(order_number, event_id=f"evt-{order_number}")).order_id


class TestDuplicatePaymentThenSubmission:
    def test_duplicate_success_webhook_confirms_once_and_submits(self, services, place_order, signed_webhook):
        place_order(order_number=ORDER_NUMBER)
        body, headers = signed_webhook(ORDER_NUMBER, amount=23.52, event_id="evt_paid")

        first = services.webhooks.handle("fake", body, headers)
        second = services.webhooks.handle("fake", body, headers)

        assert (first.result, second.result) == ("processed", "duplicate")
        order = _order(first.order_id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert len(order.status_history) == 1
        supplier_order = _supplier_order(first.order_id)
        assert supplier_order.status == SupplierOrderStatus.SUBMITTED.value
        assert supplier_order.external_order_id is not None


class TestTrackingSync:
    def test_shipped_with_tracking_moves_order_once(self, services, confirmed_order, supplier):
        external_id = _supplier_order(confirmed_order).external_order_id
        supplier.set_status(external_id, "SHIPPED", tracking_number="CJ123", carrier="CJ Packet")

        report = services.scheduler.run_once(_later())

        assert report.selected == 1
        assert report.changed == 1
        order = _order(confirmed_order)
        assert order.status == OrderStatus.SHIPPED.value
        assert order.tracking_number == "CJ123"
        shipped = [e for e in order.status_history if e.to_status == OrderStatus.SHIPPED.value]
        assert len(shipped) == 1
        assert shipped[0].source == "supplier:fake"

    def test_second_run_with_same_status_changes_nothing(self, services, confirmed_order, supplier):
        external_id = _supplier_order(confirmed_order).external_order_id
        supplier.set_status(external_id, "SHIPPED", tracking_number="CJ123")
        services.scheduler.run_once(_later(1))

        report = services.scheduler.run_once(_later(2))

        assert report.unchanged == 1
        assert len(_order(confirmed_order).status_history) == 2

    def test_recently_synced_orders_are_skipped(self, services, confirmed_order):
        report = services.scheduler.run_once(datetime.now(UTC))
        assert report.selected == 0

    def test_unknown_status_is_left_unchanged(self, services, confirmed_order, supplier):
        external_id = _supplier_order(confirmed_order).external_order_id
        supplier.set_status(external_id, "ON_HOLD")

        report = services.scheduler.run_once(_later())

        assert report.unknown == 1
        supplier_order = _supplier_order(confirmed_order)
        assert supplier_order.status == SupplierOrderStatus.SUBMITTED.value
        assert supplier_order.last_status_label == "ON_HOLD"
        assert _order(confirmed_order).status == OrderStatus.CONFIRMED.value

    def test_regression_is_rejected(self, services, confirmed_order, supplier):
        external_id = _supplier_order(confirmed_order).external_order_id
        supplier.set_status(external_id, "SHIPPED", tracking_number="CJ123")
        services.scheduler.run_once(_later(1))
        supplier.set_status(external_id, "PROCESSING")

        report = services.scheduler.run_once(_later(2))

        assert report.rejected == 1
        assert _supplier_order(confirmed_order).status == SupplierOrderStatus.SHIPPED.value
        assert _order(confirmed_order).status == OrderStatus.SHIPPED.value

    def test_one_failing_poll_does_not_stop_the_batch(self, services, place_order, signed_webhook, supplier):
        broken = _confirm(services, place_order, signed_webhook, "ORD-1700000000-AAAA1")
        healthy = _confirm(services, place_order, signed_webhook, "ORD-1700000000-BBBB2")
        supplier.fail_polls_for(_supplier_order(broken).external_order_id)
        supplier.set_status(_supplier_order(healthy).external_order_id, "DELIVERED")

        report = services.scheduler.run_once(_later())

        assert report.selected == 2
        assert report.failed == 1
        assert report.changed == 1
        assert _order(healthy).status == OrderStatus.DELIVERED.value
        failed = _supplier_order(broken)
        assert failed.last_error == "Status endpoint unavailable"

    def test_failed_poll_is_retried_next_run(self, services, confirmed_order, supplier):
        external_id = _supplier_order(confirmed_order).external_order_id
        supplier.fail_polls_for(external_id)
        services.scheduler.run_once(_later(1))

        report = services.scheduler.run_once(_later(1))

        assert report.selected == 1

    def test_batch_size_caps_selection(self, services, place_order, signed_webhook):
        scheduler = TrackingSyncScheduler(services.orchestrator, TrackingSettings(batch_size=2))
        for suffix in ("AAAA1", "BBBB2", "CCCC3"):
            _confirm(services, place_order, signed_webhook, f"ORD-1700000000-{suffix}")

        assert len(scheduler.due_supplier_orders(_later())) == 2

    def test_delivered_orders_are_no_longer_polled(self, services, confirmed_order, supplier):
        external_id = _supplier_order(confirmed_order).external_order_id
        supplier.set_status(external_id, "DELIVERED")
        services.scheduler.run_once(_later(1))

        assert services.scheduler.run_once(_later(3)).selected == 0

    def test_run_resumes_pending_submissions(self, services, place_order, signed_webhook, supplier):
        supplier.delay_seconds = 0.5
        services.orchestrator.calls.timeout = 0.05
        order_id = _confirm(services, place_order, signed_webhook, ORDER_NUMBER)
        supplier.delay_seconds = 0
        services.orchestrator.calls.timeout = 5

        report = services.scheduler.run_once(_later())

        assert report.resumed == 1
        assert _supplier_order(order_id).status == SupplierOrderStatus.SUBMITTED.value
