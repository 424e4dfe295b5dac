"""Tests for the Order aggregate: placement, invariants and recorded transitions."""

import pytest
from orderflow.errors import InvalidTransition
from orderflow.order.events import OrderPlaced, OrderStatusChanged
from orderflow.order.order import EventKind, Order, OrderStatus, PaymentStatus
from protean.exceptions import ValidationError


def _place(customer, items=None, shipping_cost=4.99):
    return Order.place(
        order_number="ORD-1700000000-AB12C",
        customer=customer,
        items=items or [{"product_id": "prod-1", "quantity": 1, "unit_price": 18.53}],
        shipping_cost=shipping_cost,
        payment_method="fake",
    )


class TestPlacement:
    def test_totals_are_computed_from_items(self, customer):
        order = _place(customer)
        assert order.subtotal == 18.53
        assert order.shipping_cost == 4.99
        assert order.total == 23.52

    def test_line_totals_multiply_quantity(self, customer):
        order = _place(
            customer,
            items=[
                {"product_id": "prod-1", "quantity": 3, "unit_price": 10.10},
                {"product_id": "prod-2", "quantity": 2, "unit_price": 0.35},
            ],
        )
        assert sorted(item.line_total for item in order.items) == [0.7, 30.3]
        assert order.subtotal == 31.0
        assert order.total == 35.99

    def test_new_order_is_pending_and_unpaid(self, customer):
        order = _place(customer)
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.status_history == []

    def test_placement_raises_order_placed(self, customer):
        order = _place(customer)
        events = [e for e in order._events if isinstance(e, OrderPlaced)]
        assert len(events) == 1
        event = events[0]
        assert event.total == 23.52
        assert event.customer_email == "ana@example.com"

    def test_empty_items_rejected(self, customer):
        with pytest.raises(ValidationError) as exc:
            Order.place(
                order_number="ORD-1",
                customer=customer,
                items=[],
                shipping_cost=4.99,
                payment_method="fake",
            )
        assert "items" in exc.value.messages

    def test_customer_snapshot_requires_email_shape(self, customer):
        customer["email"] = "not-an-email"
        with pytest.raises(ValidationError):
            _place(customer)

    def test_full_name(self, customer):
        assert _place(customer).customer.full_name == "Ana Quispe"


class TestTotalInvariant:
    def test_inconsistent_total_rejected(self, customer):
        order = _place(customer)
        with pytest.raises(ValidationError) as exc:
            order.total = 30.00
        assert "total" in exc.value.messages

    def test_shipping_change_must_keep_total_consistent(self, customer):
        order = _place(customer)
        with pytest.raises(ValidationError):
            order.shipping_cost = 0.0


class TestAttachCharge:
    def test_attach_charge_on_pending_order(self, customer):
        order = _place(customer)
        order.attach_charge("fake", "fake_ch_123")
        assert order.payment_provider == "fake"
        assert order.payment_provider_reference == "fake_ch_123"

    def test_attach_charge_after_confirmation_rejected(self, customer):
        order = _place(customer)
        order.transition(EventKind.PAYMENT_SUCCEEDED, source="payment:fake", dedup_key="payment:fake:evt_1")
        with pytest.raises(ValidationError):
            order.attach_charge("fake", "fake_ch_456")


class TestTransition:
    def test_payment_success_confirms_and_marks_paid(self, customer):
        order = _place(customer)
        target = order.transition(
            EventKind.PAYMENT_SUCCEEDED,
            source="payment:fake",
            dedup_key="payment:fake:evt_1",
            payment_provider="fake",
            payment_reference="fake_ch_1",
        )
        assert target == OrderStatus.CONFIRMED
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.payment_provider_reference == "fake_ch_1"
        assert order.confirmed_at is not None

    def test_each_transition_appends_one_history_entry(self, customer):
        order = _place(customer)
        order.transition(EventKind.PAYMENT_SUCCEEDED, source="payment:fake", dedup_key="k1")
        order.transition(EventKind.SUPPLIER_PROCESSING, source="supplier:cj", dedup_key="k2")
        assert len(order.status_history) == 2
        assert {(e.from_status, e.to_status) for e in order.status_history} == {
            ("PENDING", "CONFIRMED"),
            ("CONFIRMED", "PROCESSING"),
        }
        assert order.has_processed("k1")
        assert not order.has_processed("k3")

    def test_shipping_records_tracking(self, customer):
        order = _place(customer)
        order.transition(EventKind.PAYMENT_SUCCEEDED, source="payment:fake", dedup_key="k1")
        order.transition(
            EventKind.SUPPLIER_SHIPPED,
            source="supplier:cj",
            dedup_key="k2",
            tracking_number="CJ123",
            tracking_url="https://track.example/CJ123",
            carrier="CJ Packet",
        )
        assert order.status == OrderStatus.SHIPPED.value
        assert order.tracking_number == "CJ123"
        assert order.carrier == "CJ Packet"
        assert order.shipped_at is not None

    def test_payment_failure_marks_failed(self, customer):
        order = _place(customer)
        order.transition(EventKind.PAYMENT_FAILED, source="payment:fake", dedup_key="k1")
        assert order.status == OrderStatus.FAILED.value
        assert order.payment_status == PaymentStatus.FAILED.value

    def test_refund_of_paid_order(self, customer):
        order = _place(customer)
        order.transition(EventKind.PAYMENT_SUCCEEDED, source="payment:fake", dedup_key="k1")
        order.transition(EventKind.PAYMENT_REFUNDED, source="payment:fake", dedup_key="k2")
        assert order.status == OrderStatus.REFUNDED.value
        assert order.payment_status == PaymentStatus.REFUNDED.value

    def test_invalid_transition_changes_nothing(self, customer):
        order = _place(customer)
        with pytest.raises(InvalidTransition) as exc:
            order.transition(EventKind.SUPPLIER_SHIPPED, source="supplier:cj", dedup_key="k1")
        assert exc.value.status == "PENDING"
        assert exc.value.event_kind == "SUPPLIER_SHIPPED"
        assert order.status == OrderStatus.PENDING.value
        assert order.status_history == []

    def test_transition_raises_status_changed_event(self, customer):
        order = _place(customer)
        order.transition(EventKind.OPERATOR_CANCEL, source="operator:ops-ana", dedup_key="k1", note="Duplicate")
        event = order._events[-1]
        assert isinstance(event, OrderStatusChanged)
        assert event.from_status == "PENDING"
        assert event.to_status == "CANCELLED"
        assert order.status_history[0].note == "Duplicate"
        assert order.cancelled_at is not None
