import json
import os

import pytest


@pytest.fixture(scope="session")
def _orderflow_domain(request):
    """Initialize the orderflow domain once per session."""
    os.environ["PROTEAN_ENV"] = request.config.option.env

    from orderflow.domain import orderflow

    orderflow.init()
    return orderflow


@pytest.fixture(scope="session", autouse=True)
def setup_db(_orderflow_domain):
    from orderflow.utils.db import drop_db, setup_db

    setup_db(_orderflow_domain)

    yield

    drop_db(_orderflow_domain)


@pytest.fixture(autouse=True)
def run_around_tests(_orderflow_domain):
    """Push domain context before each test, cleanup after."""
    ctx = _orderflow_domain.domain_context()
    ctx.push()

    yield

    from protean import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()
    ctx.pop()


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------
@pytest.fixture()
def settings():
    from orderflow.config import (
        OrderflowSettings,
        PaymentSettings,
        ShippingSettings,
        SupplierSettings,
        TrackingSettings,
    )

    return OrderflowSettings(
        environment="test",
        operator_token="ops-secret",
        payments=PaymentSettings(enabled=["fake", "manual"], fake_signing_secret="whsec-test"),
        supplier=SupplierSettings(
            webhook_secret="supplier-secret",
            max_attempts=3,
            max_workers=2,
            timeout_seconds=5,
            rate_limit_per_second=1000,
        ),
        tracking=TrackingSettings(enabled=False, staleness_seconds=1800, batch_size=50),
        shipping=ShippingSettings(flat_rate=4.99),
    )


@pytest.fixture()
def supplier():
    from orderflow.supplier.adapter.fake_adapter import FakeSupplier

    return FakeSupplier()


@pytest.fixture()
def notifier():
    from orderflow.notifications import RecordingNotifier

    return RecordingNotifier()


@pytest.fixture()
def sleeps():
    """Every backoff delay requested, instead of actually sleeping."""
    return []


@pytest.fixture()
def services(settings, supplier, notifier, sleeps, _orderflow_domain):
    from orderflow.services import build_services
    from orderflow.utils.tasks import InlineTasks

    services = build_services(
        settings,
        _orderflow_domain,
        tasks=InlineTasks(),
        supplier=supplier,
        notifier=notifier,
        sleep=sleeps.append,
    )
    yield services
    services.shutdown()


@pytest.fixture()
def gateway(services):
    return services.gateways.get("fake")


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------
CUSTOMER = {
    "first_name": "Ana",
    "last_name": "Quispe",
    "email": "ana@example.com",
    "phone": "+51987654321",
    "address": "Av. Larco 123",
    "city": "Lima",
    "state": "Lima",
    "postal_code": "15074",
    "country": "PE",
}

ITEM = {"product_id": "prod-1", "variant_id": "var-1", "title": "Desk lamp", "quantity": 1, "unit_price": 18.53}


@pytest.fixture()
def customer():
    return dict(CUSTOMER)


@pytest.fixture()
def item():
    return dict(ITEM)


@pytest.fixture()
def place_order():
    """Place a PENDING order through the command handler and return its id."""
    from orderflow.order.placement import PlaceOrder
    from protean import current_domain

    def _place(order_number=None, items=None, shipping_cost=4.99, payment_method="fake", **customer_overrides):
        command = PlaceOrder(
            customer=json.dumps({**CUSTOMER, **customer_overrides}),
            items=json.dumps(items or [ITEM]),
            shipping_cost=shipping_cost,
            payment_method=payment_method,
            order_number=order_number,
        )
        return current_domain.process(command, asynchronous=False)

    return _place


@pytest.fixture()
def signed_webhook(gateway):
    """Signed fake-gateway webhook body and headers."""

    def _build(order_number, status="succeeded", amount=23.52, event_id="evt_1", reference=None):
        body = json.dumps(
            {
                "event_id": event_id,
                "order_number": order_number,
                "reference": reference,
                "status": status,
                "amount": amount,
                "currency": "USD",
            }
        ).encode()
        return body, {"X-Gateway-Signature": gateway.sign(body)}

    return _build


@pytest.fixture()
def confirmed_order(place_order, services, signed_webhook):
    """An order paid through the fake gateway; its supplier order has been submitted."""
    order_id = place_order(order_number="ORD-1700000000-AB12C")
    body, headers = signed_webhook("ORD-1700000000-AB12C", event_id="evt_paid")
    services.webhooks.handle("fake", body, headers)
    return order_id
