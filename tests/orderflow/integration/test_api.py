"""Integration tests for the orderflow HTTP API via TestClient and httpx."""

import asyncio
import hmac
import time

import httpx
import pytest
from fastapi.testclient import TestClient
from orderflow.app import create_app
from orderflow.order.order import Order
from orderflow.supplier.supplier_order import SupplierOrder
from orderflow.utils.tasks import InlineTasks
from protean import current_domain

OPERATOR = {"X-Operator-Token": "ops-secret"}


@pytest.fixture()
def app(settings, supplier, notifier, sleeps):
    app = create_app(settings, tasks=InlineTasks(), supplier=supplier, notifier=notifier, sleep=sleeps.append)
    yield app
    app.state.services.shutdown()


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def gateway(app):
    return app.state.services.gateways.get("fake")


def _checkout(client, customer, item, **overrides):
    payload = {"customer": customer, "items": [item], "payment_method": "fake", **overrides}
    return client.post("/orders", json=payload)


def _paid_order(client, customer, item, signed_webhook):
    data = _checkout(client, customer, item).json()
    body, headers = signed_webhook(data["order_number"], event_id=f"evt-{data['order_number']}")
    client.post("/payments/webhooks/fake", content=body, headers=headers)
    return data


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class TestPlaceOrder:
    def test_returns_201_with_payment(self, client, customer, item):
        response = _checkout(client, customer, item, total=23.52)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["subtotal"] == 18.53
        assert data["shipping_cost"] == 4.99
        assert data["total"] == 23.52
        assert data["order_number"].startswith("ORD-")
        assert data["payment"]["provider"] == "fake"
        assert data["payment"]["redirect_url"].startswith("https://pay.example.test/")
        assert data["payment_error"] is None

    def test_charge_reference_is_recorded(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        order = current_domain.repository_for(Order).get(data["order_id"])
        assert order.payment_provider == "fake"
        assert order.payment_provider_reference == data["payment"]["reference"]

    def test_client_total_mismatch_rejected(self, client, customer, item):
        response = _checkout(client, customer, item, total=20.00)
        assert response.status_code == 400

    def test_unknown_payment_method_rejected(self, client, customer, item):
        response = _checkout(client, customer, item, payment_method="bitcoin")
        assert response.status_code == 400

    def test_empty_cart_rejected(self, client, customer):
        response = client.post("/orders", json={"customer": customer, "items": [], "payment_method": "fake"})
        assert response.status_code == 422

    def test_gateway_outage_keeps_the_order(self, client, gateway, customer, item):
        gateway.configure(should_succeed=False, failure_reason="Gateway unavailable")

        response = _checkout(client, customer, item)

        assert response.status_code == 201
        data = response.json()
        assert data["payment"] is None
        assert data["payment_error"] == "Gateway unavailable"
        assert current_domain.repository_for(Order).get(data["order_id"]).status == "PENDING"

    def test_manual_method_returns_instructions(self, client, customer, item):
        response = _checkout(client, customer, item, payment_method="manual")
        assert response.status_code == 201
        assert response.json()["payment"]["provider"] == "manual"


class TestRecreateCharge:
    def test_new_charge_for_pending_order(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        response = client.post(f"/orders/{data['order_number']}/charge")
        assert response.status_code == 200
        assert response.json()["provider"] == "fake"

    def test_provider_outage_is_502(self, client, gateway, customer, item):
        data = _checkout(client, customer, item).json()
        gateway.configure(should_succeed=False)
        response = client.post(f"/orders/{data['order_number']}/charge")
        assert response.status_code == 502

    def test_unknown_order_is_404(self, client):
        assert client.post("/orders/ORD-0-NOPE0/charge").status_code == 404


class TestTrackOrder:
    def test_lookup_with_matching_email(self, client, customer, item):
        data = _checkout(client, customer, item).json()

        response = client.get(f"/orders/{data['order_number']}", params={"email": "ANA@example.com"})

        assert response.status_code == 200
        view = response.json()
        assert view["status"] == "PENDING"
        assert view["items"][0]["line_total"] == 18.53
        assert "customer" not in view

    def test_wrong_email_is_404(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        response = client.get(f"/orders/{data['order_number']}", params={"email": "someone@example.com"})
        assert response.status_code == 404

    def test_unknown_order_is_404(self, client):
        response = client.get("/orders/ORD-0-NOPE0", params={"email": "ana@example.com"})
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Payment webhooks
# ---------------------------------------------------------------------------
class TestPaymentWebhook:
    def test_success_confirms_order(self, client, customer, item, signed_webhook):
        data = _checkout(client, customer, item).json()
        body, headers = signed_webhook(data["order_number"], event_id="evt_ok")

        response = client.post("/payments/webhooks/fake", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True, "result": "processed", "event_id": "evt_ok"}
        assert current_domain.repository_for(Order).get(data["order_id"]).status == "CONFIRMED"

    def test_redelivery_is_acknowledged_as_duplicate(self, client, customer, item, signed_webhook):
        data = _checkout(client, customer, item).json()
        body, headers = signed_webhook(data["order_number"], event_id="evt_ok")
        client.post("/payments/webhooks/fake", content=body, headers=headers)

        response = client.post("/payments/webhooks/fake", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["result"] == "duplicate"

    def test_bad_signature_is_401(self, client, customer, item, signed_webhook):
        data = _checkout(client, customer, item).json()
        body, _ = signed_webhook(data["order_number"])
        response = client.post("/payments/webhooks/fake", content=body, headers={"X-Gateway-Signature": "forged"})
        assert response.status_code == 401
        assert current_domain.repository_for(Order).get(data["order_id"]).status == "PENDING"

    def test_unknown_provider_is_404(self, client):
        assert client.post("/payments/webhooks/paypal", content=b"{}").status_code == 404

    def test_amount_mismatch_is_acknowledged_but_rejected(self, client, customer, item, signed_webhook):
        data = _checkout(client, customer, item).json()
        body, headers = signed_webhook(data["order_number"], amount=1.00)

        response = client.post("/payments/webhooks/fake", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["result"] == "rejected"
        assert current_domain.repository_for(Order).get(data["order_id"]).status == "PENDING"


# ---------------------------------------------------------------------------
# Operator status updates
# ---------------------------------------------------------------------------
class TestUpdateStatus:
    def test_requires_operator_token(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        response = client.patch(
            f"/orders/{data['order_id']}/status", json={"status": "CANCELLED", "operator_id": "ops-ana"}
        )
        assert response.status_code == 401

    def test_wrong_operator_token(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        response = client.patch(
            f"/orders/{data['order_id']}/status",
            json={"status": "CANCELLED", "operator_id": "ops-ana"},
            headers={"X-Operator-Token": "guess"},
        )
        assert response.status_code == 401

    def test_operator_cancels_pending_order(self, client, customer, item):
        data = _checkout(client, customer, item).json()

        response = client.patch(
            f"/orders/{data['order_id']}/status",
            json={"status": "cancelled", "operator_id": "ops-ana", "note": "Customer asked"},
            headers=OPERATOR,
        )

        assert response.status_code == 200
        assert response.json() == {
            "order_id": data["order_id"],
            "applied": True,
            "result": "applied",
            "from_status": "PENDING",
            "status": "CANCELLED",
        }

    def test_replayed_operator_action_is_duplicate(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        payload = {"status": "CONFIRMED", "operator_id": "ops-ana", "requested_at": "2026-01-05T10:00:00+00:00"}
        client.patch(f"/orders/{data['order_id']}/status", json=payload, headers=OPERATOR)

        response = client.patch(f"/orders/{data['order_id']}/status", json=payload, headers=OPERATOR)

        assert response.status_code == 200
        assert response.json()["applied"] is False
        assert response.json()["result"] == "duplicate"

    def test_invalid_transition_is_409(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        response = client.patch(
            f"/orders/{data['order_id']}/status",
            json={"status": "DELIVERED", "operator_id": "ops-ana"},
            headers=OPERATOR,
        )
        assert response.status_code == 409
        assert response.json()["status"] == "PENDING"

    def test_unknown_status_is_400(self, client, customer, item):
        data = _checkout(client, customer, item).json()
        response = client.patch(
            f"/orders/{data['order_id']}/status",
            json={"status": "TELEPORTED", "operator_id": "ops-ana"},
            headers=OPERATOR,
        )
        assert response.status_code == 400

    def test_operator_ship_records_tracking(self, client, customer, item, signed_webhook):
        data = _paid_order(client, customer, item, signed_webhook)

        response = client.patch(
            f"/orders/{data['order_id']}/status",
            json={"status": "SHIPPED", "operator_id": "ops-ana", "tracking_number": "CJ999", "carrier": "CJ Packet"},
            headers=OPERATOR,
        )

        assert response.status_code == 200
        order = current_domain.repository_for(Order).get(data["order_id"])
        assert order.status == "SHIPPED"
        assert order.tracking_number == "CJ999"


# ---------------------------------------------------------------------------
# Supplier webhooks
# ---------------------------------------------------------------------------
class TestSupplierWebhook:
    def _external_id(self, order_id):
        return current_domain.repository_for(SupplierOrder).find_by_order(order_id).external_order_id

    def test_shipped_push_updates_order(self, client, customer, item, signed_webhook):
        data = _paid_order(client, customer, item, signed_webhook)
        external_id = self._external_id(data["order_id"])

        response = client.post(
            "/suppliers/webhooks/fake",
            json={"orderId": external_id, "orderStatus": "SHIPPED", "trackingNumber": "CJ123"},
            headers={"X-Supplier-Secret": "supplier-secret"},
        )

        assert response.status_code == 200
        assert response.json()["result"] == "changed"
        order = current_domain.repository_for(Order).get(data["order_id"])
        assert order.status == "SHIPPED"
        assert order.tracking_number == "CJ123"

    def test_wrong_secret_is_401(self, client, customer, item, signed_webhook):
        data = _paid_order(client, customer, item, signed_webhook)
        response = client.post(
            "/suppliers/webhooks/fake",
            json={"orderId": self._external_id(data["order_id"]), "orderStatus": "SHIPPED"},
            headers={"X-Supplier-Secret": "nope"},
        )
        assert response.status_code == 401

    def test_unknown_supplier_is_404(self, client):
        response = client.post(
            "/suppliers/webhooks/other",
            json={"orderId": "X", "orderStatus": "SHIPPED"},
            headers={"X-Supplier-Secret": "supplier-secret"},
        )
        assert response.status_code == 404

    def test_unknown_external_order_is_acknowledged(self, client):
        response = client.post(
            "/suppliers/webhooks/fake",
            json={"orderId": "FAKE-UNKNOWN", "orderStatus": "SHIPPED"},
            headers={"X-Supplier-Secret": "supplier-secret"},
        )
        assert response.status_code == 200
        assert response.json()["result"] == "unknown_order"

    def test_missing_secret_is_401(self, client):
        response = client.post("/suppliers/webhooks/fake", json={"orderId": "X", "orderStatus": "SHIPPED"})
        assert response.status_code == 401

    def test_secret_is_compared_in_constant_time(self, client, monkeypatch):
        compared = []
        original = hmac.compare_digest

        def _compare(a, b):
            compared.append((a, b))
            return original(a, b)

        monkeypatch.setattr(hmac, "compare_digest", _compare)
        client.post(
            "/suppliers/webhooks/fake",
            json={"orderId": "FAKE-UNKNOWN", "orderStatus": "SHIPPED"},
            headers={"X-Supplier-Secret": "supplier-secret"},
        )
        assert (b"supplier-secret", b"supplier-secret") in compared

    def test_long_status_label_is_acknowledged(self, client, customer, item, signed_webhook):
        data = _paid_order(client, customer, item, signed_webhook)
        label = "HELD_AT_WAREHOUSE_" + "W" * 300
        response = client.post(
            "/suppliers/webhooks/fake",
            json={"orderId": self._external_id(data["order_id"]), "orderStatus": label},
            headers={"X-Supplier-Secret": "supplier-secret"},
        )
        assert response.status_code == 200
        assert response.json()["result"] == "unknown_status"


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------
class TestAdmin:
    def test_requires_operator_token(self, client):
        assert client.get("/admin/supplier-orders").status_code == 401

    def test_order_detail_includes_history(self, client, customer, item, signed_webhook):
        data = _paid_order(client, customer, item, signed_webhook)

        response = client.get(f"/admin/orders/{data['order_id']}", headers=OPERATOR)

        assert response.status_code == 200
        view = response.json()
        assert view["customer"]["email"] == "ana@example.com"
        assert view["status"] == "CONFIRMED"
        assert [(h["from_status"], h["to_status"]) for h in view["history"]][-1] == ("PENDING", "CONFIRMED")

    def test_unknown_order_is_404(self, client):
        assert client.get("/admin/orders/does-not-exist", headers=OPERATOR).status_code == 404

    def test_failed_supplier_orders_listed_and_retried(self, client, supplier, customer, item, signed_webhook):
        supplier.configure(should_succeed=False, failure_reason="Product is off the shelf", retryable=False)
        data = _paid_order(client, customer, item, signed_webhook)

        listed = client.get("/admin/supplier-orders", headers=OPERATOR)
        assert listed.status_code == 200
        assert [so["order_id"] for so in listed.json()] == [data["order_id"]]
        assert listed.json()[0]["status"] == "SYNC_FAILED"

        supplier.configure(should_succeed=True)
        retried = client.post(f"/admin/supplier-orders/{data['order_id']}/retry", headers=OPERATOR)

        assert retried.status_code == 200
        assert retried.json()["status"] == "SUBMITTED"
        assert retried.json()["external_order_id"].startswith("FAKE-")

    def test_unknown_supplier_status_filter_is_400(self, client):
        assert client.get("/admin/supplier-orders?status=LOST", headers=OPERATOR).status_code == 400

    def test_manual_tracking_sync(self, client, settings, supplier, customer, item, signed_webhook):
        settings.tracking.staleness_seconds = 0
        data = _paid_order(client, customer, item, signed_webhook)
        supplier_order = current_domain.repository_for(SupplierOrder).find_by_order(data["order_id"])
        supplier.set_status(supplier_order.external_order_id, "DELIVERED")

        response = client.post("/admin/tracking/sync", headers=OPERATOR)

        assert response.status_code == 200
        assert response.json()["changed"] == 1
        assert current_domain.repository_for(Order).get(data["order_id"]).status == "DELIVERED"


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["environment"] == "test"
        assert set(data["payment_providers"]) == {"fake", "manual"}
        assert data["supplier"] == "fake"
        assert data["tracking_sync"] is False


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------
class TestSlowProviders:
    """Outbound calls run off the event loop, so other requests keep flowing."""

    def _slow_charges(self, gateway, monkeypatch, seconds):
        create_charge = gateway.create_charge

        def _slow(request, method):
            time.sleep(seconds)
            return create_charge(request, method)

        monkeypatch.setattr(gateway, "create_charge", _slow)

    def test_health_answers_while_a_charge_is_in_flight(self, app, gateway, monkeypatch, customer, item):
        self._slow_charges(gateway, monkeypatch, 1.5)
        payload = {"customer": customer, "items": [item], "payment_method": "fake"}

        async def scenario():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://orderflow.test") as client:

                async def health():
                    await asyncio.sleep(0.2)
                    started = time.monotonic()
                    response = await client.get("/health")
                    return response, time.monotonic() - started

                return await asyncio.gather(client.post("/orders", json=payload), health())

        placed, (health, latency) = asyncio.run(scenario())

        assert placed.status_code == 201
        assert placed.json()["payment"]["provider"] == "fake"
        assert health.status_code == 200
        assert latency < 1.0

    def test_order_lookup_answers_while_a_charge_is_in_flight(self, app, client, gateway, monkeypatch, customer, item):
        existing = _checkout(client, customer, item).json()
        self._slow_charges(gateway, monkeypatch, 1.5)
        payload = {"customer": customer, "items": [item], "payment_method": "fake"}

        async def scenario():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://orderflow.test") as client:

                async def lookup():
                    await asyncio.sleep(0.2)
                    started = time.monotonic()
                    response = await client.get(
                        f"/orders/{existing['order_number']}", params={"email": customer["email"]}
                    )
                    return response, time.monotonic() - started

                return await asyncio.gather(client.post("/orders", json=payload), lookup())

        placed, (found, latency) = asyncio.run(scenario())

        assert placed.status_code == 201
        assert found.status_code == 200
        assert found.json()["order_number"] == existing["order_number"]
        assert latency < 1.0
