"""
API tests through the FastAPI app.

The payment service is swapped for the fixture instance so no request ever
leaves the process.
"""
import asyncio
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
import httpx

from dependencies import get_payment_service
from main import app

from conftest import SHIPPING_ADDRESS, sign

USER = {"Authorization": "Bearer user-token-123"}
OTHER_USER = {"Authorization": "Bearer test-token-789"}
ADMIN = {"Authorization": "Bearer admin-token-456"}


@pytest.fixture
def client(tables, payment_service):
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def order_payload(catalog):
    return {
        "items": [
            {"product_id": catalog["product_a"], "variant_id": catalog["variant_a"], "quantity": 2},
            {"product_id": catalog["product_b"], "variant_id": catalog["variant_b"], "quantity": 1},
        ],
        "shipping_address": SHIPPING_ADDRESS,
        "email": "asha@example.com",
    }


def place(client, payload, headers=USER):
    response = client.post("/orders", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def open_payment(client, order_id, headers=USER):
    response = client.post("/payments/create-order", headers=headers, json={"order_id": order_id})
    assert response.status_code == 200, response.text
    return response.json()["provider_order_id"]


def verify(client, order_id, provider_order_id, provider_payment_id="pay_1", signature=None, headers=USER):
    return client.post("/payments/verify", headers=headers, json={
        "order_id": order_id,
        "provider_order_id": provider_order_id,
        "provider_payment_id": provider_payment_id,
        "signature": signature or sign(provider_order_id, provider_payment_id),
    })


class TestAuth:
    """Tests for authentication and admin authorization."""

    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_missing_token(self, client):
        assert client.get("/orders").status_code == 401

    def test_malformed_header(self, client):
        assert client.get("/orders", headers={"Authorization": "Token abc"}).status_code == 401

    def test_unknown_token(self, client):
        assert client.get("/orders", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_admin_route_rejects_customer(self, client):
        assert client.get("/admin/orders", headers=USER).status_code == 403


class TestProductsAPI:
    """Tests for catalog endpoints."""

    def test_list_products(self, client, catalog):
        response = client.get("/products")

        assert response.status_code == 200
        products = response.json()
        assert [p["name"] for p in products] == ["Shoe Deodoriser", "Refill Pouch"]
        refill = products[1]
        assert Decimal(refill["base_price"]) == Decimal("60")
        assert Decimal(refill["variants"][0]["price"]) == Decimal("50")
        assert refill["total_stock"] == 5

    def test_unknown_product(self, client, catalog):
        assert client.get("/products/9999").status_code == 404

    def test_admin_creates_product(self, client):
        response = client.post("/products", headers=ADMIN, json={
            "name": "Travel Pack",
            "base_price": "149.00",
            "variants": [
                {"sku": "TP-S", "type": "Standard", "size": "Small", "fragrance": "Mint", "stock": 3},
                {"sku": "TP-L", "type": "Standard", "size": "Large", "fragrance": "Mint",
                 "price_adjustment": "50.00", "stock": 1},
            ],
        })

        assert response.status_code == 201
        data = response.json()
        assert data["total_stock"] == 4
        assert Decimal(data["variants"][1]["price"]) == Decimal("199")

    def test_duplicate_sku_rejected(self, client, catalog):
        response = client.post("/products", headers=ADMIN, json={
            "name": "Copy",
            "base_price": "10.00",
            "variants": [
                {"sku": "SD-STD-S-LAV", "type": "Standard", "size": "Small", "fragrance": "Lavender"},
            ],
        })
        assert response.status_code == 400

    def test_customer_cannot_create_product(self, client):
        response = client.post("/products", headers=USER, json={
            "name": "Nope", "base_price": "1.00",
            "variants": [{"sku": "N", "type": "T", "size": "S", "fragrance": "F"}],
        })
        assert response.status_code == 403

    def test_restock(self, client, catalog):
        response = client.post(
            f"/products/variants/{catalog['variant_a']}/restock", headers=ADMIN, json={"quantity": 20}
        )

        assert response.status_code == 200
        assert response.json()["stock"] == 25
        assert response.json()["last_restocked_at"] is not None

    def test_restock_rejects_zero(self, client, catalog):
        response = client.post(
            f"/products/variants/{catalog['variant_a']}/restock", headers=ADMIN, json={"quantity": 0}
        )
        assert response.status_code == 422


class TestOrdersAPI:
    """Tests for order endpoints."""

    def test_create_order(self, client, order_payload):
        order = place(client, order_payload)

        assert order["order_status"] == "Pending"
        assert order["payment"]["status"] == "Pending"
        assert order["user_id"] == "user_user-token"
        assert Decimal(order["pricing"]["subtotal"]) == Decimal("250")
        assert Decimal(order["pricing"]["tax"]) == Decimal("45")
        assert Decimal(order["pricing"]["delivery_charge"]) == Decimal("40")
        assert Decimal(order["pricing"]["total"]) == Decimal("335")
        assert Decimal(order["pricing"]["tax_rate"]) == Decimal("18")
        assert len(order["items"]) == 2

    def test_create_order_uses_current_settings(self, client, order_payload):
        response = client.put("/admin/settings", headers=ADMIN, json={"tax_rate": "0", "delivery_charge": "0"})
        assert response.status_code == 200

        order = place(client, order_payload)

        assert Decimal(order["pricing"]["total"]) == Decimal("250")

    def test_insufficient_stock(self, client, order_payload):
        order_payload["items"][0]["quantity"] = 50

        response = client.post("/orders", json=order_payload, headers=USER)

        assert response.status_code == 400
        assert "Insufficient stock" in response.json()["detail"]

    def test_invalid_quantity(self, client, order_payload):
        order_payload["items"][0]["quantity"] = 0
        assert client.post("/orders", json=order_payload, headers=USER).status_code == 422

    def test_unknown_variant(self, client, order_payload):
        order_payload["items"][0]["variant_id"] = 9999
        assert client.post("/orders", json=order_payload, headers=USER).status_code == 404

    def test_orders_are_private(self, client, order_payload):
        order = place(client, order_payload)

        assert client.get(f"/orders/{order['id']}", headers=USER).status_code == 200
        assert client.get(f"/orders/{order['id']}", headers=OTHER_USER).status_code == 404
        assert client.get("/orders", headers=OTHER_USER).json() == {"orders": []}
        assert len(client.get("/orders", headers=USER).json()["orders"]) == 1


class TestPaymentsAPI:
    """Tests for the payment flow."""

    def test_create_payment_order(self, client, order_payload, external_service):
        order = place(client, order_payload)

        response = client.post("/payments/create-order", headers=USER, json={"order_id": order["id"]})

        assert response.status_code == 200
        data = response.json()
        assert data["provider_order_id"] == f"order_{order['order_number']}"
        assert data["amount_minor"] == 33500
        assert data["currency"] == "INR"

    def test_provider_unavailable(self, client, order_payload, external_service):
        order = place(client, order_payload)
        external_service.create_provider_order.side_effect = httpx.ConnectError("down")

        response = client.post("/payments/create-order", headers=USER, json={"order_id": order["id"]})

        assert response.status_code == 502

    def test_verify_confirms_and_dispatches_side_effects(self, client, order_payload, external_service):
        order = place(client, order_payload)
        provider_order_id = open_payment(client, order["id"])

        response = verify(client, order["id"], provider_order_id)

        assert response.status_code == 200
        data = response.json()
        assert data["newly_confirmed"] is True
        assert data["order"]["order_status"] == "Confirmed"
        assert data["order"]["payment"]["status"] == "Completed"
        external_service.notify_customer.assert_awaited_once()

        stored = client.get(f"/orders/{order['id']}", headers=USER).json()
        assert stored["invoice_url"] == "/invoices/invoice-test.pdf"

        products = client.get("/products").json()
        assert products[0]["variants"][0]["stock"] == 3
        assert products[0]["variants"][0]["sales_count"] == 2

    def test_verify_runs_outside_event_loop(self, client, order_payload, payment_service, monkeypatch):
        """Test that confirmation, which may sleep between retries, runs in a worker thread."""
        order = place(client, order_payload)
        provider_order_id = open_payment(client, order["id"])
        confirm_payment = payment_service.confirm_payment
        seen = {}

        def recording_confirm(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                seen["event_loop"] = True
            except RuntimeError:
                seen["event_loop"] = False
            return confirm_payment(*args, **kwargs)

        monkeypatch.setattr(payment_service, "confirm_payment", recording_confirm)

        assert verify(client, order["id"], provider_order_id).status_code == 200
        assert seen == {"event_loop": False}

    def test_verify_replay_is_idempotent(self, client, order_payload, external_service):
        order = place(client, order_payload)
        provider_order_id = open_payment(client, order["id"])

        assert verify(client, order["id"], provider_order_id).json()["newly_confirmed"] is True
        replay = verify(client, order["id"], provider_order_id)

        assert replay.status_code == 200
        assert replay.json()["newly_confirmed"] is False
        external_service.notify_customer.assert_awaited_once()
        assert client.get("/products").json()[0]["variants"][0]["stock"] == 3

    def test_verify_bad_signature(self, client, order_payload):
        order = place(client, order_payload)
        provider_order_id = open_payment(client, order["id"])

        response = verify(client, order["id"], provider_order_id, signature="0" * 64)

        assert response.status_code == 400
        stored = client.get(f"/orders/{order['id']}", headers=USER).json()
        assert stored["order_status"] == "Pending"

    def test_verify_without_payment_order(self, client, order_payload):
        order = place(client, order_payload)

        response = verify(client, order["id"], "order_never_issued")

        assert response.status_code == 400
        stored = client.get(f"/orders/{order['id']}", headers=USER).json()
        assert stored["payment"]["status"] == "Pending"
        assert client.get("/products").json()[0]["variants"][0]["stock"] == 5

    def test_paid_order_signature_rejected_for_other_order(self, client, order_payload):
        cheap_payload = dict(order_payload, items=[dict(order_payload["items"][1], quantity=1)])
        cheap = place(client, cheap_payload)
        cheap_provider_order_id = open_payment(client, cheap["id"])
        paid = verify(client, cheap["id"], cheap_provider_order_id, provider_payment_id="pay_cheap")
        assert paid.status_code == 200

        pricey = place(client, order_payload)
        open_payment(client, pricey["id"])
        response = verify(client, pricey["id"], cheap_provider_order_id, provider_payment_id="pay_cheap")

        assert response.status_code == 400
        stored = client.get(f"/orders/{pricey['id']}", headers=USER).json()
        assert stored["order_status"] == "Pending"
        assert stored["payment"]["status"] == "Pending"

    def test_verify_out_of_stock(self, client, order_payload):
        order = place(client, order_payload)
        provider_order_id = open_payment(client, order["id"])
        # Another buyer pays first for the whole stock of the first variant
        greedy = dict(order_payload, items=[dict(order_payload["items"][0], quantity=5)])
        other = place(client, greedy, headers=OTHER_USER)
        other_provider_order_id = open_payment(client, other["id"], headers=OTHER_USER)
        assert verify(client, other["id"], other_provider_order_id, headers=OTHER_USER).status_code == 200

        response = verify(client, order["id"], provider_order_id, provider_payment_id="pay_2")

        assert response.status_code == 400
        stored = client.get(f"/orders/{order['id']}", headers=USER).json()
        assert stored["payment"]["status"] == "Pending"
        assert stored["order_status"] == "Pending"

    def test_verify_someone_elses_order(self, client, order_payload):
        order = place(client, order_payload)
        provider_order_id = open_payment(client, order["id"])
        assert verify(client, order["id"], provider_order_id, headers=OTHER_USER).status_code == 404


class TestAdminAPI:
    """Tests for admin endpoints."""

    def test_list_and_filter_orders(self, client, order_payload):
        first = place(client, order_payload)
        place(client, order_payload, headers=OTHER_USER)
        verify(client, first["id"], open_payment(client, first["id"]))

        all_orders = client.get("/admin/orders", headers=ADMIN).json()["orders"]
        confirmed = client.get("/admin/orders?status=Confirmed", headers=ADMIN).json()["orders"]

        assert len(all_orders) == 2
        assert [order["id"] for order in confirmed] == [first["id"]]

    def test_unknown_status_filter(self, client):
        assert client.get("/admin/orders?status=Lost", headers=ADMIN).status_code == 400

    def test_status_lifecycle(self, client, order_payload):
        order = place(client, order_payload)
        verify(client, order["id"], open_payment(client, order["id"]))

        for status in ("Processing", "Shipped", "Delivered"):
            response = client.put(
                f"/admin/orders/{order['id']}/status", headers=ADMIN, json={"status": status}
            )
            assert response.status_code == 200

        data = response.json()
        assert data["order_status"] == "Delivered"
        assert data["delivered_at"] is not None
        assert [entry["status"] for entry in data["status_history"]] == [
            "Pending", "Confirmed", "Processing", "Shipped", "Delivered"
        ]

    def test_invalid_transition(self, client, order_payload):
        order = place(client, order_payload)

        response = client.put(
            f"/admin/orders/{order['id']}/status", headers=ADMIN, json={"status": "Shipped"}
        )

        assert response.status_code == 400

    def test_status_of_unknown_order(self, client):
        response = client.put("/admin/orders/9999/status", headers=ADMIN, json={"status": "Cancelled"})
        assert response.status_code == 404

    def test_settings_round_trip(self, client):
        defaults = client.get("/admin/settings", headers=ADMIN).json()
        assert Decimal(defaults["tax_rate"]) == Decimal("18")
        assert defaults["low_stock_threshold"] == 10

        response = client.put("/admin/settings", headers=ADMIN, json={"low_stock_threshold": 3})

        assert response.status_code == 200
        assert response.json()["low_stock_threshold"] == 3
        assert Decimal(response.json()["delivery_charge"]) == Decimal("40")

    def test_settings_reject_unknown_and_negative(self, client):
        assert client.put("/admin/settings", headers=ADMIN, json={"currency": "USD"}).status_code == 422
        assert client.put("/admin/settings", headers=ADMIN, json={"tax_rate": "-1"}).status_code == 422

    def test_low_stock_report(self, client, catalog):
        client.put("/admin/settings", headers=ADMIN, json={"low_stock_threshold": 5})

        response = client.get("/admin/low-stock", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()
        assert data["threshold"] == 5
        assert {item["sku"] for item in data["items"]} == {"SD-STD-S-LAV", "RP-STD-M-CED"}
