import uuid

import pytest

from models.order import Order


class TestAdminAccess:
    def test_customer_is_forbidden(self, client, auth_headers):
        resp = client.get("/api/admin/orders", headers=auth_headers)
        assert resp.status_code == 403

    def test_anonymous_is_unauthorized(self, client):
        resp = client.get("/api/admin/orders")
        assert resp.status_code == 401


class TestAdminStatusUpdates:
    def test_walk_the_happy_lifecycle(self, client, product, auth_headers, admin_headers, place_order, sent_emails):
        order = place_order(auth_headers, product.id)
        url = f"/api/admin/orders/{order['id']}/status"

        for status in ("Paid", "Processing", "Shipped", "Delivered"):
            resp = client.put(url, json={"status": status}, headers=admin_headers)
            assert resp.status_code == 200, resp.text
            assert resp.json()["status"] == status

        body = resp.json()
        assert [e["status"] for e in body["events"]] == ["Delivered", "Shipped", "Processing", "Paid", "Pending"]
        assert body["paid_at"] and body["shipped_at"] and body["delivered_at"]
        assert any("shipped" in m["subject"] for m in sent_emails)

    def test_illegal_transition_is_conflict(self, client, db, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.put(
            f"/api/admin/orders/{order['id']}/status", json={"status": "Delivered"}, headers=admin_headers
        )
        assert resp.status_code == 409
        assert db.get(Order, uuid.UUID(order["id"])).status == "Pending"

    def test_unknown_status_is_validation_error(self, client, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.put(f"/api/admin/orders/{order['id']}/status", json={"status": "Teleported"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_note_is_stored_on_event(self, client, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.put(
            f"/api/admin/orders/{order['id']}/status",
            json={"status": "Paid", "note": "Bank transfer received"},
            headers=admin_headers,
        )
        assert resp.json()["events"][0]["notes"] == "Bank transfer received"

    def test_admin_cancel_restores_stock(self, client, product, small_variant, auth_headers, admin_headers, place_order, sent_emails):
        order = place_order(auth_headers, product.id, small_variant.id, 3)
        assert small_variant.stock_quantity == 7

        resp = client.put(
            f"/api/admin/orders/{order['id']}/status",
            json={"status": "Cancelled", "note": "Out of delivery area", "notify_customer": False},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["cancellation_reason"] == "Out of delivery area"
        assert small_variant.stock_quantity == 10
        assert not any("cancelled" in m["subject"] for m in sent_emails)

    def test_cancelled_order_can_be_refunded(self, client, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        client.post(f"/api/orders/{order['id']}/cancel", headers=auth_headers)
        resp = client.put(f"/api/admin/orders/{order['id']}/status", json={"status": "Refunded"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "Refunded"


class TestAdminShipping:
    @pytest.fixture
    def processing_order(self, client, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        for status in ("Paid", "Processing"):
            client.put(f"/api/admin/orders/{order['id']}/status", json={"status": status}, headers=admin_headers)
        return order

    def test_mark_as_shipped_with_tracking(self, client, admin_headers, processing_order, sent_emails):
        sent_emails.clear()
        resp = client.put(
            f"/api/admin/orders/{processing_order['id']}/shipping",
            json={"tracking_number": "1Z999AA10123456784", "mark_as_shipped": True},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "Shipped"
        assert body["tracking_number"] == "1Z999AA10123456784"
        assert "1Z999AA10123456784" in body["events"][0]["description"]
        assert len(sent_emails) == 1
        assert "1Z999AA10123456784" in sent_emails[0]["body"]

    def test_tracking_only_update_keeps_status(self, client, admin_headers, processing_order, sent_emails):
        sent_emails.clear()
        resp = client.put(
            f"/api/admin/orders/{processing_order['id']}/shipping",
            json={"tracking_number": "TRACK-1"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "Processing"
        assert resp.json()["tracking_number"] == "TRACK-1"
        assert sent_emails == []

    def test_cannot_ship_pending_order(self, client, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.put(
            f"/api/admin/orders/{order['id']}/shipping", json={"mark_as_shipped": True}, headers=admin_headers
        )
        assert resp.status_code == 409


class TestAdminNotesAndListing:
    def test_notes_append_without_events(self, client, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        url = f"/api/admin/orders/{order['id']}/notes"
        client.post(url, json={"note": "Customer asked for afternoon delivery"}, headers=admin_headers)
        resp = client.post(url, json={"note": "Installer booked"}, headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        lines = body["notes"].splitlines()
        assert lines[-2].endswith("Customer asked for afternoon delivery")
        assert lines[-1].endswith("Installer booked")
        assert len(body["events"]) == 1

    def test_list_all_orders_and_search_by_email(
        self, client, product, heat_pump, auth_headers, other_headers, admin_headers, place_order
    ):
        place_order(auth_headers, product.id)
        place_order(other_headers, heat_pump.id, customer_email="other@example.com")

        everything = client.get("/api/admin/orders", headers=admin_headers).json()
        assert everything["total_count"] == 2

        found = client.get("/api/admin/orders?search=other@", headers=admin_headers).json()
        assert found["total_count"] == 1
        assert found["items"][0]["customer_email"] == "other@example.com"

    def test_admin_can_read_any_order(self, client, product, auth_headers, admin_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.get(f"/api/admin/orders/{order['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == order["id"]
