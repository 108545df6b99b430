import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from core.db import utcnow
from models.cart import Cart
from models.order import Order, OrderEvent, OrderStatus


def _order(db, order_id):
    return db.get(Order, uuid.UUID(order_id))


def _event_count(db, order_id):
    return db.query(OrderEvent).filter(OrderEvent.order_id == uuid.UUID(order_id)).count()


def _advance(db, order_id, *statuses):
    order = _order(db, order_id)
    for status in statuses:
        order.transition_to(status)
    db.commit()
    return order


class TestPlaceOrder:
    def test_happy_path(self, client, db, product, small_variant, test_user, auth_headers, place_order, sent_emails, make_address):
        product.base_price = Decimal("599.99")
        db.commit()

        body = place_order(auth_headers, product.id, small_variant.id, 2, shipping_address=make_address(country="BG", city="Sofia"))

        assert body["status"] == "Pending"
        assert body["subtotal"] == 1199.98
        assert body["shipping_cost"] == 0
        assert body["tax_amount"] == 240.0
        assert body["discount_amount"] == 0
        assert body["total"] == pytest.approx(1439.98)
        assert body["currency"] == "EUR"
        assert body["customer_email"] == "test@example.com"
        assert body["shipping_address"]["country"] == "BG"
        assert body["can_cancel"] is True
        assert body["order_number"].startswith(f"ORD-{utcnow().year}-")
        assert len(body["events"]) == 1
        assert body["events"][0]["status"] == "Pending"
        assert body["events"][0]["description"] == "Order placed"

        item = body["items"][0]
        assert item["product_name"] == "Split Air Conditioner"
        assert item["variant_name"] == "9000 BTU"
        assert item["sku"] == "AC-SPLIT-01-9K"
        assert item["unit_price"] == 599.99
        assert item["line_total"] == 1199.98
        assert item["image_url"] == "https://img.example.com/ac.webp"

        cart = client.get("/api/cart", headers=auth_headers).json()
        assert cart["items"] == []
        assert small_variant.stock_quantity == 8

        assert len(sent_emails) == 1
        assert sent_emails[0]["to"] == "test@example.com"
        assert body["order_number"] in sent_emails[0]["subject"]

    def test_total_invariant_with_paid_shipping(self, product, small_variant, auth_headers, place_order):
        body = place_order(auth_headers, product.id, small_variant.id, 1, shipping_method="express")
        assert body["shipping_cost"] == 9.99
        expected = Decimal("1000.00") + Decimal("9.99") + Decimal("200.00") - Decimal("0.00")
        assert Decimal(str(body["total"])) == expected

    def test_order_numbers_are_sequential(self, product, small_variant, auth_headers, place_order):
        first = place_order(auth_headers, product.id, small_variant.id)
        second = place_order(auth_headers, product.id, small_variant.id)
        first_seq = int(first["order_number"].rsplit("-", 1)[1])
        second_seq = int(second["order_number"].rsplit("-", 1)[1])
        assert second_seq == first_seq + 1
        assert len(first["order_number"].rsplit("-", 1)[1]) == 6

    def test_price_integrity_uses_submission_price(self, client, db, product, small_variant, auth_headers, add_to_cart, make_order_payload):
        cart = add_to_cart(auth_headers, product.id, small_variant.id, 1)
        assert cart["items"][0]["unit_price"] == 1000.0

        product.base_price = Decimal("899.00")
        db.commit()

        resp = client.post("/api/orders", json=make_order_payload(), headers=auth_headers)
        assert resp.status_code == 201
        assert resp.json()["items"][0]["unit_price"] == 899.0
        assert resp.json()["subtotal"] == 899.0

    def test_empty_cart_rejected(self, client, test_user, auth_headers, make_order_payload):
        resp = client.post("/api/orders", json=make_order_payload(), headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
        assert resp.json()["detail"] == "Cart is empty"

    def test_all_failing_lines_reported_and_nothing_written(
        self, client, db, product, small_variant, heat_pump, auth_headers, add_to_cart, make_order_payload
    ):
        add_to_cart(auth_headers, product.id, small_variant.id, 3)
        add_to_cart(auth_headers, heat_pump.id, None, 1)
        small_variant.stock_quantity = 1
        heat_pump.is_active = False
        db.commit()

        resp = client.post("/api/orders", json=make_order_payload(), headers=auth_headers)
        assert resp.status_code == 400
        errors = resp.json()["errors"]
        assert {e["product_id"] for e in errors} == {product.id, heat_pump.id}
        assert all("item_id" in e and e["message"] for e in errors)
        assert db.query(Order).count() == 0
        assert small_variant.stock_quantity == 1

    def test_malformed_address_rejected(self, client, product, auth_headers, add_to_cart, make_order_payload, make_address):
        add_to_cart(auth_headers, product.id)
        resp = client.post(
            "/api/orders",
            json=make_order_payload(shipping_address=make_address(city="   ")),
            headers=auth_headers,
        )
        assert resp.status_code == 422

    def test_unknown_shipping_method_rejected(self, client, product, auth_headers, add_to_cart, make_order_payload):
        add_to_cart(auth_headers, product.id)
        resp = client.post("/api/orders", json=make_order_payload(shipping_method="drone"), headers=auth_headers)
        assert resp.status_code == 422

    def test_requires_authentication(self, client, make_order_payload):
        resp = client.post("/api/orders", json=make_order_payload())
        assert resp.status_code == 401

    def test_confirmation_failure_does_not_fail_order(self, client, db, product, auth_headers, add_to_cart, make_order_payload, monkeypatch):
        from services import email as email_module

        def _boom(*args, **kwargs):
            raise RuntimeError("smtp exploded")

        monkeypatch.setattr(email_module.email_service, "send", _boom)
        add_to_cart(auth_headers, product.id)
        resp = client.post("/api/orders", json=make_order_payload(), headers=auth_headers)
        assert resp.status_code == 201
        assert db.query(Order).count() == 1


class TestCheckoutQuotes:
    def test_shipping_methods(self, client):
        resp = client.get("/api/checkout/shipping-methods")
        assert resp.status_code == 200
        methods = {m["code"]: m for m in resp.json()}
        assert methods["standard"]["cost"] == 0
        assert (methods["standard"]["min_days"], methods["standard"]["max_days"]) == (5, 7)
        assert methods["express"]["cost"] == 9.99
        assert methods["overnight"]["cost"] == 19.99
        assert methods["overnight"]["max_days"] == 1

    def test_summary(self, client, product, auth_headers, add_to_cart):
        add_to_cart(auth_headers, product.id, quantity=2)
        resp = client.get("/api/checkout/summary?shipping_method=overnight", headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["subtotal"] == 2000.0
        assert body["shipping_cost"] == 19.99
        assert body["tax_amount"] == 400.0
        assert body["total"] == 2419.99
        assert body["item_count"] == 2

    def test_summary_empty_cart(self, client, auth_headers):
        resp = client.get("/api/checkout/summary", headers=auth_headers)
        assert resp.status_code == 400

    def test_summary_leaves_out_unavailable_lines(self, client, db, product, small_variant, heat_pump, auth_headers, add_to_cart):
        add_to_cart(auth_headers, product.id, small_variant.id, 1)
        add_to_cart(auth_headers, heat_pump.id, None, 1)
        heat_pump.is_active = False
        db.commit()

        body = client.get("/api/checkout/summary", headers=auth_headers).json()
        assert body["subtotal"] == 1000.0
        assert body["total"] == 1200.0
        assert body["item_count"] == 1
        assert [line["product_id"] for line in body["unavailable_items"]] == [heat_pump.id]
        assert body["unavailable_items"][0]["message"] == "Heat Pump is no longer available"


class TestOrderNumberCollisions:
    def test_taken_number_is_retried(self, client, db, product, auth_headers, place_order, add_to_cart, make_order_payload, monkeypatch):
        from services import checkout

        first = place_order(auth_headers, product.id)
        taken = first["order_number"]
        fresh = taken[:-6] + "000777"
        numbers = iter([taken, fresh])
        monkeypatch.setattr(checkout, "next_order_number", lambda db: next(numbers))

        add_to_cart(auth_headers, product.id)
        resp = client.post("/api/orders", json=make_order_payload(), headers=auth_headers)
        assert resp.status_code == 201, resp.text
        assert resp.json()["order_number"] == fresh
        assert db.query(Order).count() == 2

    def test_persistent_collision_is_conflict(self, client, db, product, small_variant, auth_headers, place_order, add_to_cart, make_order_payload, monkeypatch):
        from services import checkout

        taken = place_order(auth_headers, product.id, small_variant.id)["order_number"]
        monkeypatch.setattr(checkout, "next_order_number", lambda db: taken)

        add_to_cart(auth_headers, product.id, small_variant.id, 2)
        resp = client.post("/api/orders", json=make_order_payload(), headers=auth_headers)
        assert resp.status_code == 409
        assert db.query(Order).count() == 1
        assert small_variant.stock_quantity == 9
        assert db.query(Cart).one().item_count == 2


class TestSavedAddressCheckout:
    def test_order_uses_saved_address(self, client, product, auth_headers, add_to_cart, make_order_payload, make_address):
        saved = client.post(
            "/api/addresses", json=make_address(city="Maribor", postal_code="2000"), headers=auth_headers
        ).json()
        add_to_cart(auth_headers, product.id)

        payload = make_order_payload(shipping_address_id=saved["id"])
        del payload["shipping_address"]
        resp = client.post("/api/orders", json=payload, headers=auth_headers)
        assert resp.status_code == 201, resp.text
        assert resp.json()["shipping_address"]["city"] == "Maribor"
        assert resp.json()["shipping_address"]["postal_code"] == "2000"

    def test_foreign_saved_address_is_404(self, client, product, auth_headers, other_headers, add_to_cart, make_order_payload, make_address):
        foreign = client.post("/api/addresses", json=make_address(), headers=other_headers).json()
        add_to_cart(auth_headers, product.id)

        payload = make_order_payload(shipping_address_id=foreign["id"])
        del payload["shipping_address"]
        assert client.post("/api/orders", json=payload, headers=auth_headers).status_code == 404

    def test_some_address_is_required(self, client, product, auth_headers, add_to_cart, make_order_payload):
        add_to_cart(auth_headers, product.id)
        payload = make_order_payload()
        del payload["shipping_address"]
        assert client.post("/api/orders", json=payload, headers=auth_headers).status_code == 422


class TestCancelOrder:
    def test_cancel_allowed(self, client, db, product, small_variant, auth_headers, place_order, sent_emails):
        order = place_order(auth_headers, product.id, small_variant.id, 2)
        assert small_variant.stock_quantity == 8

        resp = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "changed my mind"}, headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "Cancelled"
        assert body["can_cancel"] is False
        assert body["cancellation_reason"] == "changed my mind"
        assert body["cancelled_at"] is not None
        assert len(body["events"]) == 2
        assert body["events"][0]["status"] == "Cancelled"  # newest first
        assert "changed my mind" in body["events"][0]["description"]
        assert small_variant.stock_quantity == 10
        assert any("cancelled" in m["subject"] for m in sent_emails)

    def test_cancel_without_body(self, client, product, auth_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["events"][0]["description"] == "Order cancelled by customer"

    def test_cancel_paid_order(self, client, db, product, auth_headers, place_order):
        order = place_order(auth_headers, product.id)
        _advance(db, order["id"], OrderStatus.PAID)
        resp = client.post(f"/api/orders/{order['id']}/cancel", json={}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "Cancelled"

    def test_cancel_denied_when_shipped(self, client, db, product, auth_headers, place_order):
        order = place_order(auth_headers, product.id)
        _advance(db, order["id"], OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED)
        events_before = _event_count(db, order["id"])

        resp = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "too late"}, headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "conflict"
        assert resp.json()["detail"] == "Order cannot be cancelled. Current status: Shipped"
        assert _order(db, order["id"]).status == "Shipped"
        assert _event_count(db, order["id"]) == events_before

    @pytest.mark.parametrize(
        "path",
        [
            [OrderStatus.PAID, OrderStatus.PROCESSING],
            [OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED],
            [OrderStatus.PAID, OrderStatus.REFUNDED],
            [OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.RETURNED],
        ],
    )
    def test_cancel_denied_for_non_cancellable_statuses(self, client, db, product, auth_headers, place_order, path):
        order = place_order(auth_headers, product.id)
        _advance(db, order["id"], *path)
        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=auth_headers)
        assert resp.status_code == 409

    def test_double_cancel(self, client, db, product, auth_headers, place_order):
        order = place_order(auth_headers, product.id)
        first = client.post(f"/api/orders/{order['id']}/cancel", headers=auth_headers)
        second = client.post(f"/api/orders/{order['id']}/cancel", headers=auth_headers)
        assert first.status_code == 200
        assert second.status_code == 409
        cancelled_events = (
            db.query(OrderEvent)
            .filter(OrderEvent.order_id == uuid.UUID(order["id"]), OrderEvent.status == "Cancelled")
            .count()
        )
        assert cancelled_events == 1

    def test_foreign_order_cannot_be_cancelled(self, client, product, auth_headers, other_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=other_headers)
        assert resp.status_code == 404


class TestReadOrders:
    def test_get_own_order(self, client, product, auth_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.get(f"/api/orders/{order['id']}", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["order_number"] == order["order_number"]

    def test_foreign_and_missing_look_the_same(self, client, product, auth_headers, other_headers, place_order):
        order = place_order(auth_headers, product.id)
        foreign = client.get(f"/api/orders/{order['id']}", headers=other_headers)
        missing = client.get(f"/api/orders/{uuid.uuid4()}", headers=other_headers)
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json()

    def test_by_number(self, client, product, auth_headers, other_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.get(f"/api/orders/by-number/{order['order_number'].lower()}", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == order["id"]
        assert client.get(f"/api/orders/by-number/{order['order_number']}", headers=other_headers).status_code == 404

    def test_statuses(self, client, auth_headers):
        resp = client.get("/api/orders/statuses", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == [
            "Pending", "Paid", "Processing", "Shipped", "Delivered", "Cancelled", "Refunded", "Returned",
        ]


class TestListOrders:
    def test_pagination(self, client, db, product, small_variant, auth_headers, place_order):
        small_variant.stock_quantity = 20
        db.commit()
        for _ in range(11):
            place_order(auth_headers, product.id, small_variant.id)

        first = client.get("/api/orders?page=1&page_size=10", headers=auth_headers).json()
        assert len(first["items"]) == 10
        assert first["total_count"] == 11
        assert first["total_pages"] == 2
        assert first["has_next_page"] is True
        assert first["has_previous_page"] is False

        second = client.get("/api/orders?page=2&page_size=10", headers=auth_headers).json()
        assert len(second["items"]) == 1
        assert second["has_next_page"] is False
        assert second["has_previous_page"] is True

    def test_only_own_orders(self, client, product, heat_pump, auth_headers, other_headers, place_order):
        place_order(auth_headers, product.id)
        place_order(other_headers, heat_pump.id)
        body = client.get("/api/orders", headers=auth_headers).json()
        assert body["total_count"] == 1
        assert body["items"][0]["items"][0]["product_name"] == "Split Air Conditioner"

    def test_status_filter_and_search(self, client, db, product, auth_headers, place_order):
        first = place_order(auth_headers, product.id)
        second = place_order(auth_headers, product.id)
        _advance(db, second["id"], OrderStatus.PAID)

        paid = client.get("/api/orders?status=paid", headers=auth_headers).json()
        assert [o["id"] for o in paid["items"]] == [second["id"]]

        suffix = first["order_number"][-6:]
        found = client.get(f"/api/orders?search={suffix}", headers=auth_headers).json()
        assert [o["id"] for o in found["items"]] == [first["id"]]

    def test_search_wildcards_match_literally(self, client, product, auth_headers, place_order):
        place_order(auth_headers, product.id)
        for term in ("_", "%", "ORD_"):
            body = client.get("/api/orders", params={"search": term}, headers=auth_headers).json()
            assert body["total_count"] == 0, term
        assert client.get("/api/orders", params={"search": "ord-"}, headers=auth_headers).json()["total_count"] == 1

    def test_invalid_status_filter(self, client, auth_headers):
        resp = client.get("/api/orders?status=Lost", headers=auth_headers)
        assert resp.status_code == 400

    def test_date_range_is_inclusive(self, client, db, product, auth_headers, place_order):
        old = place_order(auth_headers, product.id)
        recent = place_order(auth_headers, product.id)
        _order(db, old["id"]).created_at = utcnow() - timedelta(days=10)
        db.commit()

        today = utcnow().date().isoformat()
        body = client.get(f"/api/orders?date_from={today}&date_to={today}", headers=auth_headers).json()
        assert [o["id"] for o in body["items"]] == [recent["id"]]

    def test_sort_by_total(self, client, product, heat_pump, auth_headers, place_order):
        cheap = place_order(auth_headers, product.id)
        pricey = place_order(auth_headers, heat_pump.id)
        asc = client.get("/api/orders?sort_by=total&sort_direction=asc", headers=auth_headers).json()
        assert [o["id"] for o in asc["items"]] == [cheap["id"], pricey["id"]]

    def test_page_size_limit(self, client, auth_headers):
        resp = client.get("/api/orders?page_size=51", headers=auth_headers)
        assert resp.status_code == 422


class TestReorder:
    def test_reorder_copies_items_at_current_price(self, client, db, product, small_variant, auth_headers, place_order):
        order = place_order(auth_headers, product.id, small_variant.id, 2)
        product.base_price = Decimal("950.00")
        db.commit()

        resp = client.post(f"/api/orders/{order['id']}/reorder", headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["items_added"] == 1
        assert body["items_skipped"] == 0
        line = body["cart"]["items"][0]
        assert line["quantity"] == 2
        assert line["effective_price"] == 950.0

    def test_reorder_skips_inactive_and_falls_back_to_default_variant(
        self, client, db, product, large_variant, small_variant, heat_pump, auth_headers, add_to_cart, make_order_payload
    ):
        add_to_cart(auth_headers, product.id, large_variant.id, 1)
        add_to_cart(auth_headers, heat_pump.id, None, 1)
        order = client.post("/api/orders", json=make_order_payload(), headers=auth_headers).json()

        large_variant.is_active = False
        heat_pump.is_active = False
        db.commit()

        body = client.post(f"/api/orders/{order['id']}/reorder", headers=auth_headers).json()
        assert body["items_added"] == 1
        assert body["items_skipped"] == 1
        assert body["skipped_reasons"] == ["Heat Pump is no longer available"]
        assert body["cart"]["items"][0]["variant_id"] == small_variant.id

    def test_reorder_foreign_order_is_404(self, client, product, auth_headers, other_headers, place_order):
        order = place_order(auth_headers, product.id)
        resp = client.post(f"/api/orders/{order['id']}/reorder", headers=other_headers)
        assert resp.status_code == 404


class TestCartClearedOnlyAfterCommit:
    def test_failed_checkout_keeps_cart(self, client, db, product, small_variant, auth_headers, add_to_cart, make_order_payload):
        add_to_cart(auth_headers, product.id, small_variant.id, 2)
        small_variant.stock_quantity = 1
        db.commit()

        client.post("/api/orders", json=make_order_payload(), headers=auth_headers)
        cart = db.query(Cart).one()
        assert cart.item_count == 2
