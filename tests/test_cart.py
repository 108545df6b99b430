from datetime import timedelta

from core.db import utcnow
from models.cart import Cart

GUEST = {"X-Session-Id": "guest-session-1"}


class TestGuestCart:
    def test_empty_cart_without_any_identity(self, client):
        resp = client.get("/api/cart")
        assert resp.status_code == 200
        body = resp.json()
        assert body["items"] == []
        assert body["total"] == 0
        assert body["currency"] == "EUR"

    def test_add_requires_session_for_guests(self, client, product):
        resp = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1})
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "X-Session-Id"

    def test_add_uses_default_variant_and_totals(self, client, product, small_variant):
        resp = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=GUEST)
        assert resp.status_code == 200
        body = resp.json()
        assert body["session_id"] == "guest-session-1"
        assert len(body["items"]) == 1
        line = body["items"][0]
        assert line["variant_id"] == small_variant.id
        assert line["effective_price"] == 1000.0
        assert line["line_total"] == 2000.0
        assert line["max_quantity"] == 10
        assert line["is_available"] is True
        assert body["subtotal"] == 2000.0
        assert body["shipping"] == 0
        assert body["tax"] == 400.0
        assert body["total"] == 2400.0
        assert body["item_count"] == 2

    def test_add_merges_same_line_and_clamps_to_stock(self, client, product, large_variant):
        client.post(
            "/api/cart/items",
            json={"product_id": product.id, "variant_id": large_variant.id, "quantity": 1},
            headers=GUEST,
        )
        resp = client.post(
            "/api/cart/items",
            json={"product_id": product.id, "variant_id": large_variant.id, "quantity": 5},
            headers=GUEST,
        )
        assert resp.status_code == 200
        items = resp.json()["items"]
        assert len(items) == 1
        assert items[0]["quantity"] == 2  # only 2 in stock

    def test_add_unknown_product_is_404(self, client):
        resp = client.post("/api/cart/items", json={"product_id": 999, "quantity": 1}, headers=GUEST)
        assert resp.status_code == 404

    def test_add_out_of_stock_variant_rejected(self, client, db, product, large_variant):
        large_variant.stock_quantity = 0
        db.commit()
        resp = client.post(
            "/api/cart/items",
            json={"product_id": product.id, "variant_id": large_variant.id, "quantity": 1},
            headers=GUEST,
        )
        assert resp.status_code == 400

    def test_add_zero_quantity_is_request_validation_error(self, client, product):
        resp = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 0}, headers=GUEST)
        assert resp.status_code == 422

    def test_update_clamps_and_zero_removes(self, client, product):
        body = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=GUEST).json()
        item_id = body["items"][0]["id"]

        resp = client.put(f"/api/cart/items/{item_id}", json={"quantity": 50}, headers=GUEST)
        assert resp.status_code == 200
        assert resp.json()["items"][0]["quantity"] == 10

        resp = client.put(f"/api/cart/items/{item_id}", json={"quantity": 0}, headers=GUEST)
        assert resp.status_code == 200
        assert resp.json()["items"] == []

    def test_remove_and_clear(self, client, product, heat_pump):
        body = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=GUEST).json()
        client.post("/api/cart/items", json={"product_id": heat_pump.id, "quantity": 1}, headers=GUEST)
        item_id = body["items"][0]["id"]

        resp = client.delete(f"/api/cart/items/{item_id}", headers=GUEST)
        assert resp.status_code == 200
        assert [i["product_id"] for i in resp.json()["items"]] == [heat_pump.id]

        resp = client.delete("/api/cart", headers=GUEST)
        assert resp.status_code == 200
        assert resp.json()["items"] == []

    def test_foreign_item_is_404(self, client, product):
        body = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=GUEST).json()
        item_id = body["items"][0]["id"]
        resp = client.delete(f"/api/cart/items/{item_id}", headers={"X-Session-Id": "someone-else"})
        assert resp.status_code == 404

    def test_expired_guest_cart_is_empty(self, client, db, product):
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=GUEST)
        cart = db.query(Cart).filter(Cart.session_id == GUEST["X-Session-Id"]).one()
        cart.expires_at = utcnow() - timedelta(days=1)
        db.commit()

        resp = client.get("/api/cart", headers=GUEST)
        assert resp.json()["items"] == []

        resp = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 3}, headers=GUEST)
        assert resp.json()["items"][0]["quantity"] == 3
        assert resp.json()["item_count"] == 3

    def test_mutation_bumps_cart_version(self, client, db, product):
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=GUEST)
        cart = db.query(Cart).filter(Cart.session_id == GUEST["X-Session-Id"]).one()
        version = cart.version_id

        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=GUEST)
        assert cart.version_id > version


class TestUserCart:
    def test_cart_follows_the_user(self, client, product, auth_headers):
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=auth_headers)
        resp = client.get("/api/cart", headers=auth_headers)
        body = resp.json()
        assert body["user_id"] is not None
        assert body["session_id"] is None
        assert body["item_count"] == 1

    def test_merge_guest_cart(self, client, db, product, large_variant, heat_pump, auth_headers):
        client.post(
            "/api/cart/items",
            json={"product_id": product.id, "variant_id": large_variant.id, "quantity": 1},
            headers=auth_headers,
        )
        client.post(
            "/api/cart/items",
            json={"product_id": product.id, "variant_id": large_variant.id, "quantity": 2},
            headers=GUEST,
        )
        client.post("/api/cart/items", json={"product_id": heat_pump.id, "quantity": 1}, headers=GUEST)

        resp = client.post("/api/cart/merge", headers={**auth_headers, **GUEST})
        assert resp.status_code == 200
        quantities = {i["product_id"]: i["quantity"] for i in resp.json()["items"]}
        assert quantities == {product.id: 2, heat_pump.id: 1}  # 1 + 2 clamped to stock of 2
        assert db.query(Cart).filter(Cart.session_id == GUEST["X-Session-Id"]).one_or_none() is None

    def test_merge_requires_authentication(self, client):
        resp = client.post("/api/cart/merge", headers=GUEST)
        assert resp.status_code == 401

    def test_invalid_token_is_rejected(self, client):
        resp = client.get("/api/cart", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
