"""Tests for the cart aggregator and its endpoints."""

from conftest import auth_header
from storefront.db.models import Cart, CartItem


def assert_line_totals(db):
    db.expire_all()
    for item in db.query(CartItem).all():
        assert item.total_price == item.price * item.quantity


class TestUserCart:
    def test_add_merges_same_line(self, client, db, customer, product):
        headers = auth_header(customer)
        client.post("/api/cart/items", json={"productId": product.id, "quantity": 2}, headers=headers)
        response = client.post("/api/cart/items", json={"productId": product.id, "quantity": 1}, headers=headers)
        assert response.status_code == 201
        data = response.json()["data"]
        assert len(data["items"]) == 1
        assert data["items"][0]["quantity"] == 3
        assert data["subtotal"] == 3_000_000
        assert_line_totals(db)

    def test_update_and_remove(self, client, db, customer, product, phone):
        headers = auth_header(customer)
        variant = phone.variants[0]
        client.post("/api/cart/items", json={"productId": product.id}, headers=headers)
        data = client.post("/api/cart/items", json={"productId": phone.id, "variantId": variant.id},
                           headers=headers).json()["data"]
        line = next(i for i in data["items"] if i["variant_id"] == variant.id)
        data = client.patch(f"/api/cart/items/{line['id']}", json={"quantity": 4}, headers=headers).json()["data"]
        assert next(i for i in data["items"] if i["id"] == line["id"])["total_price"] == 80_000_000
        assert_line_totals(db)
        data = client.patch(f"/api/cart/items/{line['id']}", json={"quantity": 0}, headers=headers).json()["data"]
        assert [i["product_id"] for i in data["items"]] == [product.id]
        assert client.get("/api/cart/count", headers=headers).json()["data"]["count"] == 1

    def test_quantity_over_stock(self, client, customer, product):
        response = client.post("/api/cart/items", json={"productId": product.id, "quantity": 11},
                               headers=auth_header(customer))
        assert response.status_code == 400

    def test_variant_of_another_product(self, client, customer, product, phone):
        response = client.post("/api/cart/items", json={"productId": product.id, "variantId": phone.variants[0].id},
                               headers=auth_header(customer))
        assert response.status_code == 404

    def test_clear(self, client, db, customer, product):
        headers = auth_header(customer)
        client.post("/api/cart/items", json={"productId": product.id}, headers=headers)
        data = client.delete("/api/cart/clear", headers=headers).json()["data"]
        assert data["items"] == [] and data["subtotal"] == 0


class TestGuestCart:
    def test_session_cookie_and_merge(self, client, db, customer, product):
        response = client.post("/api/cart/items", json={"productId": product.id, "quantity": 2})
        assert response.status_code == 201
        assert "sessionId" in response.cookies
        assert client.get("/api/cart").json()["data"]["totalItems"] == 2

        data = client.post("/api/cart/merge", headers=auth_header(customer)).json()["data"]
        assert data["totalItems"] == 2
        db.expire_all()
        assert db.query(Cart).filter(Cart.status == "merged").count() == 1

    def test_merge_caps_at_stock(self, client, db, customer, product):
        headers = auth_header(customer)
        client.post("/api/cart/items", json={"productId": product.id, "quantity": 8}, headers=headers)
        client.post("/api/cart/items", json={"productId": product.id, "quantity": 5})
        data = client.post("/api/cart/merge", headers=headers).json()["data"]
        assert data["items"][0]["quantity"] == 10
        assert_line_totals(db)

    def test_merge_drops_sold_out_shared_line(self, client, db, customer, product):
        headers = auth_header(customer)
        client.post("/api/cart/items", json={"productId": product.id}, headers=headers)
        client.post("/api/cart/items", json={"productId": product.id})
        product.stock_quantity = 0
        db.commit()
        response = client.post("/api/cart/merge", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["items"] == []
        db.expire_all()
        assert db.query(CartItem).count() == 0

    def test_anonymous_without_session_sees_empty_cart(self, client):
        data = client.get("/api/cart").json()["data"]
        assert data["items"] == [] and data["totalItems"] == 0
