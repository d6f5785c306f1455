"""Tests for product reviews and the rating aggregate."""

from conftest import ADDRESS, auth_header, fill_cart, make_user
from storefront.db.models import Product, Review
from storefront.services import checkout


def delivered_order(db, user, product, coupon_code=None):
    fill_cart(db, user, product)
    order = checkout.create_order(db, user, ADDRESS, "cod", coupon_code=coupon_code)
    order.status = "delivered"
    db.commit()
    return order


def post_review(client, user, product, rating=5, **extra):
    body = {"productId": product.id, "rating": rating, "comment": "Works well", **extra}
    return client.post("/api/reviews", json=body, headers=auth_header(user))


class TestCreateReview:
    def test_needs_a_delivered_purchase(self, client, db, customer, product):
        assert post_review(client, customer, product).status_code == 403
        fill_cart(db, customer, product)
        checkout.create_order(db, customer, ADDRESS, "cod")
        assert post_review(client, customer, product).status_code == 403

    def test_one_review_per_product(self, client, db, customer, product):
        delivered_order(db, customer, product)
        response = post_review(client, customer, product, images=[" a.jpg ", ""])
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["is_verified"] is True
        assert data["images"] == ["a.jpg"]
        assert data["author_name"] == "Test Buyer"
        again = post_review(client, customer, product, rating=1)
        assert again.status_code == 400
        assert again.json()["message"] == "You have already reviewed this product"

    def test_rating_outside_one_to_five_rejected(self, client, db, customer, product):
        delivered_order(db, customer, product)
        assert post_review(client, customer, product, rating=6).status_code == 400
        assert post_review(client, customer, product, rating=0).status_code == 400

    def test_aggregate_follows_writes(self, client, db, customer, product):
        other = make_user(db, email="other@example.com")
        delivered_order(db, customer, product)
        delivered_order(db, other, product)
        mine = post_review(client, customer, product, rating=5).json()["data"]
        theirs = post_review(client, other, product, rating=2).json()["data"]
        db.expire_all()
        assert (db.get(Product, product.id).rating, db.get(Product, product.id).review_count) == (3.5, 2)

        client.put(f"/api/reviews/{mine['id']}", json={"rating": 3}, headers=auth_header(customer))
        db.expire_all()
        assert db.get(Product, product.id).rating == 2.5

        client.delete(f"/api/reviews/{theirs['id']}", headers=auth_header(other))
        db.expire_all()
        assert (db.get(Product, product.id).rating, db.get(Product, product.id).review_count) == (3.0, 1)

    def test_only_author_edits(self, client, db, customer, product):
        other = make_user(db, email="other@example.com")
        delivered_order(db, customer, product)
        review = post_review(client, customer, product).json()["data"]
        response = client.put(f"/api/reviews/{review['id']}", json={"rating": 1}, headers=auth_header(other))
        assert response.status_code == 404
        assert client.delete(f"/api/reviews/{review['id']}", headers=auth_header(other)).status_code == 404


class TestListing:
    def test_product_reviews_with_stats(self, client, db, customer, product):
        other = make_user(db, email="other@example.com")
        delivered_order(db, customer, product)
        delivered_order(db, other, product)
        post_review(client, customer, product, rating=5)
        post_review(client, other, product, rating=2)

        data = client.get(f"/api/reviews/product/{product.id}").json()["data"]
        assert data["averageRating"] == 3.5
        assert data["ratingCounts"] == {"1": 0, "2": 1, "3": 0, "4": 0, "5": 1}
        assert data["pagination"]["total"] == 2

        filtered = client.get(f"/api/reviews/product/{product.id}", params={"rating": 5}).json()["data"]
        assert [r["rating"] for r in filtered["reviews"]] == [5]
        assert filtered["ratingCounts"]["2"] == 1

        lowest = client.get(f"/api/reviews/product/{product.id}", params={"sort": "lowest_rating"}).json()["data"]
        assert [r["rating"] for r in lowest["reviews"]] == [2, 5]

    def test_unknown_product(self, client):
        assert client.get("/api/reviews/product/999").status_code == 404

    def test_purchased_products_show_paid_price(self, client, db, customer, product, sale10):
        delivered_order(db, customer, product, coupon_code="SALE10")
        headers = auth_header(customer)
        rows = client.get("/api/reviews/purchased-products", headers=headers).json()["data"]
        assert rows == [{"productId": product.id, "name": "USB-C Charger", "image": None, "price": 1_000_000,
                         "paidPrice": 950_000, "hasReviewed": False}]
        post_review(client, customer, product)
        rows = client.get("/api/reviews/purchased-products", headers=headers).json()["data"]
        assert rows[0]["hasReviewed"] is True
        mine = client.get("/api/reviews/user", headers=headers).json()["data"]
        assert mine["pagination"]["total"] == 1


class TestHelpfulVotes:
    def test_vote_moves_between_counters(self, client, db, customer, product):
        voter = make_user(db, email="voter@example.com")
        delivered_order(db, customer, product)
        review = post_review(client, customer, product).json()["data"]
        url = f"/api/reviews/{review['id']}/helpful"

        own = client.put(url, json={"helpful": True}, headers=auth_header(customer))
        assert own.status_code == 400

        data = client.put(url, json={"helpful": True}, headers=auth_header(voter)).json()["data"]
        assert (data["helpful"], data["notHelpful"]) == (1, 0)
        data = client.put(url, json={"helpful": True}, headers=auth_header(voter)).json()["data"]
        assert (data["helpful"], data["notHelpful"]) == (1, 0)
        data = client.put(url, json={"helpful": False}, headers=auth_header(voter)).json()["data"]
        assert (data["helpful"], data["notHelpful"]) == (0, 1)


class TestModeration:
    def test_admin_rejects_review(self, client, db, customer, admin, product):
        delivered_order(db, customer, product)
        review = post_review(client, customer, product).json()["data"]
        url = f"/api/admin/reviews/{review['id']}/verify"
        assert client.patch(url, json={"isVerified": False}, headers=auth_header(customer)).status_code == 403

        response = client.patch(url, json={"isVerified": False}, headers=auth_header(admin))
        assert response.json()["data"] == {"id": review["id"], "isVerified": False}
        db.expire_all()
        assert db.get(Review, review["id"]).is_verified is False

        pending = client.get("/api/admin/reviews", params={"verified": "false"}, headers=auth_header(admin))
        assert [r["id"] for r in pending.json()["data"]["reviews"]] == [review["id"]]
