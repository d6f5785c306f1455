"""Tests for payment sessions, webhooks and refunds."""

import asyncio
import json
import time

import pytest

from conftest import ADDRESS, auth_header, fill_cart
from storefront.core.errors import ValidationFailed
from storefront.db.models import Order, User
from storefront.payments.payos_client import sign_data
from storefront.payments.stripe_client import compute_signature, parse_signature_header
from storefront.services import payments


def place_order(client, db, user, product, method="stripe"):
    fill_cart(db, user, product)
    response = client.post("/api/orders", json={"shippingAddress": ADDRESS, "paymentMethod": method},
                           headers=auth_header(user))
    assert response.status_code == 201
    return response.json()["data"]


def stripe_event(order_id, event_type="payment_intent.succeeded", event_id="evt_1", intent_id="pi_1"):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": intent_id, "metadata": {"orderId": str(order_id)}}},
    }


def post_stripe(client, event, secret="whsec_test", timestamp=None):
    body = json.dumps(event).encode()
    ts = str(timestamp or int(time.time()))
    header = f"t={ts},v1={compute_signature(body, ts, secret)}"
    return client.post("/api/payments/webhook", content=body,
                       headers={"Stripe-Signature": header, "Content-Type": "application/json"})


def payos_body(order_code, code="00", reference="FT123"):
    data = {"orderCode": order_code, "amount": 1_000_000, "description": "ORD", "reference": reference,
            "code": code, "desc": "success" if code == "00" else "failed"}
    return {"code": code, "desc": data["desc"], "success": code == "00", "data": data,
            "signature": sign_data(data, "checksum_test")}


class TestSignatures:
    def test_parse_header(self):
        assert parse_signature_header("t=1,v1=abc,v1=def,v0=x") == ("1", ["abc", "def"])

    def test_stripe_rejects_tampered_payload(self, stripe):
        body = b'{"id": "evt"}'
        header = f"t={int(time.time())},v1={compute_signature(body, str(int(time.time())), 'whsec_test')}"
        with pytest.raises(ValidationFailed):
            stripe.construct_event(b'{"id": "evt2"}', header)

    def test_stripe_rejects_stale_timestamp(self, stripe):
        body = b'{"id": "evt"}'
        ts = str(int(time.time()) - 3600)
        with pytest.raises(ValidationFailed, match="tolerance"):
            stripe.construct_event(body, f"t={ts},v1={compute_signature(body, ts, 'whsec_test')}")

    def test_payos_signature_is_order_independent(self):
        assert sign_data({"b": 1, "a": "x"}, "k") == sign_data({"a": "x", "b": 1}, "k")

    def test_payos_rejects_bad_signature(self, payos):
        body = payos_body(1)
        body["signature"] = "0" * 64
        with pytest.raises(ValidationFailed):
            payos.verify_webhook(body)


class TestStripeFlow:
    def test_intent_uses_order_amount(self, client, db, customer, product, stripe):
        order = place_order(client, db, customer, product)
        response = client.post("/api/payments/create-payment-intent", json={"orderId": order["id"]},
                               headers=auth_header(customer))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["amount"] == order["total_amount"]
        assert stripe.intents[data["paymentIntentId"]]["amount"] == order["total_amount"]
        db.expire_all()
        assert db.get(Order, order["id"]).payment_transaction_id == data["paymentIntentId"]

    def test_duplicate_webhook_accrues_once(self, client, db, customer, product, events):
        order = place_order(client, db, customer, product)
        event = stripe_event(order["id"])
        assert post_stripe(client, event).json() == {"status": "success", "data": {"received": True}}
        assert post_stripe(client, event).json()["data"]["duplicate"] is True
        # a replay under a new event id still cannot settle twice
        assert post_stripe(client, stripe_event(order["id"], event_id="evt_2")).status_code == 200
        db.expire_all()
        paid = db.get(Order, order["id"])
        assert paid.payment_status == "paid"
        assert paid.status == "processing"
        assert paid.loyalty_applied is True
        user = db.get(User, customer.id)
        assert user.total_spent == order["total_amount"]
        assert user.loyalty_points == order["total_amount"] // 1000
        assert sum(1 for e in events if e["type"] == "payment.succeeded") == 1

    def test_failed_payment_keeps_order_status(self, client, db, customer, product):
        order = place_order(client, db, customer, product)
        post_stripe(client, stripe_event(order["id"], "payment_intent.payment_failed", "evt_f"))
        db.expire_all()
        failed = db.get(Order, order["id"])
        assert failed.payment_status == "failed"
        assert failed.status == "pending"

    def test_bad_signature_is_rejected(self, client, db, customer, product):
        order = place_order(client, db, customer, product)
        response = post_stripe(client, stripe_event(order["id"]), secret="whsec_wrong")
        assert response.status_code == 400
        db.expire_all()
        assert db.get(Order, order["id"]).payment_status == "pending"

    def test_confirm_payment(self, client, db, customer, product, stripe):
        order = place_order(client, db, customer, product)
        intent = client.post("/api/payments/create-payment-intent", json={"orderId": order["id"]},
                             headers=auth_header(customer)).json()["data"]
        stripe.intents[intent["paymentIntentId"]]["status"] = "succeeded"
        response = client.post("/api/payments/confirm-payment",
                               json={"paymentIntentId": intent["paymentIntentId"]}, headers=auth_header(customer))
        assert response.status_code == 200
        assert response.json()["data"]["paymentStatus"] == "paid"

    def test_paid_order_cannot_be_paid_again(self, client, db, customer, product):
        order = place_order(client, db, customer, product)
        post_stripe(client, stripe_event(order["id"]))
        response = client.post("/api/payments/create-payment-intent", json={"orderId": order["id"]},
                               headers=auth_header(customer))
        assert response.status_code == 400
        assert response.json()["message"] == "Order has already been paid"


class TestPayOSFlow:
    def test_create_link(self, client, db, customer, product, payos):
        order = place_order(client, db, customer, product, method="payos")
        response = client.post("/api/payments/payos/create-link", json={"orderId": order["id"]},
                               headers=auth_header(customer))
        assert response.status_code == 200
        assert response.json()["data"]["orderCode"] == order["id"]
        assert payos.links[0]["amount"] == order["total_amount"]

    def test_webhook_marks_paid_once(self, client, db, customer, product):
        order = place_order(client, db, customer, product, method="payos")
        body = payos_body(order["id"])
        assert client.post("/api/payments/payos/webhook", json=body).json()["data"] == {"received": True}
        assert client.post("/api/payments/payos/webhook", json=body).json()["data"]["duplicate"] is True
        db.expire_all()
        assert db.get(Order, order["id"]).payment_status == "paid"
        assert db.get(User, customer.id).total_spent == order["total_amount"]

    def test_webhook_failure_code(self, client, db, customer, product):
        order = place_order(client, db, customer, product, method="payos")
        client.post("/api/payments/payos/webhook", json=payos_body(order["id"], code="01"))
        db.expire_all()
        assert db.get(Order, order["id"]).payment_status == "failed"


class TestRefund:
    def test_refund_paid_stripe_order(self, client, db, customer, admin, product, stripe):
        order = place_order(client, db, customer, product)
        client.post("/api/payments/create-payment-intent", json={"orderId": order["id"]},
                    headers=auth_header(customer))
        post_stripe(client, stripe_event(order["id"], intent_id="pi_1"))
        response = client.post("/api/payments/refund", json={"orderId": order["id"], "reason": "requested_by_customer"},
                               headers=auth_header(admin))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["payment_status"] == "refunded"
        assert data["status"] == "refunded"
        assert stripe.refunds[0]["payment_intent"] == "pi_1"

    def test_refund_requires_paid(self, client, db, customer, admin, product):
        order = place_order(client, db, customer, product)
        response = client.post("/api/payments/refund", json={"orderId": order["id"]}, headers=auth_header(admin))
        assert response.status_code == 400

    def test_refund_requires_manager(self, client, db, customer, product):
        order = place_order(client, db, customer, product)
        response = client.post("/api/payments/refund", json={"orderId": order["id"]}, headers=auth_header(customer))
        assert response.status_code == 403


def _loop_state(seen):
    def handler(*args):
        try:
            asyncio.get_running_loop()
            seen.append("event-loop")
        except RuntimeError:
            seen.append("worker")
        return {"received": True}
    return handler


class TestWebhookThreading:
    def test_stripe_webhook_work_runs_in_worker_thread(self, client, monkeypatch):
        seen = []
        monkeypatch.setattr(payments, "handle_stripe_webhook", _loop_state(seen))
        response = post_stripe(client, stripe_event(1))
        assert response.json() == {"status": "success", "data": {"received": True}}
        assert seen == ["worker"]

    def test_payos_webhook_work_runs_in_worker_thread(self, client, monkeypatch):
        seen = []
        monkeypatch.setattr(payments, "handle_payos_webhook", _loop_state(seen))
        response = client.post("/api/payments/payos/webhook", json=payos_body(1))
        assert response.json()["data"] == {"received": True}
        assert seen == ["worker"]
