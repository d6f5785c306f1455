"""Minimal Stripe REST client (payment intents, refunds, webhook signatures)."""
import hashlib
import hmac
import json
import time

import httpx
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import ProviderError, ValidationFailed

ZERO_DECIMAL = {"vnd", "jpy", "krw"}


def to_minor_units(amount: int, currency: str) -> int:
    return int(amount) if currency.lower() in ZERO_DECIMAL else int(amount) * 100


def compute_signature(payload: bytes, timestamp: str, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def parse_signature_header(header: str) -> tuple[str | None, list[str]]:
    timestamp, signatures = None, []
    for part in (header or "").split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


class StripeClient:
    def __init__(self, secret_key: str | None = None, webhook_secret: str | None = None,
                 api_base: str | None = None, timeout: float = 10.0):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, data: dict | None = None) -> dict:
        try:
            with httpx.Client(base_url=self.api_base, timeout=self.timeout,
                              auth=(self.secret_key, "")) as client:
                resp = client.request(method, path, data=data)
        except httpx.RequestError as e:
            logger.error(f"stripe {method} {path} failed: {e}")
            raise ProviderError("Payment provider unavailable")
        body = resp.json() if resp.content else {}
        if resp.status_code >= 400:
            message = (body.get("error") or {}).get("message") or "Payment provider rejected the request"
            logger.warning(f"stripe {method} {path} -> {resp.status_code}: {message}")
            raise ProviderError(message)
        return body

    def create_payment_intent(self, amount: int, currency: str, metadata: dict) -> dict:
        data = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        for k, v in metadata.items():
            data[f"metadata[{k}]"] = str(v)
        return self._request("POST", "/v1/payment_intents", data)

    def retrieve_payment_intent(self, intent_id: str) -> dict:
        return self._request("GET", f"/v1/payment_intents/{intent_id}")

    def create_refund(self, payment_intent: str, amount: int | None = None, currency: str = "vnd",
                      reason: str | None = None) -> dict:
        data = {"payment_intent": payment_intent}
        if amount:
            data["amount"] = to_minor_units(amount, currency)
        if reason:
            data["reason"] = reason
        return self._request("POST", "/v1/refunds", data)

    def construct_event(self, payload: bytes, sig_header: str, tolerance: int | None = None,
                        now: float | None = None) -> dict:
        """Verify ``Stripe-Signature`` and return the decoded event."""
        tolerance = settings.STRIPE_WEBHOOK_TOLERANCE if tolerance is None else tolerance
        timestamp, signatures = parse_signature_header(sig_header)
        if not timestamp or not signatures:
            raise ValidationFailed("Invalid webhook signature")
        expected = compute_signature(payload, timestamp, self.webhook_secret)
        if not any(hmac.compare_digest(expected, s) for s in signatures):
            raise ValidationFailed("Invalid webhook signature")
        try:
            age = (now or time.time()) - int(timestamp)
        except ValueError:
            raise ValidationFailed("Invalid webhook signature")
        if tolerance and age > tolerance:
            raise ValidationFailed("Webhook timestamp outside the tolerance zone")
        try:
            return json.loads(payload)
        except ValueError:
            raise ValidationFailed("Invalid webhook payload")
