"""PayOS payment links.

Both request and webhook signatures are HMAC-SHA256 over the data fields
sorted by key and joined as ``key=value&...``.
"""
import hashlib
import hmac
import json
from dataclasses import dataclass

import httpx
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import ProviderError, ValidationFailed

SUCCESS_CODE = "00"


def _field(value) -> str:
    if value is None or value == "null":
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def sign_data(data: dict, key: str) -> str:
    message = "&".join(f"{k}={_field(data[k])}" for k in sorted(data))
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


@dataclass
class WebhookResult:
    order_code: int
    status: str  # paid | failed
    amount: int
    reference: str | None
    event_id: str


class PayOSClient:
    def __init__(self, client_id: str | None = None, api_key: str | None = None,
                 checksum_key: str | None = None, api_base: str | None = None, timeout: float = 10.0):
        self.client_id = client_id if client_id is not None else settings.PAYOS_CLIENT_ID
        self.api_key = api_key if api_key is not None else settings.PAYOS_API_KEY
        self.checksum_key = checksum_key if checksum_key is not None else settings.PAYOS_CHECKSUM_KEY
        self.api_base = (api_base or settings.PAYOS_API_BASE).rstrip("/")
        self.timeout = timeout

    def create_payment_link(self, order_code: int, amount: int, description: str, items: list[dict],
                            return_url: str | None = None, cancel_url: str | None = None) -> dict:
        body = {
            "orderCode": order_code,
            "amount": amount,
            "description": description[:25],
            "returnUrl": return_url or settings.PAYOS_RETURN_URL,
            "cancelUrl": cancel_url or settings.PAYOS_CANCEL_URL,
        }
        body["signature"] = sign_data(body, self.checksum_key)
        body["items"] = items
        try:
            with httpx.Client(base_url=self.api_base, timeout=self.timeout) as client:
                resp = client.post("/v2/payment-requests", json=body,
                                   headers={"x-client-id": self.client_id, "x-api-key": self.api_key})
        except httpx.RequestError as e:
            logger.error(f"payos create link for {order_code} failed: {e}")
            raise ProviderError("Payment provider unavailable")
        payload = resp.json() if resp.content else {}
        if resp.status_code >= 400 or payload.get("code") != SUCCESS_CODE:
            logger.warning(f"payos create link for {order_code} rejected: {payload.get('desc')}")
            raise ProviderError(payload.get("desc") or "Payment provider rejected the request")
        return payload.get("data") or {}

    def verify_webhook(self, body: dict) -> WebhookResult:
        data = body.get("data")
        signature = body.get("signature")
        if not isinstance(data, dict) or not signature:
            raise ValidationFailed("Invalid webhook payload")
        if not hmac.compare_digest(sign_data(data, self.checksum_key), str(signature)):
            raise ValidationFailed("Invalid webhook signature")
        try:
            order_code = int(data.get("orderCode"))
        except (TypeError, ValueError):
            raise ValidationFailed("Invalid webhook payload")
        paid = body.get("code") == SUCCESS_CODE and data.get("code", SUCCESS_CODE) == SUCCESS_CODE
        reference = data.get("reference") or data.get("paymentLinkId")
        return WebhookResult(
            order_code=order_code,
            status="paid" if paid else "failed",
            amount=int(data.get("amount") or 0),
            reference=reference,
            event_id=f"{order_code}:{reference or ''}:{body.get('code')}",
        )
