"""
Payment gateway adapter. The core only sees the PaymentGateway protocol and
GatewayResult values; RazorpayGateway talks to a Razorpay-compatible REST API.

Amounts cross this boundary as integer minor units, which is also what the
gateway expects on the wire.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from foodorder.core.config import (
    GATEWAY_TIMEOUT_SECONDS,
    RAZORPAY_BASE_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET,
)
from foodorder.services import pricing

log = logging.getLogger(__name__)


@dataclass
class GatewayResult:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class PaymentGateway(Protocol):
    async def create_payment_intent(
        self, amount: int, currency: str, order_ref: str, customer_info: Dict[str, Any]
    ) -> GatewayResult: ...

    def verify_payment_signature(self, provider_order_id: str, payment_id: str, signature: str) -> bool: ...

    async def initiate_refund(self, payment_id: str, amount: int, reason: str) -> GatewayResult: ...

    def process_webhook(self, raw_payload: bytes, signature: Optional[str]) -> GatewayResult: ...

    def calculate_taxes(self, subtotal: int) -> int: ...

    def calculate_platform_fee(self, subtotal: int) -> int: ...


def _sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(
        self,
        key_id: str = RAZORPAY_KEY_ID,
        key_secret: str = RAZORPAY_KEY_SECRET,
        webhook_secret: str = RAZORPAY_WEBHOOK_SECRET,
        base_url: str = RAZORPAY_BASE_URL,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def create_payment_intent(
        self, amount: int, currency: str, order_ref: str, customer_info: Dict[str, Any]
    ) -> GatewayResult:
        body = {
            "amount": amount,
            "currency": currency,
            "receipt": str(order_ref)[:40],
            "notes": {
                "order_ref": str(order_ref),
                "customer_name": customer_info.get("name") or "",
                "customer_email": customer_info.get("email") or "",
                "customer_phone": customer_info.get("phone") or "",
            },
        }
        try:
            async with self._client() as client:
                response = await client.post("/orders", json=body)
                response.raise_for_status()
                provider_order = response.json()
        except httpx.HTTPError as e:
            # Timeouts land here too; the caller treats them as a hard failure
            log.error(f"Payment intent creation failed for {order_ref}: {e!r}")
            return GatewayResult(success=False, error=str(e) or e.__class__.__name__)

        intent = {
            "id": provider_order["id"],
            "provider_order_id": provider_order["id"],
            "amount": provider_order.get("amount", amount),
            "currency": provider_order.get("currency", currency),
            "receipt": provider_order.get("receipt"),
            "status": provider_order.get("status"),
            "key_id": self.key_id,
        }
        return GatewayResult(success=True, data={"payment_intent": intent})

    def verify_payment_signature(self, provider_order_id: str, payment_id: str, signature: str) -> bool:
        if not (provider_order_id and payment_id and signature):
            return False
        expected = _sign(self.key_secret, f"{provider_order_id}|{payment_id}".encode())
        return hmac.compare_digest(expected, signature)

    async def initiate_refund(self, payment_id: str, amount: int, reason: str) -> GatewayResult:
        body = {"amount": amount, "notes": {"reason": reason}}
        try:
            async with self._client() as client:
                response = await client.post(f"/payments/{payment_id}/refund", json=body)
                response.raise_for_status()
                refund = response.json()
        except httpx.HTTPError as e:
            log.error(f"Refund for payment {payment_id} failed: {e!r}")
            return GatewayResult(success=False, error=str(e) or e.__class__.__name__)
        return GatewayResult(success=True, data={"refund": refund})

    def process_webhook(self, raw_payload: bytes, signature: Optional[str]) -> GatewayResult:
        """Checks the body signature before anything in it is trusted."""
        if not signature:
            return GatewayResult(success=False, error="Missing webhook signature")
        expected = _sign(self.webhook_secret, raw_payload)
        if not hmac.compare_digest(expected, signature):
            return GatewayResult(success=False, error="Invalid webhook signature")
        try:
            envelope = json.loads(raw_payload)
        except ValueError:
            return GatewayResult(success=False, error="Malformed webhook payload")
        if not isinstance(envelope, dict):
            return GatewayResult(success=False, error="Malformed webhook payload")
        return GatewayResult(success=True, data=envelope)

    def calculate_taxes(self, subtotal: int) -> int:
        return pricing.calculate_taxes(subtotal)

    def calculate_platform_fee(self, subtotal: int) -> int:
        return pricing.calculate_platform_fee(subtotal)
