"""Stripe REST API adapter."""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass

import httpx

from nebenkosten_review.domain.errors import PaymentGatewayError
from nebenkosten_review.services.payments import (
    CheckoutSession,
    PaymentGateway,
    PaymentState,
    PaymentStatus,
)


class WebhookSignatureError(ValueError):
    """Webhook payload is not signed with the configured secret."""


@dataclass
class HttpxStripeClient(PaymentGateway):
    """Stripe client implemented with httpx."""

    secret_key: str
    http_client: httpx.AsyncClient
    base_url: str = "https://api.stripe.com/v1"

    @classmethod
    def create(cls, secret_key: str) -> "HttpxStripeClient":
        """Create a Stripe client with a managed httpx session."""
        return cls(secret_key=secret_key, http_client=httpx.AsyncClient())

    async def create_checkout(  # noqa: PLR0913
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """Create a hosted Checkout Session for a single line item."""
        form: dict[str, str] = {
            "mode": "payment",
            "payment_method_types[0]": "card",
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": currency,
            "line_items[0][price_data][unit_amount]": str(amount_cents),
            "line_items[0][price_data][product_data][name]": product_name,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            form["customer_email"] = customer_email
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value
        payload = await self._request("POST", "/checkout/sessions", data=form)
        return CheckoutSession(id=str(payload["id"]), url=str(payload["url"]))

    async def get_payment_status(self, session_id: str) -> PaymentStatus:
        """Retrieve a Checkout Session and map its payment status."""
        payload = await self._request("GET", f"/checkout/sessions/{session_id}")
        details = payload.get("customer_details") or {}
        return PaymentStatus(
            state=(
                PaymentState.PAID
                if payload.get("payment_status") == "paid"
                else PaymentState.UNPAID
            ),
            customer_email=payload.get("customer_email") or details.get("email"),
            amount_total=payload.get("amount_total"),
            metadata={
                str(key): str(value)
                for key, value in (payload.get("metadata") or {}).items()
            },
        )

    async def issue_refund(self, session_id: str) -> bool:
        """Refund the payment intent behind a paid Checkout Session."""
        session = await self._request("GET", f"/checkout/sessions/{session_id}")
        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        if not payment_intent or session.get("payment_status") != "paid":
            return False
        refund = await self._request(
            "POST",
            "/refunds",
            data={
                "payment_intent": str(payment_intent),
                "reason": "requested_by_customer",
            },
            idempotency_key=f"refund-{session_id}",
        )
        return refund.get("status") in {"succeeded", "pending"}

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        data: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> dict:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        response = await self.http_client.request(
            method,
            f"{self.base_url}{path}",
            data=data,
            headers=headers,
            timeout=15,
        )
        if response.is_error:
            raise PaymentGatewayError(
                f"Stripe {method} {path} failed with status {response.status_code}"
            )
        return response.json()


def verify_webhook_signature(
    payload: bytes,
    signature_header: str,
    secret: str,
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> dict:
    """Verify a Stripe-Signature header and return the decoded event."""
    timestamp: str | None = None
    signatures: list[str] = []
    for chunk in signature_header.split(","):
        key, _, value = chunk.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not timestamp.isdigit() or not signatures:
        raise WebhookSignatureError("Malformed Stripe-Signature header")

    current = time.time() if now is None else now
    if abs(current - int(timestamp)) > tolerance_seconds:
        raise WebhookSignatureError("Webhook timestamp outside tolerance")

    signed = timestamp.encode() + b"." + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Webhook signature mismatch")
    return json.loads(payload)
