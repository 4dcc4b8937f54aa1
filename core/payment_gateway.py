"""
Payment gateway adapter.

StripeGateway wraps an explicitly constructed StripeClient (own key, own HTTP
timeout, own retry budget) instead of the module-level ``stripe.api_key``.
Webhook authenticity uses Stripe's signature scheme over the raw body and runs
before the body is parsed.
"""

import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

import stripe
from pydantic import BaseModel

from core.config import cfg
from core.errors import InvalidSignature, UpstreamFailure
from core.log import get_logger

logger = get_logger(__name__)

DEFAULT_SIGNATURE_TOLERANCE = 300


class CheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None


class PaymentGateway(ABC):
    """Interface the checkout and webhook services depend on."""

    @abstractmethod
    def create_checkout_session(
        self,
        *,
        order_id: str,
        line_name: str,
        line_description: str,
        image_url: str,
        amount_minor: int,
        currency: str,
        customer_email: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        raise NotImplementedError

    @abstractmethod
    def verify_event(self, payload: bytes, signature: str) -> Dict:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        timeout_seconds: float = 10.0,
        max_network_retries: int = 2,
        tolerance: int = DEFAULT_SIGNATURE_TOLERANCE,
        client: Optional[stripe.StripeClient] = None,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = float(timeout_seconds)
        self.max_network_retries = int(max_network_retries)
        self.tolerance = int(tolerance)
        self._client = client

    @classmethod
    def from_config(cls) -> "StripeGateway":
        return cls(
            secret_key=str(cfg.get("stripe.secret_key", "") or ""),
            webhook_secret=str(cfg.get("stripe.webhook_secret", "") or ""),
            timeout_seconds=float(cfg.get("stripe.timeout_seconds", 10) or 10),
            max_network_retries=int(cfg.get("stripe.max_network_retries", 2) or 0),
        )

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            self._client = stripe.StripeClient(
                self.secret_key,
                http_client=stripe.RequestsClient(timeout=self.timeout_seconds),
                max_network_retries=self.max_network_retries,
            )
        return self._client

    def _checkout_sessions(self):
        services = getattr(self.client, "v1", self.client)
        return services.checkout.sessions

    def create_checkout_session(
        self,
        *,
        order_id: str,
        line_name: str,
        line_description: str,
        image_url: str,
        amount_minor: int,
        currency: str,
        customer_email: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        product_data = {
            "name": line_name,
            "description": line_description,
            "metadata": {
                "assetId": metadata.get("assetId", ""),
                "licenseTier": metadata.get("licenseTier", ""),
                "orderId": order_id,
            },
        }
        if image_url:
            product_data["images"] = [image_url]
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": product_data,
                        "unit_amount": int(amount_minor),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": dict(metadata),
            "billing_address_collection": "required",
            "payment_intent_data": {"metadata": dict(metadata)},
        }
        try:
            session = self._checkout_sessions().create(
                params=params,
                options={"idempotency_key": f"checkout-{order_id}"},
            )
        except stripe.StripeError as e:
            logger.error("stripe checkout session failed: order_id=%s error=%s", order_id, e)
            raise UpstreamFailure(f"payment gateway rejected session: {type(e).__name__}") from e
        return CheckoutSession(id=session.id, url=getattr(session, "url", None))

    def verify_event(self, payload: bytes, signature: str) -> Dict:
        if not signature:
            raise InvalidSignature("Missing signature")
        if not self.webhook_secret:
            logger.error("stripe webhook secret is not configured")
            raise InvalidSignature("Webhook secret not configured")
        try:
            text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
        except UnicodeDecodeError as e:
            raise InvalidSignature("Malformed payload") from e
        try:
            stripe.WebhookSignature.verify_header(text, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature() from e
        try:
            event = json.loads(text)
        except ValueError as e:
            raise InvalidSignature("Malformed payload") from e
        if not isinstance(event, dict):
            raise InvalidSignature("Malformed payload")
        return event
