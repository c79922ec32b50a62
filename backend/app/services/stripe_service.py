import logging
import stripe
from dataclasses import dataclass
from typing import Any, Dict, Optional
from fastapi import Request

from app.core.config import Settings
from app.core.exceptions import SignatureError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSessionHandle:
    id: str
    url: str


@dataclass(frozen=True)
class RefundHandle:
    id: str
    status: Optional[str] = None


def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    # Try attribute access first (Stripe objects)
    if hasattr(obj, key):
        value = getattr(obj, key, default)
        if value is not None:
            return value
    # Fall back to dict access
    if isinstance(obj, dict):
        return obj.get(key, default)
    return default


class StripeGateway:
    """
    The one place this service talks to Stripe.

    Wraps an explicit ``stripe.StripeClient`` built once at startup (see
    ``app.main.lifespan``) instead of the global ``stripe.api_key``. Every
    Stripe failure leaves as ``UpstreamError``; nothing is retried here.
    """

    def __init__(self, client: Optional[stripe.StripeClient]):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        if not settings.STRIPE_SECRET_KEY:
            logger.error("Stripe secret key not configured.")
            return cls(None)
        # SDK default is 80s; timeouts surface as APIConnectionError -> UpstreamError
        http_client = stripe.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS)
        return cls(stripe.StripeClient(
            settings.STRIPE_SECRET_KEY,
            max_network_retries=0,
            http_client=http_client,
        ))

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            raise UpstreamError("Stripe secret key not configured")
        return self._client

    def create_checkout_session(self, params: Dict[str, Any]) -> CheckoutSessionHandle:
        try:
            session = self.client.checkout.sessions.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise UpstreamError(f"Checkout session creation failed: {e}") from e
        return CheckoutSessionHandle(id=session.id, url=session.url)

    def expire_checkout_session(self, session_id: str) -> bool:
        """Best effort: close a session that can no longer be bound to its booking"""
        try:
            self.client.checkout.sessions.expire(session_id)
            return True
        except (stripe.StripeError, UpstreamError) as e:
            logger.warning(f"Could not expire checkout session {session_id}: {e}")
            return False

    def find_session_metadata_for_payment_intent(self, payment_intent_id: str) -> Optional[Dict[str, Any]]:
        """Metadata of the checkout session that created ``payment_intent_id``.

        A filtered lookup by payment intent, not a scan of recent sessions.
        """
        try:
            sessions = self.client.checkout.sessions.list(
                params={"payment_intent": payment_intent_id, "limit": 1}
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup for payment intent {payment_intent_id} failed: {e}")
            raise UpstreamError(f"Session lookup failed: {e}") from e
        data = _get_stripe_value(sessions, "data", []) or []
        if not data:
            return None
        metadata = _get_stripe_value(data[0], "metadata", {}) or {}
        return dict(metadata)

    def create_refund(self, payment_intent_id: str, idempotency_key: str) -> RefundHandle:
        try:
            refund = self.client.refunds.create(
                params={"payment_intent": payment_intent_id},
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund for payment intent {payment_intent_id} failed: {e}")
            raise UpstreamError(f"Refund failed: {e}") from e
        return RefundHandle(id=refund.id, status=_get_stripe_value(refund, "status"))


def verify_webhook_signature(payload: bytes, sig_header: Optional[str], secret: str, tolerance: int) -> str:
    """Check the Stripe-Signature header against the raw request body.

    Must be given the bytes exactly as received; re-serialized JSON would not
    match. Returns the decoded body on success.
    """
    if not secret:
        logger.error("Webhook secret not configured")
        raise SignatureError("Webhook secret not configured")
    if not sig_header:
        raise SignatureError("Missing signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SignatureError("Webhook body is not valid UTF-8") from e
    try:
        stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureError(f"Invalid webhook signature: {e}") from e
    return body


def get_stripe_gateway(request: Request) -> StripeGateway:
    """Dependency: the gateway built at startup"""
    return request.app.state.stripe_gateway
