"""Typed views of the Stripe objects this service reads"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
CHARGE_REFUNDED = "charge.refunded"

SESSION_EVENT_TYPES = (CHECKOUT_SESSION_COMPLETED, CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED)
HANDLED_EVENT_TYPES = SESSION_EVENT_TYPES + (CHARGE_REFUNDED,)


class CorrelationMetadata(BaseModel):
    """The only link from a Stripe checkout session back to a booking.

    Stripe stores metadata as a flat string map, so every field is a string
    and ``to_stripe`` is what gets sent on session creation.
    """
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    booking_id: str = Field(min_length=1)
    app_id: str = ""
    customer_email: str = ""

    def to_stripe(self) -> Dict[str, str]:
        return {
            "booking_id": self.booking_id,
            "app_id": self.app_id,
            "customer_email": self.customer_email,
        }

    @classmethod
    def from_stripe(cls, metadata: Optional[Dict[str, Any]]) -> Optional["CorrelationMetadata"]:
        """Parse session metadata; None when it does not identify a booking"""
        if not metadata:
            return None
        try:
            return cls.model_validate(metadata)
        except ValidationError:
            return None


class CheckoutSessionObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    payment_intent: Optional[str] = None
    payment_status: Optional[str] = None  # 'paid', 'unpaid', 'no_payment_required'
    metadata: Optional[Dict[str, Any]] = None

    @property
    def correlation(self) -> Optional[CorrelationMetadata]:
        return CorrelationMetadata.from_stripe(self.metadata)


class ChargeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    payment_intent: Optional[str] = None
    refunded: bool = True  # False for partial refunds
    amount_refunded: Optional[int] = None


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: Dict[str, Any]


class StripeEventEnvelope(BaseModel):
    """Outer shape of every webhook body"""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    type: str
    data: StripeEventData


class PaymentEvent(BaseModel):
    """A verified webhook event narrowed to what reconciliation needs.

    ``event_id`` is Stripe's event id, stable across redeliveries of the same
    event.
    """
    event_id: str
    event_type: str
    session: Optional[CheckoutSessionObject] = None
    charge: Optional[ChargeObject] = None
