"""Checkout session creation for bookings"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import PersistenceError, UpstreamError, ValidationError
from app.core.metrics import checkout_sessions_counter
from app.db.booking_store import get_booking, set_checkout_session
from app.models.booking import PAYMENT_UNPAID
from app.models.user import User
from app.schemas.events import CorrelationMetadata
from app.services.stripe_service import StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    checkout_url: str
    session_id: str


def to_minor_units(amount: Union[Decimal, int, float, str]) -> int:
    """Convert a major-unit amount to minor units (cents/fils).

    Rounds half away from zero at the minor unit: 150.5 -> 15050,
    99.999 -> 10000, 0.005 -> 1. Floats go through ``str`` so the binary
    representation never decides a tie.
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("total_amount must be a number") from e
    if not value.is_finite():
        raise ValidationError("total_amount must be a number")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _redirect_url(base_url: str, outcome: str, booking_id: str) -> str:
    query = urlencode({"payment": outcome, "booking_id": booking_id})
    return f"{base_url.rstrip('/')}/BookService?{query}"


def create_booking_checkout(
    booking_id: Optional[str],
    service_name: Optional[str],
    total_amount: Optional[Decimal],
    customer: User,
    gateway: StripeGateway,
    db: Session,
    currency: Optional[str] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    origin: Optional[str] = None,
) -> CheckoutResult:
    """Create a one-time Stripe Checkout session for a booking.

    The session carries the booking's correlation metadata, which is the only
    way later webhook events find their way back to the booking. The new
    session id is stored on the booking.

    Raises:
        ValidationError: bad input, unknown booking, or booking not payable
        UpstreamError: Stripe rejected the request (not retried)
        PersistenceError: the session id could not be stored
    """
    booking_id = (booking_id or "").strip()
    service_name = (service_name or "").strip()
    if not booking_id:
        raise ValidationError("booking_id is required")
    if not service_name:
        raise ValidationError("service_name is required")
    if total_amount is None:
        raise ValidationError("total_amount is required")
    amount_minor = to_minor_units(total_amount)
    if total_amount <= 0:
        raise ValidationError("total_amount must be greater than zero")
    if amount_minor <= 0:
        raise ValidationError("total_amount is below the smallest chargeable unit")

    settlement_currency = settings.PAYMENT_CURRENCY
    if currency and currency.strip().lower() != settlement_currency:
        raise ValidationError(f"Unsupported currency '{currency}'. Payments are settled in {settlement_currency.upper()}")

    booking = get_booking(booking_id, db)
    if booking is None:
        raise ValidationError("Booking not found")
    if booking.payment_status != PAYMENT_UNPAID:
        raise ValidationError(f"Booking is already {booking.payment_status}")
    if booking.total_amount is not None and to_minor_units(booking.total_amount) != amount_minor:
        raise ValidationError("total_amount does not match the booking total")
    previous_session_id = booking.checkout_session_id

    correlation = CorrelationMetadata(
        booking_id=booking_id,
        app_id=settings.APP_ID,
        customer_email=customer.email,
    )
    base_url = origin or settings.FRONTEND_URL

    params = {
        "payment_method_types": ["card"],
        "mode": "payment",
        "line_items": [{
            "price_data": {
                "currency": settlement_currency,
                "product_data": {
                    "name": service_name,
                    "description": f"Booking #{booking_id[:8]}",
                },
                "unit_amount": amount_minor,
            },
            "quantity": 1,
        }],
        "metadata": correlation.to_stripe(),
        "customer_email": customer.email,
        "success_url": success_url or _redirect_url(base_url, "success", booking_id),
        "cancel_url": cancel_url or _redirect_url(base_url, "cancelled", booking_id),
    }

    try:
        session = gateway.create_checkout_session(params)
    except UpstreamError:
        checkout_sessions_counter.labels(status="upstream_error").inc()
        raise

    try:
        bound = set_checkout_session(booking_id, session.id, db)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        checkout_sessions_counter.labels(status="persistence_error").inc()
        logger.error(f"Checkout session {session.id} created but not stored on booking {booking_id}: {e}", exc_info=True)
        raise PersistenceError(f"Could not store checkout session for booking {booking_id}") from e

    if not bound:
        # Paid between our read and our write; don't hand out a second payment page
        gateway.expire_checkout_session(session.id)
        checkout_sessions_counter.labels(status="rejected").inc()
        logger.warning(f"Booking {booking_id} stopped being payable while session {session.id} was created")
        raise ValidationError("Booking is no longer awaiting payment")

    if previous_session_id and previous_session_id != session.id:
        # One open payment page per booking
        if gateway.expire_checkout_session(previous_session_id):
            logger.info(f"Expired superseded checkout session {previous_session_id} for booking {booking_id}")

    checkout_sessions_counter.labels(status="created").inc()
    logger.info(f"Checkout session created: {session.id} for booking: {booking_id}")
    return CheckoutResult(checkout_url=session.url, session_id=session.id)
