"""Refunds for paid bookings"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, PersistenceError, UpstreamError, ValidationError
from app.core.logging import reconciliation_logger
from app.core.metrics import reconciliation_alerts_counter, refunds_counter
from app.db.booking_store import get_booking
from app.models.booking import PAYMENT_PAID
from app.services.reconciliation_service import (
    TransitionOutcome, apply_direct_transition, cancel_refunded, refund_and_cancel,
)
from app.services.stripe_service import StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    booking_id: str
    outcome: TransitionOutcome


def refund_booking(booking_id: Optional[str], gateway: StripeGateway, db: Session) -> RefundResult:
    """
    Refund the payment of a paid booking and cancel it.

    The payment intent comes from the booking row. The booking moves
    paid -> refunded/cancelled under the same compare-and-swap as the webhook
    path, so whichever of this call and the ``charge.refunded`` webhook lands
    first changes payment_status and the other leaves it alone.

    Raises:
        ValidationError: booking_id missing
        NotFoundError: booking unknown, or not paid
        UpstreamError: Stripe refused the refund (nothing changed locally)
        PersistenceError: refund issued but booking not updated; also
            reported on the reconciliation alert channel
    """
    booking_id = (booking_id or "").strip()
    if not booking_id:
        raise ValidationError("Missing booking_id")

    booking = get_booking(booking_id, db)
    if booking is None or booking.payment_status != PAYMENT_PAID or not booking.payment_intent_id:
        logger.error(f"No paid session found for booking: {booking_id}")
        refunds_counter.labels(status="not_found").inc()
        raise NotFoundError("No paid session found for this booking")

    payment_intent_id = booking.payment_intent_id
    logger.info(f"Initiating refund for booking: {booking_id}, payment_intent: {payment_intent_id}")

    try:
        # Same key on a client retry -> Stripe returns the original refund
        refund = gateway.create_refund(
            payment_intent_id,
            idempotency_key=f"refund:{booking_id}:{payment_intent_id}",
        )
    except UpstreamError:
        refunds_counter.labels(status="upstream_error").inc()
        raise

    logger.info(f"Refund created: {refund.id} for booking: {booking_id}")

    try:
        outcome = apply_direct_transition(booking_id, refund_and_cancel(payment_intent_id), db)
        if outcome is TransitionOutcome.NOOP:
            # charge.refunded webhook already marked it refunded
            apply_direct_transition(booking_id, cancel_refunded(payment_intent_id), db)
    except PersistenceError as e:
        reconciliation_logger.critical(
            f"RECONCILIATION ALERT: refund {refund.id} issued for booking {booking_id} "
            f"(payment_intent {payment_intent_id}) but the booking still shows paid: {e.detail}"
        )
        reconciliation_alerts_counter.labels(path="refund").inc()
        refunds_counter.labels(status="persistence_error").inc()
        raise PersistenceError(
            e.detail,
            public_message="Refund was issued but the booking could not be updated. It will be reconciled.",
        ) from e

    refunds_counter.labels(status="refunded").inc()
    return RefundResult(refund_id=refund.id, booking_id=booking_id, outcome=outcome)
