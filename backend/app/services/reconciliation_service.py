"""Booking state reconciliation.

A payment transition is a compare-and-swap on ``Booking.payment_status``.
Webhook-driven transitions are additionally guarded by the event ledger: the
ledger insert and the booking update share one database transaction, so an
event either has both effects or neither. Redelivered events find their
ledger row and return without touching the booking.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import PersistenceError
from app.db.booking_store import conditional_update
from app.db.event_ledger import is_event_recorded, try_record_event
from app.models.booking import (
    Booking, PAYMENT_PAID, PAYMENT_REFUNDED, PAYMENT_UNPAID,
    STATUS_CANCELLED, STATUS_CONFIRMED, STATUS_PENDING,
)
from app.models.stripe_event import OUTCOME_APPLIED, OUTCOME_NOOP

logger = logging.getLogger(__name__)


class TransitionOutcome(str, Enum):
    APPLIED = "applied"      # booking row changed
    NOOP = "noop"            # precondition did not hold; booking untouched
    DUPLICATE = "duplicate"  # event already in the ledger
    RECORDED = "recorded"    # event logged without a booking transition


@dataclass(frozen=True)
class Transition:
    name: str
    expected_payment_status: Tuple[str, ...]
    values: Dict[str, Any] = field(default_factory=dict)
    # When set, the booking must carry no payment intent or this one
    payment_intent_id: Optional[str] = None


def mark_paid(payment_intent_id: str, checkout_session_id: str) -> Transition:
    """unpaid -> paid; pending bookings become confirmed, other statuses stay"""
    return Transition(
        name="mark_paid",
        expected_payment_status=(PAYMENT_UNPAID,),
        values={
            "payment_status": PAYMENT_PAID,
            "payment_intent_id": payment_intent_id,
            "checkout_session_id": checkout_session_id,
            "status": case((Booking.status == STATUS_PENDING, STATUS_CONFIRMED), else_=Booking.status),
        },
    )


def mark_refunded(payment_intent_id: str) -> Transition:
    """Refund reported by Stripe.

    Also accepted from ``unpaid``: a refund event can overtake the completion
    event of the same payment, and Stripe only refunds what was charged. The
    late completion then finds the booking no longer unpaid and is a no-op.

    This is the one path where a booking reaches ``refunded`` without having
    been ``paid`` in this table. ``status`` is not touched, so such a booking
    keeps ``pending``; in-order delivery leaves it ``confirmed``.
    """
    return Transition(
        name="mark_refunded",
        expected_payment_status=(PAYMENT_PAID, PAYMENT_UNPAID),
        values={"payment_status": PAYMENT_REFUNDED, "payment_intent_id": payment_intent_id},
        payment_intent_id=payment_intent_id,
    )


def refund_and_cancel(payment_intent_id: str) -> Transition:
    """Synchronous refund path: paid -> refunded and the booking is cancelled"""
    return Transition(
        name="refund_and_cancel",
        expected_payment_status=(PAYMENT_PAID,),
        values={"payment_status": PAYMENT_REFUNDED, "status": STATUS_CANCELLED},
        payment_intent_id=payment_intent_id,
    )


def cancel_refunded(payment_intent_id: str) -> Transition:
    """Cancel a booking whose refund webhook won the race against the refund request"""
    return Transition(
        name="cancel_refunded",
        expected_payment_status=(PAYMENT_REFUNDED,),
        values={"status": STATUS_CANCELLED},
        payment_intent_id=payment_intent_id,
    )


def _update(booking_id: str, transition: Transition, db: Session) -> int:
    return conditional_update(
        booking_id,
        expected_payment_status=transition.expected_payment_status,
        values=transition.values,
        db=db,
        payment_intent_id=transition.payment_intent_id,
    )


def apply_event_transition(
    event_id: str,
    event_type: str,
    booking_id: str,
    transition: Transition,
    db: Session,
) -> TransitionOutcome:
    """Apply ``transition`` for Stripe event ``event_id`` at most once.

    Raises:
        PersistenceError: the transaction could not be committed. Nothing was
            written, so Stripe's redelivery is safe.
    """
    if is_event_recorded(event_id, db):
        logger.info(f"Stripe event {event_id} already processed")
        return TransitionOutcome.DUPLICATE

    try:
        record = try_record_event(event_id, event_type, booking_id, OUTCOME_APPLIED, db)
        if record is None:
            return TransitionOutcome.DUPLICATE
        changed = _update(booking_id, transition, db)
        if not changed:
            record.outcome = OUTCOME_NOOP
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to apply {transition.name} for event {event_id} (booking {booking_id}): {e}", exc_info=True)
        raise PersistenceError(f"Could not persist {transition.name} for booking {booking_id}") from e

    if changed:
        logger.info(f"Event {event_id}: {transition.name} applied to booking {booking_id}")
        return TransitionOutcome.APPLIED
    logger.info(f"Event {event_id}: {transition.name} skipped, booking {booking_id} not in {transition.expected_payment_status}")
    return TransitionOutcome.NOOP


def record_event_only(
    event_id: str,
    event_type: str,
    booking_id: Optional[str],
    outcome: str,
    db: Session,
) -> TransitionOutcome:
    """Ledger an acknowledged event that changes no booking (unmatched/ignored)"""
    if is_event_recorded(event_id, db):
        return TransitionOutcome.DUPLICATE
    try:
        record = try_record_event(event_id, event_type, booking_id, outcome, db)
        if record is None:
            return TransitionOutcome.DUPLICATE
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record event {event_id}: {e}", exc_info=True)
        raise PersistenceError(f"Could not record event {event_id}") from e
    return TransitionOutcome.RECORDED


def apply_direct_transition(booking_id: str, transition: Transition, db: Session) -> TransitionOutcome:
    """Apply ``transition`` without a ledger entry (synchronous API paths)"""
    try:
        changed = _update(booking_id, transition, db)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to apply {transition.name} to booking {booking_id}: {e}", exc_info=True)
        raise PersistenceError(f"Could not persist {transition.name} for booking {booking_id}") from e
    return TransitionOutcome.APPLIED if changed else TransitionOutcome.NOOP
