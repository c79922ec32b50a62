"""Idempotency ledger for Stripe webhook events"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.stripe_event import StripeEvent

logger = logging.getLogger(__name__)


def is_event_recorded(event_id: str, db: Session) -> bool:
    return db.query(StripeEvent.id).filter(StripeEvent.stripe_event_id == event_id).first() is not None


def get_event_record(event_id: str, db: Session) -> Optional[StripeEvent]:
    return db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()


def try_record_event(
    event_id: str,
    event_type: str,
    booking_id: Optional[str],
    outcome: str,
    db: Session,
) -> Optional[StripeEvent]:
    """Insert the ledger row inside the caller's transaction.

    Returns the new row, or None when another delivery of the same event has
    already recorded it (unique constraint on ``stripe_event_id``). On None the
    caller's transaction has been rolled back and nothing was written.
    """
    record = StripeEvent(
        stripe_event_id=event_id,
        event_type=event_type,
        booking_id=booking_id,
        outcome=outcome,
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info(f"Stripe event {event_id} already recorded by a concurrent delivery")
        return None
    return record
