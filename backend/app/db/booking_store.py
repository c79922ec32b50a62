"""Correlation store: Booking rows as the map from booking to Stripe identifiers.

Reads and conditional writes only. Nothing here commits; the caller owns the
transaction so a booking write and a ledger insert can share it.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.models.booking import Booking, PAYMENT_UNPAID


def get_booking(booking_id: str, db: Session) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.id == booking_id).first()


def get_booking_by_payment_intent(payment_intent_id: str, db: Session) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.payment_intent_id == payment_intent_id).first()


def set_checkout_session(booking_id: str, checkout_session_id: str, db: Session) -> bool:
    """Bind a freshly created checkout session to its booking.

    Only unpaid bookings are rebound, so a late session creation cannot
    overwrite the session that actually collected the payment.
    """
    return conditional_update(
        booking_id,
        expected_payment_status=[PAYMENT_UNPAID],
        values={"checkout_session_id": checkout_session_id},
        db=db,
    ) == 1


def conditional_update(
    booking_id: str,
    expected_payment_status: Iterable[str],
    values: Dict[str, Any],
    db: Session,
    payment_intent_id: Optional[str] = None,
) -> int:
    """Compare-and-swap on ``payment_status``.

    Issues a single ``UPDATE ... WHERE id = :id AND payment_status IN (...)``
    and returns the number of rows changed (0 or 1). When ``payment_intent_id``
    is given, the row must either carry no payment intent yet or carry that
    same one.
    """
    stmt = (
        update(Booking)
        .where(Booking.id == booking_id)
        .where(Booking.payment_status.in_(list(expected_payment_status)))
    )
    if payment_intent_id is not None:
        stmt = stmt.where(or_(
            Booking.payment_intent_id.is_(None),
            Booking.payment_intent_id == payment_intent_id,
        ))
    stmt = stmt.values(updated_at=datetime.now(timezone.utc), **values)
    result = db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount
