"""StripeEvent model"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime, timezone
from app.models.base import Base

# StripeEvent.outcome values
OUTCOME_APPLIED = "applied"
OUTCOME_NOOP = "noop"
OUTCOME_UNMATCHED = "unmatched"
OUTCOME_IGNORED = "ignored"


class StripeEvent(Base):
    """Idempotency ledger: one row per Stripe event that has taken effect.

    The unique constraint on ``stripe_event_id`` is the atomic check-and-set
    that serializes concurrent deliveries of the same event.
    """
    __tablename__ = "stripe_events"

    id = Column(Integer, primary_key=True, index=True)
    stripe_event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    booking_id = Column(String(36), nullable=True, index=True)
    outcome = Column(String(20), nullable=False)  # 'applied', 'noop', 'unmatched', 'ignored'
    processed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
