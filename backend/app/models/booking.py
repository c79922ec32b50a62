"""Booking model"""
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base

# Booking.status values
STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

# Booking.payment_status values
PAYMENT_UNPAID = "unpaid"
PAYMENT_PAID = "paid"
PAYMENT_REFUNDED = "refunded"


class Booking(Base):
    """Service booking.

    The booking domain owns this row. The payment lifecycle only writes
    ``status``, ``payment_status``, ``checkout_session_id`` and
    ``payment_intent_id``.
    """
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    service_name = Column(String(255), nullable=True)
    status = Column(String(20), default=STATUS_PENDING, nullable=False)  # 'pending', 'confirmed', 'in_progress', 'completed', 'cancelled'
    payment_status = Column(String(20), default=PAYMENT_UNPAID, nullable=False, index=True)  # 'unpaid', 'paid', 'refunded'
    total_amount = Column(Numeric(10, 2), nullable=True)  # Major currency units
    checkout_session_id = Column(String(255), nullable=True, index=True)  # Set when a Stripe Checkout session is created
    payment_intent_id = Column(String(255), nullable=True, index=True)  # Set when payment succeeds
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    customer = relationship("User", back_populates="bookings")
