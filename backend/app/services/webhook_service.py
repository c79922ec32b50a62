"""Stripe webhook ingestion: verify, classify, dispatch"""
import logging
from enum import Enum
from typing import Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import SignatureError, ValidationError
from app.core.logging import reconciliation_logger, security_logger
from app.core.metrics import reconciliation_alerts_counter, webhook_events_counter
from app.db.booking_store import get_booking, get_booking_by_payment_intent
from app.db.event_ledger import is_event_recorded
from app.models.stripe_event import OUTCOME_IGNORED, OUTCOME_UNMATCHED
from app.schemas.events import (
    CHARGE_REFUNDED, HANDLED_EVENT_TYPES, SESSION_EVENT_TYPES,
    ChargeObject, CheckoutSessionObject, CorrelationMetadata, PaymentEvent, StripeEventEnvelope,
)
from app.services.reconciliation_service import (
    TransitionOutcome, apply_event_transition, mark_paid, mark_refunded, record_event_only,
)
from app.services.stripe_service import StripeGateway, verify_webhook_signature

logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"  # no booking could be resolved; acknowledged, not retried
    IGNORED = "ignored"      # event type or state this service does not act on


def parse_payment_event(body: str) -> PaymentEvent:
    """Turn a verified webhook body into a typed PaymentEvent"""
    try:
        envelope = StripeEventEnvelope.model_validate_json(body)
        session = charge = None
        if envelope.type in SESSION_EVENT_TYPES:
            session = CheckoutSessionObject.model_validate(envelope.data.object)
        elif envelope.type == CHARGE_REFUNDED:
            charge = ChargeObject.model_validate(envelope.data.object)
    except SchemaValidationError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValidationError("Invalid payload") from e
    return PaymentEvent(event_id=envelope.id, event_type=envelope.type, session=session, charge=charge)


def construct_payment_event(payload: bytes, sig_header: Optional[str], secret: str, tolerance: int) -> PaymentEvent:
    """Verify the signature over the raw bytes, then parse"""
    body = verify_webhook_signature(payload, sig_header, secret, tolerance)
    return parse_payment_event(body)


def _acknowledge(event: PaymentEvent, booking_id: Optional[str], outcome: str, db: Session) -> WebhookOutcome:
    recorded = record_event_only(event.event_id, event.event_type, booking_id, outcome, db)
    if recorded is TransitionOutcome.DUPLICATE:
        return WebhookOutcome.DUPLICATE
    return WebhookOutcome(outcome)


def _from_transition(outcome: TransitionOutcome) -> WebhookOutcome:
    return WebhookOutcome(outcome.value)


def _is_foreign(correlation: CorrelationMetadata) -> bool:
    return bool(settings.APP_ID) and correlation.app_id != settings.APP_ID


def _conflicting_payment_intent(booking_id: str, payment_intent_id: str, db: Session) -> Optional[str]:
    """The booking's stored payment intent when it is a different one, else None"""
    booking = get_booking(booking_id, db)
    if booking is None or not booking.payment_intent_id or booking.payment_intent_id == payment_intent_id:
        return None
    return booking.payment_intent_id


def handle_session_paid(event: PaymentEvent, db: Session) -> WebhookOutcome:
    """checkout.session.completed / async_payment_succeeded -> booking paid"""
    session = event.session
    correlation = session.correlation
    if correlation is None:
        logger.warning(f"Checkout session {session.id} (event {event.event_id}) carries no booking_id")
        return _acknowledge(event, None, OUTCOME_UNMATCHED, db)
    booking_id = correlation.booking_id

    if _is_foreign(correlation):
        logger.info(f"Checkout session {session.id} belongs to app '{correlation.app_id}', not ours")
        return _acknowledge(event, None, OUTCOME_IGNORED, db)

    if session.payment_status != "paid":
        # Delayed payment methods complete the session before the money arrives
        logger.info(f"Checkout session {session.id} for booking {booking_id} completed with payment_status={session.payment_status}")
        return _acknowledge(event, booking_id, OUTCOME_IGNORED, db)

    if not session.payment_intent:
        logger.error(f"Paid checkout session {session.id} for booking {booking_id} has no payment_intent")
        return _acknowledge(event, booking_id, OUTCOME_IGNORED, db)

    if get_booking(booking_id, db) is None:
        logger.warning(f"Payment for unknown booking {booking_id} (session {session.id})")
        return _acknowledge(event, booking_id, OUTCOME_UNMATCHED, db)

    logger.info(f"Payment successful for booking: {booking_id}, payment_intent: {session.payment_intent}")
    outcome = apply_event_transition(
        event.event_id, event.event_type, booking_id,
        mark_paid(session.payment_intent, session.id), db,
    )
    if outcome is TransitionOutcome.NOOP:
        stored = _conflicting_payment_intent(booking_id, session.payment_intent, db)
        if stored is not None:
            # Customer charged a second time; only an operator can refund it
            reconciliation_logger.critical(
                f"RECONCILIATION ALERT: payment_intent {session.payment_intent} (session {session.id}, "
                f"event {event.event_id}) captured for booking {booking_id}, which is already settled "
                f"by payment_intent {stored}"
            )
            reconciliation_alerts_counter.labels(path="webhook").inc()
    return _from_transition(outcome)


def _resolve_refunded_booking(payment_intent_id: str, gateway: StripeGateway, db: Session) -> Optional[str]:
    booking = get_booking_by_payment_intent(payment_intent_id, db)
    if booking is not None:
        return booking.id

    # The completion event may not have been applied yet; ask Stripe which
    # checkout session produced this payment intent
    correlation = CorrelationMetadata.from_stripe(
        gateway.find_session_metadata_for_payment_intent(payment_intent_id)
    )
    if correlation is None or _is_foreign(correlation):
        return None
    if get_booking(correlation.booking_id, db) is None:
        return None
    return correlation.booking_id


def handle_charge_refunded(event: PaymentEvent, gateway: StripeGateway, db: Session) -> WebhookOutcome:
    """charge.refunded -> booking refunded"""
    charge = event.charge
    if not charge.refunded:
        logger.info(f"Partial refund on charge {charge.id} (amount_refunded={charge.amount_refunded}); no booking change")
        return _acknowledge(event, None, OUTCOME_IGNORED, db)

    if not charge.payment_intent:
        logger.warning(f"Refunded charge {charge.id} has no payment_intent")
        return _acknowledge(event, None, OUTCOME_UNMATCHED, db)

    booking_id = _resolve_refunded_booking(charge.payment_intent, gateway, db)
    if booking_id is None:
        logger.warning(f"No booking found for refunded payment_intent {charge.payment_intent}")
        return _acknowledge(event, None, OUTCOME_UNMATCHED, db)

    logger.info(f"Refund processed for booking: {booking_id}")
    outcome = apply_event_transition(
        event.event_id, event.event_type, booking_id,
        mark_refunded(charge.payment_intent), db,
    )
    if outcome is TransitionOutcome.NOOP:
        stored = _conflicting_payment_intent(booking_id, charge.payment_intent, db)
        if stored is not None:
            logger.warning(
                f"Refund of payment_intent {charge.payment_intent} (charge {charge.id}) left booking "
                f"{booking_id} unchanged; the booking holds payment_intent {stored}"
            )
    return _from_transition(outcome)


def process_payment_webhook(
    payload: bytes,
    sig_header: Optional[str],
    gateway: StripeGateway,
    db: Session,
    secret: Optional[str] = None,
) -> WebhookOutcome:
    """Process one Stripe webhook delivery.

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Stripe signature header
        gateway: Stripe gateway, used only to resolve refunds whose payment
            intent is not stored yet
        db: Database session
        secret: Webhook signing secret, defaults to STRIPE_WEBHOOK_SECRET

    Returns:
        The outcome; every value means "acknowledge with 200".

    Raises:
        SignatureError: authenticity check failed (400, no state touched)
        ValidationError: signed body is not a Stripe event (400)
        UpstreamError: Stripe lookup failed (500, Stripe retries)
        PersistenceError: ledger/booking write failed (500, Stripe retries)
    """
    if secret is None:
        secret = settings.STRIPE_WEBHOOK_SECRET

    try:
        event = construct_payment_event(payload, sig_header, secret, settings.WEBHOOK_TOLERANCE_SECONDS)
    except SignatureError as e:
        security_logger.warning(f"Webhook signature verification failed: {e.detail}")
        raise

    logger.info(f"Webhook event received: {event.event_type} ({event.event_id})")

    if event.event_type not in HANDLED_EVENT_TYPES:
        outcome = WebhookOutcome.IGNORED
    elif is_event_recorded(event.event_id, db):
        logger.info(f"Webhook event {event.event_id} already processed")
        outcome = WebhookOutcome.DUPLICATE
    elif event.event_type in SESSION_EVENT_TYPES:
        outcome = handle_session_paid(event, db)
    else:
        outcome = handle_charge_refunded(event, gateway, db)

    webhook_events_counter.labels(event_type=event.event_type, outcome=outcome.value).inc()
    return outcome
