"""Payment API routes: checkout sessions, Stripe webhooks, refunds"""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.security import get_current_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import (
    CheckoutRequest, CheckoutResponse, RefundRequest, RefundResponse, WebhookAck,
)
from app.services.checkout_service import create_booking_checkout
from app.services.refund_service import refund_booking
from app.services.stripe_service import StripeGateway, get_stripe_gateway
from app.services.webhook_service import process_payment_webhook

router = APIRouter(tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/checkout-sessions", response_model=CheckoutResponse)
def create_checkout_session_route(
    checkout_request: CheckoutRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Create a Stripe Checkout session for a booking"""
    result = create_booking_checkout(
        booking_id=checkout_request.booking_id,
        service_name=checkout_request.service_name,
        total_amount=checkout_request.total_amount,
        customer=user,
        gateway=gateway,
        db=db,
        currency=checkout_request.currency,
        success_url=checkout_request.success_url,
        cancel_url=checkout_request.cancel_url,
        origin=request.headers.get("origin"),
    )
    return CheckoutResponse(checkout_url=result.checkout_url, session_id=result.session_id)


@router.post("/webhooks/payment", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Handle Stripe webhook events

    Note: This route must be excluded from any global JSON parsing middleware
    to ensure the request body remains as raw bytes for signature verification.
    """
    payload = await request.body()
    sig_header = request.headers.get("X-Signature") or request.headers.get("Stripe-Signature")

    outcome = await run_in_threadpool(process_payment_webhook, payload, sig_header, gateway, db)
    logger.debug(f"Webhook acknowledged with outcome {outcome.value}")
    return WebhookAck(received=True)


@router.post("/refunds", response_model=RefundResponse)
def refund_booking_route(
    refund_request: RefundRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Refund a paid booking and cancel it"""
    logger.info(f"Refund requested by user {user.id} for booking {refund_request.booking_id}")
    result = refund_booking(refund_request.booking_id, gateway, db)
    return RefundResponse(success=True, refund_id=result.refund_id)
