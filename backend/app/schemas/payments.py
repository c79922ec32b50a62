"""Pydantic schemas for checkout and refund requests"""
from decimal import Decimal
from pydantic import BaseModel
from typing import Optional


class CheckoutRequest(BaseModel):
    # Presence and ranges are checked by the checkout service so that every
    # rule answers with the same 400 shape
    booking_id: Optional[str] = None
    service_name: Optional[str] = None
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str


class RefundRequest(BaseModel):
    booking_id: Optional[str] = None


class RefundResponse(BaseModel):
    success: bool = True
    refund_id: str


class WebhookAck(BaseModel):
    received: bool = True
