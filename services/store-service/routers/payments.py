"""Payments API router."""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session
import httpx

from auth import verify_token, get_user_id_from_token
from config import CURRENCY, RAZORPAY_KEY_ID
from database import get_db
from dependencies import get_payment_service
from errors import StoreError, to_http_exception
from schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from services.order_service import order_to_dict
from services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-order", response_model=CreatePaymentResponse)
async def create_payment_order(
    request: CreatePaymentRequest,
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Open a payment with the provider for an order - requires authentication."""
    user_id = get_user_id_from_token(token)

    try:
        order = await payment_service.create_payment_order(db, request.order_id, user_id)
    except StoreError as e:
        raise to_http_exception(e)
    except httpx.HTTPError:
        raise HTTPException(status_code=502, detail="Payment provider unavailable")

    return {
        "order_id": order.id,
        "provider_order_id": order.provider_order_id,
        "amount_minor": order.total_minor,
        "currency": CURRENCY,
        "key": RAZORPAY_KEY_ID
    }


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    request: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """
    Verify a completed provider payment and confirm the order.

    Runs in the threadpool: confirmation may wait on row locks and back off
    between attempts. Invoice generation and emails run after the response
    is sent; their failure never affects the confirmation.
    """
    user_id = get_user_id_from_token(token)

    try:
        result = payment_service.confirm_payment(
            db=db,
            order_id=request.order_id,
            provider_order_id=request.provider_order_id,
            provider_payment_id=request.provider_payment_id,
            signature=request.signature,
            user_id=user_id
        )
    except StoreError as e:
        raise to_http_exception(e)

    if result.newly_confirmed:
        background_tasks.add_task(
            payment_service.dispatch_confirmation_side_effects, result.order.id
        )

    return {
        "message": "Payment verified successfully",
        "newly_confirmed": result.newly_confirmed,
        "order": order_to_dict(result.order)
    }
