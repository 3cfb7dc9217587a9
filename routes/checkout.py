# routes/checkout.py
from fastapi import APIRouter, Depends
from sqlmodel import Session

from core.database import get_session
from schemas.subscription_schema import (
    CheckoutConfirmRead,
    CheckoutConfirmRequest,
    CheckoutSetupRead,
    CheckoutSetupRequest,
)
from services import checkout

# Public storefront endpoints, no platform login
router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("/{slug}/{plan_id}/setup-intent", response_model=CheckoutSetupRead)
def create_setup_intent(
    slug: str,
    plan_id: int,
    data: CheckoutSetupRequest,
    session: Session = Depends(get_session),
):
    return checkout.create_setup_intent(session, slug, plan_id, data.consumer_email, data.consumer_name)


@router.post("/{slug}/{plan_id}/confirm", response_model=CheckoutConfirmRead)
def confirm_subscription(
    slug: str,
    plan_id: int,
    data: CheckoutConfirmRequest,
    session: Session = Depends(get_session),
):
    """
    Create the subscription after the card was confirmed client-side.
    The billing model of the membership decides anchor / trial parameters.
    """
    return checkout.confirm_subscription(
        session,
        slug,
        plan_id,
        setup_intent_id=data.setup_intent_id,
        payment_method_id=data.payment_method_id,
        consumer_email=data.consumer_email,
        consumer_name=data.consumer_name,
    )
