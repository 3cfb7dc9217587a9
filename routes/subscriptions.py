# routes/subscriptions.py
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import desc
from sqlmodel import Session, select

from core.database import get_session
from core.security import get_business_for_owner, get_current_user
from models.models import Business, PlanSubscription, User
from schemas.subscription_schema import CancelRequest, PlanSubscriptionRead
from services import subscription_actions

router = APIRouter(prefix="/businesses/{business_id}/subscriptions", tags=["Subscriptions"])


@router.get("/", response_model=List[PlanSubscriptionRead])
def list_subscriptions(
    status: Optional[str] = None,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    query = select(PlanSubscription).where(PlanSubscription.business_id == business.id)
    if status:
        query = query.where(PlanSubscription.status == status)
    return session.exec(query.order_by(desc(PlanSubscription.created_at))).all()


# ==================================================================
#  ⏸️ Pause / ▶️ Resume / 🛑 Cancel
# ==================================================================
@router.post("/{subscription_id}/pause", response_model=PlanSubscriptionRead)
def pause_subscription(
    subscription_id: int,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    row = subscription_actions.get_subscription_for_business(session, business, subscription_id)
    return subscription_actions.pause_subscription(session, row, actor_user_id=current_user.id)


@router.post("/{subscription_id}/resume", response_model=PlanSubscriptionRead)
def resume_subscription(
    subscription_id: int,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    row = subscription_actions.get_subscription_for_business(session, business, subscription_id)
    return subscription_actions.resume_subscription(session, row, actor_user_id=current_user.id)


@router.post("/{subscription_id}/cancel", response_model=PlanSubscriptionRead)
def cancel_subscription(
    subscription_id: int,
    data: CancelRequest,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    row = subscription_actions.get_subscription_for_business(session, business, subscription_id)
    return subscription_actions.cancel_subscription(
        session, row, immediately=data.immediately, actor_user_id=current_user.id
    )


@router.post("/{subscription_id}/sync")
def sync_subscription(
    subscription_id: int,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    """Re-read one subscription from Stripe and overwrite the local mirror."""
    row = subscription_actions.get_subscription_for_business(session, business, subscription_id)
    result = subscription_actions.sync_single_subscription(session, row)
    return result.model_dump()
