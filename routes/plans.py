# routes/plans.py
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlmodel import Session, select

from core import stripe_client
from core.database import get_session
from core.errors import ErrorCode, NotFound, PreconditionFailed, ValidationFailed
from core.security import get_business_for_owner, get_current_user
from models.models import AuditLogType, Business, Membership, Plan, PlanStatus, PricingType, User
from schemas.plan_schema import PlanCreate, PlanRead, PriceQueueCreate, PriceQueueItemRead
from services.audit import record_audit
from services.price_queue import enqueue_price, list_price_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}/plans", tags=["Plans"])


def _get_plan(session: Session, business: Business, plan_id: int) -> Plan:
    plan = session.get(Plan, plan_id)
    if not plan or plan.business_id != business.id:
        raise NotFound("Plan not found")
    return plan


# ==================================================================
#  ✅ Create Plan
# ==================================================================
@router.post("/", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    data: PlanCreate,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    membership = session.get(Membership, data.membership_id)
    if not membership or membership.business_id != business.id:
        raise NotFound("Membership not found")

    is_fixed = data.pricing_type == PricingType.FIXED
    if is_fixed and not data.base_price:
        raise ValidationFailed("Fixed pricing plans require a base price")

    if not business.stripe_account_id:
        raise PreconditionFailed(
            "Connect a Stripe account before creating plans",
            code=ErrorCode.BUSINESS_NOT_CONNECTED,
        )
    stripe_client.require_stripe()

    # Stripe objects first, local row only once they exist
    metadata = {"businessId": str(business.id), "membershipId": str(membership.id)}
    product = stripe_client.create_product(data.name, business.stripe_account_id, metadata)
    price_id = None
    if is_fixed:
        price = stripe_client.create_monthly_price(
            product["id"], data.base_price, data.currency, business.stripe_account_id, metadata
        )
        price_id = price["id"]

    plan = Plan(
        membership_id=membership.id,
        business_id=business.id,
        name=data.name,
        description=data.description,
        status=PlanStatus.ACTIVE.value,
        pricing_type=data.pricing_type.value,
        base_price=data.base_price if is_fixed else None,
        currency=data.currency.lower(),
        stripe_product_id=product["id"],
        stripe_price_id=price_id,
    )
    session.add(plan)
    session.flush()
    record_audit(
        session,
        AuditLogType.PLAN_CREATED,
        business_id=business.id,
        actor_user_id=current_user.id,
        metadata={"planId": plan.id, "pricingType": plan.pricing_type, "stripeProductId": product["id"]},
    )
    session.commit()
    session.refresh(plan)
    logger.info("🍷 Created %s plan %s for business %s", plan.pricing_type, plan.id, business.id)
    return plan


@router.get("/", response_model=List[PlanRead])
def list_plans(
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    return session.exec(select(Plan).where(Plan.business_id == business.id).order_by(Plan.created_at)).all()


# ==================================================================
#  💲 Monthly Price Queue (dynamic plans)
# ==================================================================
@router.post("/{plan_id}/prices", response_model=PriceQueueItemRead, status_code=status.HTTP_201_CREATED)
def queue_price(
    plan_id: int,
    data: PriceQueueCreate,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    plan = _get_plan(session, business, plan_id)
    return enqueue_price(session, plan, data.effective_month, data.price, actor_user_id=current_user.id)


@router.get("/{plan_id}/prices", response_model=List[PriceQueueItemRead])
def get_price_queue(
    plan_id: int,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    return list_price_queue(session, _get_plan(session, business, plan_id))
