# ================================================================
# services/checkout.py — Consumer signup for a plan
# ================================================================
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlmodel import Session, select

from core import stripe_client
from core.errors import Conflict, ErrorCode, NotFound, PreconditionFailed, ValidationFailed
from core.stripe_client import sget
from models.models import (
    OPEN_SUBSCRIPTION_STATUSES,
    AuditLogType,
    Business,
    Consumer,
    Membership,
    MembershipStatus,
    Plan,
    PlanStatus,
    PlanSubscription,
    utc_now,
)
from services.audit import record_audit
from services.billing_model import billing_model_for, build_subscription_create_params, resolve_price_for_plan
from services.reconciliation import ReconcileAction, SubscriptionSnapshot, reconcile_subscription

logger = logging.getLogger(__name__)


def load_sellable_plan(session: Session, slug: str, plan_id: int) -> Tuple[Business, Membership, Plan]:
    """Active plan of an active membership of the business at ``slug``."""
    business = session.exec(select(Business).where(Business.slug == slug)).first()
    plan = session.get(Plan, plan_id)
    membership = session.get(Membership, plan.membership_id) if plan else None
    if (
        not business
        or not plan
        or not membership
        or plan.business_id != business.id
        or plan.status != PlanStatus.ACTIVE.value
        or membership.status != MembershipStatus.ACTIVE.value
    ):
        raise NotFound("Plan not found or unavailable")
    return business, membership, plan


def _require_connected(business: Business) -> str:
    if not business.stripe_account_id:
        raise PreconditionFailed(
            "Business Stripe account not connected",
            code=ErrorCode.BUSINESS_NOT_CONNECTED,
        )
    return business.stripe_account_id


def _ensure_not_subscribed(session: Session, consumer: Optional[Consumer], plan: Plan) -> None:
    if consumer is None:
        return
    existing = session.exec(
        select(PlanSubscription).where(
            PlanSubscription.consumer_id == consumer.id,
            PlanSubscription.plan_id == plan.id,
            PlanSubscription.status.in_(OPEN_SUBSCRIPTION_STATUSES),
        )
    ).first()
    if existing:
        raise Conflict(
            "You already have an active subscription to this plan",
            code=ErrorCode.ALREADY_SUBSCRIBED,
        )


# ========================================
# 💳 Step 1: collect a card
# ========================================
def create_setup_intent(
    session: Session,
    slug: str,
    plan_id: int,
    consumer_email: str,
    consumer_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    business, _, plan = load_sellable_plan(session, slug, plan_id)
    # Fail fast so nobody enters a card for a plan that cannot be sold today
    resolve_price_for_plan(session, plan, now or utc_now())
    account_id = _require_connected(business)

    consumer = session.exec(select(Consumer).where(Consumer.email == consumer_email)).first()
    _ensure_not_subscribed(session, consumer, plan)

    customer = stripe_client.create_customer(
        consumer_email, consumer_name, account_id, metadata={"businessId": str(business.id)}
    )
    intent = stripe_client.create_setup_intent(
        customer["id"], account_id, metadata={"planId": str(plan.id), "businessId": str(business.id)}
    )
    return {
        "setup_intent_id": intent["id"],
        "client_secret": sget(intent, "client_secret"),
        "customer_id": customer["id"],
        "stripe_account_id": account_id,
    }


# ========================================
# ✅ Step 2: create the subscription
# ========================================
def confirm_subscription(
    session: Session,
    slug: str,
    plan_id: int,
    setup_intent_id: str,
    payment_method_id: str,
    consumer_email: str,
    consumer_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utc_now()
    business, membership, plan = load_sellable_plan(session, slug, plan_id)

    price_id = resolve_price_for_plan(session, plan, now)
    account_id = _require_connected(business)
    model = billing_model_for(membership)

    consumer = session.exec(select(Consumer).where(Consumer.email == consumer_email)).first()
    _ensure_not_subscribed(session, consumer, plan)

    setup_intent = stripe_client.retrieve_setup_intent(setup_intent_id, account_id)
    if sget(setup_intent, "status") != "succeeded":
        raise ValidationFailed("Setup intent not completed", code=ErrorCode.SETUP_INTENT_INCOMPLETE)
    customer_id = stripe_client.object_id(sget(setup_intent, "customer"))

    metadata = {
        "planId": str(plan.id),
        "planName": plan.name,
        "membershipId": str(membership.id),
        "businessId": str(business.id),
        "consumerEmail": consumer_email,
    }
    if consumer:
        metadata["consumerId"] = str(consumer.id)

    params = build_subscription_create_params(
        customer_id,
        price_id,
        model,
        now,
        default_payment_method=payment_method_id,
        metadata=metadata,
    )
    logger.info("🧾 Creating %s subscription for plan %s (customer %s)", model.kind, plan.id, customer_id)
    subscription = stripe_client.create_subscription(params, account_id)

    # Local writes only after Stripe accepted the subscription
    if consumer is None:
        consumer = Consumer(email=consumer_email, name=consumer_name)
        session.add(consumer)
        session.commit()
        session.refresh(consumer)
    elif consumer_name and not consumer.name:
        consumer.name = consumer_name
        session.add(consumer)
        session.commit()

    result = reconcile_subscription(
        session,
        SubscriptionSnapshot.from_stripe(subscription, observed_at=now),
        create_missing=True,
        business=business,
        consumer=consumer,
        now=now,
    )
    if result.action not in (ReconcileAction.CREATED, ReconcileAction.UPDATED, ReconcileAction.UNCHANGED):
        logger.error("❌ Subscription %s could not be mirrored: %s", subscription["id"], result.reason)

    record_audit(
        session,
        AuditLogType.SUBSCRIPTION_CREATED,
        business_id=business.id,
        metadata={
            "planId": plan.id,
            "consumerId": consumer.id,
            "stripeSubscriptionId": subscription["id"],
            "billingModel": model.kind,
        },
    )
    session.commit()

    return {
        "success": True,
        "subscription_id": subscription["id"],
        "plan_subscription_id": result.plan_subscription_id,
        "status": sget(subscription, "status"),
        "billing_model": model.kind,
    }
