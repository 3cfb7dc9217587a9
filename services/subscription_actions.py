# ================================================================
# services/subscription_actions.py — pause / resume / cancel
# ================================================================
"""
Single-subscription actions. Stripe is always called first; the local
row is then reconciled from the subscription Stripe hands back, so a
failed call leaves the mirror untouched.
"""
import logging
from typing import Optional

from sqlmodel import Session

from core import stripe_client
from core.errors import Conflict, ErrorCode, NotFound, PreconditionFailed
from models.models import (
    AlertSeverity,
    AlertType,
    AuditLogType,
    Business,
    Consumer,
    Plan,
    PlanSubscription,
    SubscriptionStatus,
)
from services.alerts import raise_alert, resolve_alerts
from services.audit import record_audit
from services.email_service import email_service
from services.reconciliation import ReconcileResult, SubscriptionSnapshot, reconcile_subscription

logger = logging.getLogger(__name__)


def _context(session: Session, row: PlanSubscription):
    business = session.get(Business, row.business_id)
    if not business:
        raise NotFound("Business not found")
    if not business.stripe_account_id:
        raise PreconditionFailed(
            "Business Stripe account not connected",
            code=ErrorCode.BUSINESS_NOT_CONNECTED,
        )
    return business, session.get(Plan, row.plan_id)


def get_subscription_for_business(session: Session, business: Business, plan_subscription_id: int) -> PlanSubscription:
    row = session.get(PlanSubscription, plan_subscription_id)
    if not row or row.business_id != business.id:
        raise NotFound("Subscription not found")
    return row


def _ensure_not_canceled(row: PlanSubscription) -> None:
    if row.status == SubscriptionStatus.CANCELED.value:
        raise Conflict("Subscription is already canceled")


def _apply(session: Session, subscription) -> ReconcileResult:
    return reconcile_subscription(session, SubscriptionSnapshot.from_stripe(subscription))


# ========================================
# ⏸️ Pause
# ========================================
def pause_subscription(
    session: Session,
    row: PlanSubscription,
    actor_user_id: Optional[int] = None,
) -> PlanSubscription:
    _ensure_not_canceled(row)
    if row.paused_at is not None:
        raise Conflict("Subscription is already paused")

    business, plan = _context(session, row)
    subscription = stripe_client.modify_subscription(
        row.stripe_subscription_id,
        business.stripe_account_id,
        pause_collection={"behavior": "void"},
    )
    _apply(session, subscription)
    session.refresh(row)

    consumer = session.get(Consumer, row.consumer_id) if row.consumer_id else None
    consumer_label = (consumer.name or consumer.email) if consumer else (row.stripe_customer_id or "A member")
    plan_name = plan.name if plan else "membership"

    raise_alert(
        session,
        business.id,
        AlertType.SUBSCRIPTION_PAUSED,
        AlertSeverity.INFO,
        title=f"{plan_name} subscription paused",
        message=f"{consumer_label} paused their {plan_name} subscription.",
        subject_id=row.id,
        metadata={"subscriptionId": row.id, "stripeSubscriptionId": row.stripe_subscription_id},
    )
    record_audit(
        session,
        AuditLogType.SUBSCRIPTION_PAUSED,
        business_id=business.id,
        actor_user_id=actor_user_id,
        metadata={"subscriptionId": row.id, "stripeSubscriptionId": row.stripe_subscription_id},
    )
    session.commit()

    if business.contact_email:
        email_service.send_subscription_paused_email(business.contact_email, business.name, plan_name, consumer_label)

    logger.info("⏸️ Paused subscription %s", row.stripe_subscription_id)
    return row


# ========================================
# ▶️ Resume
# ========================================
def resume_subscription(
    session: Session,
    row: PlanSubscription,
    actor_user_id: Optional[int] = None,
) -> PlanSubscription:
    _ensure_not_canceled(row)
    if row.paused_at is None:
        raise Conflict("Subscription is not paused")

    business, _ = _context(session, row)
    # Empty string unsets pause_collection
    subscription = stripe_client.modify_subscription(
        row.stripe_subscription_id,
        business.stripe_account_id,
        pause_collection="",
    )
    _apply(session, subscription)
    session.refresh(row)

    resolve_alerts(session, business.id, AlertType.SUBSCRIPTION_PAUSED, subject_id=row.id)
    record_audit(
        session,
        AuditLogType.SUBSCRIPTION_RESUMED,
        business_id=business.id,
        actor_user_id=actor_user_id,
        metadata={"subscriptionId": row.id, "stripeSubscriptionId": row.stripe_subscription_id},
    )
    session.commit()
    logger.info("▶️ Resumed subscription %s", row.stripe_subscription_id)
    return row


# ========================================
# 🛑 Cancel
# ========================================
def cancel_subscription(
    session: Session,
    row: PlanSubscription,
    immediately: bool = False,
    actor_user_id: Optional[int] = None,
) -> PlanSubscription:
    _ensure_not_canceled(row)
    if row.cancel_at_period_end and not immediately:
        raise Conflict("Subscription is already set to cancel at period end")

    business, _ = _context(session, row)
    if immediately:
        subscription = stripe_client.cancel_subscription_now(row.stripe_subscription_id, business.stripe_account_id)
    else:
        subscription = stripe_client.modify_subscription(
            row.stripe_subscription_id,
            business.stripe_account_id,
            cancel_at_period_end=True,
        )
    _apply(session, subscription)
    session.refresh(row)

    record_audit(
        session,
        AuditLogType.SUBSCRIPTION_CANCELED,
        business_id=business.id,
        actor_user_id=actor_user_id,
        metadata={
            "subscriptionId": row.id,
            "stripeSubscriptionId": row.stripe_subscription_id,
            "immediately": immediately,
        },
    )
    session.commit()
    logger.info("🛑 Canceled subscription %s (immediately=%s)", row.stripe_subscription_id, immediately)
    return row


# ========================================
# 🔄 Single sync
# ========================================
def sync_single_subscription(session: Session, row: PlanSubscription) -> ReconcileResult:
    business, _ = _context(session, row)
    subscription = stripe_client.retrieve_subscription(row.stripe_subscription_id, business.stripe_account_id)
    return _apply(session, subscription)
