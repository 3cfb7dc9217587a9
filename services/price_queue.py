# ================================================================
# services/price_queue.py — Dynamic (monthly) pricing queue
# ================================================================
"""
Dynamic plans are priced month by month. Owners queue a price for a
month; a cron job drains due items into Stripe prices; another cron job
nags owners when next month still has no price.
"""
import logging
import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from sqlmodel import Session, select

from core import stripe_client
from core.errors import ValidationFailed
from core.stripe_client import sget
from models.models import (
    AlertSeverity,
    AlertType,
    AuditLogType,
    Business,
    Membership,
    Plan,
    PlanStatus,
    PlanSubscription,
    PriceQueueItem,
    PricingType,
    SubscriptionStatus,
    utc_now,
)
from services.alerts import find_open_alert, raise_alert, resolve_alerts
from services.audit import record_audit
from services.billing_model import month_bounds
from services.email_service import email_service
from services.reconciliation import SubscriptionSnapshot, reconcile_subscription

logger = logging.getLogger(__name__)

# Days before the 1st of next month -> reminder severity
REMINDER_SCHEDULE: Dict[int, AlertSeverity] = {
    7: AlertSeverity.WARNING,
    3: AlertSeverity.URGENT,
    1: AlertSeverity.CRITICAL,
}


def first_of_month(value: Union[date, datetime]) -> datetime:
    return datetime(value.year, value.month, 1)


def next_month_start(now: datetime) -> datetime:
    return month_bounds(now)[1]


# ========================================
# ➕ Enqueue
# ========================================
def enqueue_price(
    session: Session,
    plan: Plan,
    effective_month: Union[date, datetime],
    price: int,
    actor_user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PriceQueueItem:
    """Set (or replace) the unapplied price for a month."""
    now = now or utc_now()
    if PricingType(plan.pricing_type) != PricingType.DYNAMIC:
        raise ValidationFailed("Only dynamic pricing plans have a price queue")
    if price <= 0:
        raise ValidationFailed("Price must be greater than zero")

    effective_at = first_of_month(effective_month)
    if effective_at < month_bounds(now)[0]:
        raise ValidationFailed("Cannot queue a price for a past month")

    item = session.exec(
        select(PriceQueueItem).where(
            PriceQueueItem.plan_id == plan.id,
            PriceQueueItem.effective_at == effective_at,
            PriceQueueItem.applied == False,  # noqa: E712
        )
    ).first()
    if item is None:
        item = PriceQueueItem(plan_id=plan.id, effective_at=effective_at, price=price)
    else:
        item.price = price

    session.add(item)
    record_audit(
        session,
        AuditLogType.PRICE_QUEUED,
        business_id=plan.business_id,
        actor_user_id=actor_user_id,
        metadata={"planId": plan.id, "effectiveAt": effective_at.isoformat(), "price": price},
    )
    session.commit()
    session.refresh(item)
    logger.info("💲 Queued %s for plan %s effective %s", price, plan.id, effective_at.strftime("%Y-%m"))
    return item


def list_price_queue(session: Session, plan: Plan) -> List[PriceQueueItem]:
    return session.exec(
        select(PriceQueueItem)
        .where(PriceQueueItem.plan_id == plan.id)
        .order_by(PriceQueueItem.effective_at, PriceQueueItem.id)
    ).all()


# ========================================
# 🔄 Drain (cron)
# ========================================
def apply_due_prices(session: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Turn every due, unapplied queue item into a live Stripe price."""
    now = now or utc_now()
    due = session.exec(
        select(PriceQueueItem)
        .where(
            PriceQueueItem.applied == False,  # noqa: E712
            PriceQueueItem.effective_at <= now,
        )
        .order_by(PriceQueueItem.effective_at, PriceQueueItem.id)
    ).all()

    report: Dict[str, Any] = {"applied": [], "skipped": [], "failures": [], "resumed": 0}
    if not due:
        logger.info("✅ No pending prices to apply")
        return report

    logger.info("📋 Found %s price(s) to apply", len(due))
    current_month_start = month_bounds(now)[0]

    for item in due:
        plan = session.get(Plan, item.plan_id)
        business = session.get(Business, plan.business_id) if plan else None
        reason = None
        if not plan or not business:
            reason = "Plan not found"
        elif not business.stripe_account_id:
            reason = "Business has no Stripe account"
        elif not plan.stripe_product_id:
            reason = "Plan has no Stripe product"
        if reason:
            logger.error("❌ Skipping queue item %s: %s", item.id, reason)
            report["skipped"].append({"item_id": item.id, "reason": reason})
            continue

        try:
            stripe_price = stripe_client.create_monthly_price(
                plan.stripe_product_id,
                item.price,
                plan.currency,
                business.stripe_account_id,
                metadata={
                    "planId": str(plan.id),
                    "businessId": str(business.id),
                    "effectiveDate": item.effective_at.isoformat(),
                },
            )
            new_price_id = stripe_price["id"]

            if plan.stripe_price_id and plan.stripe_price_id != new_price_id:
                stripe_client.archive_price(plan.stripe_price_id, business.stripe_account_id)
                logger.info("📦 Archived old price: %s", plan.stripe_price_id)

            plan.stripe_price_id = new_price_id
            plan.updated_at = utc_now()
            item.applied = True
            item.stripe_price_id = new_price_id
            session.add(plan)
            session.add(item)
            record_audit(
                session,
                AuditLogType.PRICE_APPLIED,
                business_id=business.id,
                metadata={"planId": plan.id, "priceId": new_price_id, "effectiveAt": item.effective_at.isoformat()},
            )
            session.commit()
            report["applied"].append({"item_id": item.id, "plan_id": plan.id, "stripe_price_id": new_price_id})
            logger.info("✅ Applied price for plan %s (%s)", plan.name, new_price_id)
        except Exception as e:
            session.rollback()
            logger.error("❌ Error applying price for plan %s: %s", item.plan_id, e)
            report["failures"].append({"item_id": item.id, "error": str(e)})
            continue

        if item.effective_at >= current_month_start:
            resumed = resume_paused_subscriptions(session, plan, new_price_id, business)
            report["resumed"] += resumed["resumed"]
            report["failures"].extend(resumed["errors"])

    return report


# ========================================
# ▶️ Resume subscriptions paused for lack of a price
# ========================================
def resume_paused_subscriptions(
    session: Session,
    plan: Plan,
    price_id: str,
    business: Optional[Business] = None,
) -> Dict[str, Any]:
    business = business or session.get(Business, plan.business_id)
    result: Dict[str, Any] = {"resumed": 0, "charged": 0, "errors": []}

    paused = session.exec(
        select(PlanSubscription).where(
            PlanSubscription.plan_id == plan.id,
            PlanSubscription.paused_at != None,  # noqa: E711
            PlanSubscription.status != SubscriptionStatus.CANCELED.value,
        )
    ).all()
    if not paused:
        return result

    for row in paused:
        try:
            current = stripe_client.retrieve_subscription(row.stripe_subscription_id, business.stripe_account_id)
            if not sget(current, "pause_collection"):
                # Already running in Stripe, just catch the mirror up
                reconcile_subscription(session, SubscriptionSnapshot.from_stripe(current))
                continue

            item_id = sget(sget(current, "items"), "data")[0]["id"]
            metadata = dict(sget(current, "metadata", {}) or {})
            metadata.update({"resumedAt": utc_now().isoformat(), "resumeReason": "PRICE_ADDED"})
            updated = stripe_client.modify_subscription(
                row.stripe_subscription_id,
                business.stripe_account_id,
                pause_collection="",
                items=[{"id": item_id, "price": price_id}],
                proration_behavior="none",
                metadata=metadata,
            )
            result["resumed"] += 1

            if row.stripe_customer_id:
                stripe_client.charge_now(row.stripe_customer_id, row.stripe_subscription_id, business.stripe_account_id)
                result["charged"] += 1

            reconcile_subscription(session, SubscriptionSnapshot.from_stripe(updated))
            resolve_alerts(session, business.id, AlertType.SUBSCRIPTION_PAUSED, subject_id=row.id)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("❌ Failed to resume subscription %s: %s", row.id, e)
            result["errors"].append({"subscription_id": row.id, "error": str(e)})

    logger.info(
        "▶️ Resume complete for plan %s: %s resumed, %s charged, %s errors",
        plan.id, result["resumed"], result["charged"], len(result["errors"]),
    )
    return result


# ========================================
# ⏰ Missing-price reminders (cron)
# ========================================
def check_missing_dynamic_prices(session: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    next_month = next_month_start(now)
    days_until = math.ceil((next_month - now).total_seconds() / 86400)
    severity = REMINDER_SCHEDULE.get(days_until)
    report: Dict[str, Any] = {"days_until_next_month": days_until, "alerts_created": 0, "emails_sent": 0, "resolved": 0}

    plans = session.exec(
        select(Plan).where(
            Plan.pricing_type == PricingType.DYNAMIC.value,
            Plan.status == PlanStatus.ACTIVE.value,
        )
    ).all()

    for plan in plans:
        has_price = session.exec(
            select(PriceQueueItem).where(
                PriceQueueItem.plan_id == plan.id,
                PriceQueueItem.effective_at == next_month,
            )
        ).first() is not None

        if has_price:
            report["resolved"] += resolve_alerts(session, plan.business_id, AlertType.MISSING_DYNAMIC_PRICE, subject_id=plan.id)
            continue
        if severity is None:
            continue

        existing = find_open_alert(session, plan.business_id, AlertType.MISSING_DYNAMIC_PRICE, subject_id=plan.id)
        if existing and existing.severity == severity.value:
            continue

        active_count = len(session.exec(
            select(PlanSubscription.id).where(
                PlanSubscription.plan_id == plan.id,
                PlanSubscription.status.in_([SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value]),
            )
        ).all())
        month_label = next_month.strftime("%B %Y")
        membership = session.get(Membership, plan.membership_id)
        raise_alert(
            session,
            plan.business_id,
            AlertType.MISSING_DYNAMIC_PRICE,
            severity,
            title=f"Missing Price: {plan.name}",
            message=f"No price set for {month_label}. {active_count} active subscription(s) will be affected.",
            subject_id=plan.id,
            metadata={
                "planId": plan.id,
                "planName": plan.name,
                "membershipId": plan.membership_id,
                "membershipName": membership.name if membership else None,
                "nextMonthDate": next_month.isoformat(),
                "activeSubscribers": active_count,
                "daysRemaining": days_until,
            },
        )
        report["alerts_created"] += 1

        business = session.get(Business, plan.business_id)
        if business and business.contact_email:
            if email_service.send_missing_price_email(
                business.contact_email, business.name, plan.name, month_label, days_until, severity.value
            ):
                report["emails_sent"] += 1

    session.commit()
    logger.info("🔍 Missing price check: %s", report)
    return report

