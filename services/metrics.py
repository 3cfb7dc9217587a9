# services/metrics.py
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlmodel import Session, func, select

from models.models import Invoice, PlanSubscription, utc_now
from services.billing_model import month_bounds

# A consumer with several plans is still one member
DISTINCT_MEMBER_COUNT_SQL = text(
    """
    SELECT COUNT(DISTINCT consumer_id)
    FROM plan_subscription
    WHERE business_id = :business_id
      AND consumer_id IS NOT NULL
      AND status IN ('active', 'trialing', 'past_due', 'paused')
    """
)


def distinct_member_count(session: Session, business_id: int) -> int:
    return int(session.execute(DISTINCT_MEMBER_COUNT_SQL, {"business_id": business_id}).scalar() or 0)


def business_metrics(session: Session, business_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Dashboard numbers: members, subscription status breakdown, revenue this month."""
    now = now or utc_now()
    rows = session.exec(
        select(PlanSubscription.status, func.count(PlanSubscription.id))
        .where(PlanSubscription.business_id == business_id)
        .group_by(PlanSubscription.status)
    ).all()
    by_status = {status: count for status, count in rows}

    paused = session.exec(
        select(func.count(PlanSubscription.id)).where(
            PlanSubscription.business_id == business_id,
            PlanSubscription.paused_at != None,  # noqa: E711
        )
    ).one()

    start, end = month_bounds(now)
    revenue = session.exec(
        select(func.coalesce(func.sum(Invoice.amount_paid), 0)).where(
            Invoice.business_id == business_id,
            Invoice.status == "paid",
            Invoice.paid_at >= start,
            Invoice.paid_at < end,
        )
    ).one()

    return {
        "active_members": distinct_member_count(session, business_id),
        "subscriptions_by_status": by_status,
        "paused_subscriptions": int(paused or 0),
        "revenue_this_month": int(revenue or 0),
    }
