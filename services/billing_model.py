# ================================================================
# services/billing_model.py — Billing model selection + price lookup
# ================================================================
"""
A membership's billing configuration is turned into exactly one of three
billing models, and each model into exactly one set of Stripe subscription
creation parameters:

- Rolling: charge at signup, renew on the signup anniversary.
- CohortImmediate: charge at signup, renewals anchored to the cohort day.
- CohortDeferred: trial until the cohort day, then bill monthly on it.
"""
import calendar
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session, select

from core.errors import ErrorCode, PreconditionFailed, ValidationFailed, dynamic_price_not_set
from core.stripe_client import to_epoch
from models.models import BillingAnchor, Membership, Plan, PriceQueueItem, PricingType

logger = logging.getLogger(__name__)


# ========================================
# 🏷️ Billing models (tagged union)
# ========================================
class Rolling(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["rolling"] = "rolling"


class CohortImmediate(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["cohort-immediate"] = "cohort-immediate"
    cohort_billing_day: int = Field(ge=1, le=31)


class CohortDeferred(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["cohort-deferred"] = "cohort-deferred"
    cohort_billing_day: int = Field(ge=1, le=31)


BillingModel = Union[Rolling, CohortImmediate, CohortDeferred]


def validate_membership_billing(billing_anchor: str, cohort_billing_day: Optional[int]) -> None:
    """Reject a cohort membership without a usable billing day."""
    if BillingAnchor(billing_anchor) != BillingAnchor.NEXT_INTERVAL:
        return
    if cohort_billing_day is None:
        raise ValidationFailed("Cohort billing day is required when billing anchor is NEXT_INTERVAL")
    if not 1 <= int(cohort_billing_day) <= 31:
        raise ValidationFailed("Cohort billing day must be between 1 and 31")


def billing_model_for(membership: Membership) -> BillingModel:
    validate_membership_billing(membership.billing_anchor, membership.cohort_billing_day)
    if BillingAnchor(membership.billing_anchor) == BillingAnchor.IMMEDIATE:
        return Rolling()
    if membership.charge_immediately:
        return CohortImmediate(cohort_billing_day=membership.cohort_billing_day)
    return CohortDeferred(cohort_billing_day=membership.cohort_billing_day)


def billing_model_from_kind(kind: str, cohort_billing_day: int = 1) -> BillingModel:
    """Used by the scenario runner, which names the model directly."""
    if kind == "rolling":
        return Rolling()
    if kind == "cohort-immediate":
        return CohortImmediate(cohort_billing_day=cohort_billing_day)
    if kind == "cohort-deferred":
        return CohortDeferred(cohort_billing_day=cohort_billing_day)
    raise ValidationFailed(
        "Invalid scenario type. Must be one of: rolling, cohort-immediate, cohort-deferred"
    )


# ========================================
# 📅 Cohort date
# ========================================
def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _clamped(year: int, month: int, day: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last_day), tzinfo=timezone.utc)


def next_cohort_date(cohort_billing_day: int, now: datetime) -> datetime:
    """
    Next occurrence of the cohort day at 00:00 UTC, strictly after ``now``.

    Days past the end of a short month land on its last day (31 -> Feb 28/29),
    which is where Stripe's ``day_of_month`` anchor lands too.
    """
    if not 1 <= cohort_billing_day <= 31:
        raise ValidationFailed("Cohort billing day must be between 1 and 31")

    now = _as_utc(now)
    candidate = _clamped(now.year, now.month, cohort_billing_day)
    if now.day < candidate.day:
        return candidate

    first_of_next = (now.replace(day=1) + timedelta(days=32)).replace(day=1)
    return _clamped(first_of_next.year, first_of_next.month, cohort_billing_day)


# ========================================
# ⚙️ Subscription parameters
# ========================================
def compute_subscription_params(model: BillingModel, now: datetime) -> Dict[str, Any]:
    """The model-specific part of ``stripe.Subscription.create`` params."""
    if isinstance(model, Rolling):
        return {}

    anchor = to_epoch(next_cohort_date(model.cohort_billing_day, now))
    if isinstance(model, CohortImmediate):
        return {
            "billing_cycle_anchor": anchor,
            "proration_behavior": "none",
        }
    if isinstance(model, CohortDeferred):
        return {
            "trial_end": anchor,
            "billing_cycle_anchor_config": {"day_of_month": model.cohort_billing_day},
        }
    raise TypeError(f"Unknown billing model: {model!r}")


def build_subscription_create_params(
    customer_id: str,
    price_id: str,
    model: BillingModel,
    now: datetime,
    default_payment_method: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "customer": customer_id,
        "items": [{"price": price_id}],
        "metadata": metadata or {},
        "expand": ["latest_invoice.payment_intent"],
    }
    if default_payment_method:
        params["default_payment_method"] = default_payment_method
    params.update(compute_subscription_params(model, now))
    return params


# ========================================
# 💲 Price resolution
# ========================================
def month_bounds(at: datetime):
    """(first of month, first of next month) as naive UTC."""
    at = _as_utc(at).replace(tzinfo=None)
    start = at.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = (start + timedelta(days=32)).replace(day=1)
    return start, end


def current_price_item(session: Session, plan: Plan, at: datetime) -> Optional[PriceQueueItem]:
    """Applied queue item whose effective month is the month of ``at``."""
    start, end = month_bounds(at)
    return session.exec(
        select(PriceQueueItem)
        .where(
            PriceQueueItem.plan_id == plan.id,
            PriceQueueItem.applied == True,  # noqa: E712
            PriceQueueItem.effective_at >= start,
            PriceQueueItem.effective_at < end,
        )
        # A month re-priced after it was applied has several applied rows; the newest is live
        .order_by(PriceQueueItem.effective_at.desc(), PriceQueueItem.id.desc())
    ).first()


def resolve_price_for_plan(session: Session, plan: Plan, now: datetime) -> str:
    """Stripe price id to subscribe with. Never falls back to another month's price."""
    if PricingType(plan.pricing_type) == PricingType.FIXED:
        if not plan.stripe_price_id:
            raise PreconditionFailed("Plan price not configured", code=ErrorCode.PRICE_NOT_CONFIGURED)
        return plan.stripe_price_id

    item = current_price_item(session, plan, now)
    if not item or not item.stripe_price_id:
        logger.warning("❌ No dynamic price for plan %s in %s", plan.id, now.strftime("%Y-%m"))
        raise dynamic_price_not_set(plan.name)
    return item.stripe_price_id
