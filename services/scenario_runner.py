# ================================================================
# services/scenario_runner.py — Billing scenarios on Stripe test clocks
# ================================================================
"""
Admin-only QA harness: spins up a test clock, a test customer with a card,
and a subscription built by the same ``compute_subscription_params`` that
checkout uses, so each billing model can be watched as time advances.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from core import stripe_client
from core.errors import Conflict, ValidationFailed
from core.stripe_client import sget, to_datetime, to_epoch
from models.models import utc_now
from services.billing_model import (
    CohortDeferred,
    CohortImmediate,
    billing_model_from_kind,
    compute_subscription_params,
    next_cohort_date,
)

logger = logging.getLogger(__name__)

SCENARIO_TYPES = ["rolling", "cohort-immediate", "cohort-deferred"]

SCENARIO_DESCRIPTIONS = {
    "rolling": "Member is charged immediately. Future billing occurs on the same day each month (signup anniversary).",
    "cohort-immediate": "Member is charged immediately. Future billing aligns to the cohort day of each month (cohort billing).",
    "cohort-deferred": "Member gets a trial until the cohort day. First charge occurs on that day, then monthly thereafter.",
}


def _iso(timestamp: Optional[int]) -> Optional[str]:
    value = to_datetime(timestamp)
    return value.isoformat() + "Z" if value else None


def _next_steps(kind: str, frozen_time: int, anchor: Optional[int]) -> List[str]:
    if kind == "rolling" or anchor is None:
        return [
            "Advance time by 30 days to trigger first renewal",
            "Advance time by 60 days to see second renewal",
            "Check invoices list to verify billing dates",
        ]
    days = math.ceil((anchor - frozen_time) / 86400)
    if kind == "cohort-immediate":
        return [
            f"Advance time by {days} days to reach the cohort day",
            "Check that second invoice is created on the cohort day",
            "Advance another month to verify cohort alignment",
        ]
    return [
        f"Advance time by {days} days to end trial on the cohort day",
        "Check that first invoice is created when trial ends",
        "Advance another month to verify regular billing",
    ]


def summarize_invoice(invoice: Any) -> Dict[str, Any]:
    return {
        "id": sget(invoice, "id"),
        "status": sget(invoice, "status"),
        "amount_due": sget(invoice, "amount_due"),
        "amount_paid": sget(invoice, "amount_paid"),
        "created": sget(invoice, "created"),
        "billing_reason": sget(invoice, "billing_reason"),
        "period_start": sget(invoice, "period_start"),
        "period_end": sget(invoice, "period_end"),
    }


def summarize_subscription(subscription: Any) -> Dict[str, Any]:
    items = sget(sget(subscription, "items"), "data", []) or []
    first_item = items[0] if len(items) else None
    return {
        "id": sget(subscription, "id"),
        "status": sget(subscription, "status"),
        "current_period_start": sget(subscription, "current_period_start") or sget(first_item, "current_period_start"),
        "current_period_end": sget(subscription, "current_period_end") or sget(first_item, "current_period_end"),
        "trial_end": sget(subscription, "trial_end"),
        "billing_cycle_anchor": sget(subscription, "billing_cycle_anchor"),
    }


def summarize_clock(clock: Any) -> Dict[str, Any]:
    frozen_time = sget(clock, "frozen_time")
    return {
        "id": sget(clock, "id"),
        "name": sget(clock, "name"),
        "status": sget(clock, "status"),
        "frozen_time": frozen_time,
        "frozen_time_formatted": _iso(frozen_time),
    }


# ========================================
# ▶️ Run a scenario
# ========================================
def run_scenario(
    kind: str,
    price_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    cohort_billing_day: int = 1,
) -> Dict[str, Any]:
    stripe_client.require_stripe()
    model = billing_model_from_kind(kind, cohort_billing_day)

    start = start_date or utc_now()
    frozen_time = to_epoch(start)
    day_label = to_datetime(frozen_time).strftime("%Y-%m-%d")

    clock = stripe_client.create_test_clock(frozen_time, f"Scenario: {kind} - {day_label}")
    clock_id = clock["id"]
    logger.info("⏱️ Created test clock %s for %s scenario", clock_id, kind)

    customer, _ = stripe_client.create_test_customer(
        f"test-{kind}-{int(utc_now().timestamp())}@example.com",
        f"Test Customer ({kind})",
        clock_id,
    )

    effective_price_id = price_id
    if not effective_price_id:
        product = stripe_client.create_product(
            f"Test Membership ({kind})",
            None,
            metadata={"testClock": clock_id, "scenarioType": kind},
        )
        price = stripe_client.create_monthly_price(product["id"], 1000, "usd", None)
        effective_price_id = price["id"]

    params = {
        "customer": customer["id"],
        "items": [{"price": effective_price_id}],
        "metadata": {"scenarioType": kind, "testClock": clock_id},
    }
    # Params are computed against the clock's frozen time, not the wall clock
    params.update(compute_subscription_params(model, start))
    subscription = stripe_client.create_subscription(params, stripe_account=None)

    anchor = None
    if isinstance(model, (CohortImmediate, CohortDeferred)):
        anchor = to_epoch(next_cohort_date(model.cohort_billing_day, start))

    invoices = stripe_client.list_invoices(customer=customer["id"])[:5]
    logger.info("✅ Scenario %s running: subscription %s", kind, subscription["id"])

    return {
        "success": True,
        "scenario": {"type": kind, "description": SCENARIO_DESCRIPTIONS[kind], "params": params},
        "test_clock": summarize_clock(clock),
        "customer": {"id": customer["id"], "email": sget(customer, "email")},
        "subscription": summarize_subscription(subscription),
        "invoices": [summarize_invoice(invoice) for invoice in invoices],
        "next_steps": _next_steps(kind, frozen_time, anchor),
    }


# ========================================
# ⏩ Test clock controls
# ========================================
def advance_clock(
    clock_id: str,
    frozen_time: Optional[datetime] = None,
    advance_by_seconds: Optional[int] = None,
) -> Dict[str, Any]:
    stripe_client.require_stripe()
    current = stripe_client.wait_for_test_clock(clock_id)
    if sget(current, "status") == "advancing":
        raise Conflict("Test clock is still advancing after waiting. Please try again in a few seconds.")

    current_time = int(sget(current, "frozen_time"))
    if frozen_time is not None:
        target = to_epoch(frozen_time)
    elif advance_by_seconds:
        target = current_time + int(advance_by_seconds)
    else:
        raise ValidationFailed("Must provide either frozen_time or advance_by_seconds")

    if target <= current_time:
        raise ValidationFailed("Can only advance time forward, not backward")

    clock = stripe_client.advance_test_clock(clock_id, target)
    logger.info("⏩ Advanced test clock %s by %ss", clock_id, target - current_time)
    summary = summarize_clock(clock)
    summary.update({"previous_frozen_time": current_time, "advanced_by": target - current_time})
    return summary


def clock_details(clock_id: str) -> Dict[str, Any]:
    """Clock plus every customer, subscription and invoice living on it."""
    stripe_client.require_stripe()
    clock = stripe_client.retrieve_test_clock(clock_id)
    customers = []
    for customer in stripe_client.list_clock_customers(clock_id):
        customers.append({
            "id": sget(customer, "id"),
            "email": sget(customer, "email"),
            "subscriptions": [
                summarize_subscription(s) for s in stripe_client.list_customer_subscriptions(customer["id"])
            ],
            "invoices": [
                summarize_invoice(i) for i in stripe_client.list_invoices(customer=customer["id"])
            ],
        })
    return {"test_clock": summarize_clock(clock), "customers": customers}


def list_clocks() -> List[Dict[str, Any]]:
    stripe_client.require_stripe()
    return [summarize_clock(clock) for clock in stripe_client.list_test_clocks()]


def create_clock(frozen_time: Optional[datetime] = None, name: Optional[str] = None) -> Dict[str, Any]:
    stripe_client.require_stripe()
    start = frozen_time or utc_now()
    clock = stripe_client.create_test_clock(to_epoch(start), name or f"Test clock {start.strftime('%Y-%m-%d')}")
    return summarize_clock(clock)


def delete_clock(clock_id: str) -> Dict[str, Any]:
    stripe_client.require_stripe()
    stripe_client.delete_test_clock(clock_id)
    logger.info("🗑️ Deleted test clock %s", clock_id)
    return {"id": clock_id, "deleted": True}
