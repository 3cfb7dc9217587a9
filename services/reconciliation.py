# ================================================================
# services/reconciliation.py — Keep the local mirror in step with Stripe
# ================================================================
"""
Idempotent upsert of Stripe subscriptions (and invoices) into the local
``PlanSubscription`` / ``Invoice`` tables, plus the business account sync
that feeds the onboarding state machine.

Every trigger (webhook, manual sync, bulk sync, cron) goes through
``reconcile_subscription``; replaying the same snapshot is a no-op.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core import stripe_client
from core.stripe_client import object_id, sget, to_datetime
from models.models import (
    AuditLogType,
    Business,
    Consumer,
    Invoice,
    Plan,
    PlanSubscription,
    PriceQueueItem,
    SubscriptionStatus,
    utc_now,
)
from services.audit import record_audit
from services.business_state import (
    AccountState,
    DisabledReasonPolicy,
    apply_transition,
    determine_business_state,
)

logger = logging.getLogger(__name__)

CANCELED_NOT_TRACKED = "Canceled subscription not in database (likely old)"
MISSING_NEEDS_INVESTIGATION = "Active subscription missing from database - manual investigation needed"


# ========================================
# 📦 Snapshot + result types
# ========================================
class SubscriptionSnapshot(BaseModel):
    """Normalized read of a Stripe subscription at ``observed_at``."""

    id: str
    status: str
    customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    pause_collection: Optional[Dict[str, Any]] = None
    price_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    observed_at: datetime = Field(default_factory=utc_now)

    @property
    def is_paused(self) -> bool:
        return bool(self.pause_collection)

    @classmethod
    def from_stripe(cls, subscription: Any, observed_at: Optional[datetime] = None) -> "SubscriptionSnapshot":
        items = sget(sget(subscription, "items"), "data", []) or []
        first_item = items[0] if len(items) else None

        # Newer API versions moved the period onto the subscription item
        period_start = sget(subscription, "current_period_start") or sget(first_item, "current_period_start")
        period_end = sget(subscription, "current_period_end") or sget(first_item, "current_period_end")

        pause = sget(subscription, "pause_collection")
        metadata = sget(subscription, "metadata", {}) or {}

        return cls(
            id=sget(subscription, "id"),
            status=sget(subscription, "status", SubscriptionStatus.INCOMPLETE.value),
            customer_id=object_id(sget(subscription, "customer")),
            current_period_start=to_datetime(period_start),
            current_period_end=to_datetime(period_end),
            cancel_at_period_end=bool(sget(subscription, "cancel_at_period_end", False)),
            pause_collection=dict(pause) if pause else None,
            price_id=object_id(sget(first_item, "price")),
            metadata={str(k): str(v) for k, v in dict(metadata).items()},
            observed_at=observed_at or utc_now(),
        )


class ReconcileAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FOUND_MISSING = "found_missing"
    FAILED = "failed"


class ReconcileResult(BaseModel):
    stripe_subscription_id: str
    action: ReconcileAction
    reason: Optional[str] = None
    plan_subscription_id: Optional[int] = None
    changes: List[str] = Field(default_factory=list)


class SyncReport(BaseModel):
    success: bool = True
    results: List[ReconcileResult] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    failures: List[ReconcileResult] = Field(default_factory=list)

    def add(self, result: ReconcileResult) -> None:
        self.results.append(result)
        key = result.action.value
        self.counts[key] = self.counts.get(key, 0) + 1
        if result.action == ReconcileAction.FAILED:
            self.failures.append(result)


# ========================================
# 🔎 Lookups
# ========================================
def get_plan_subscription(session: Session, stripe_subscription_id: str) -> Optional[PlanSubscription]:
    return session.exec(
        select(PlanSubscription).where(PlanSubscription.stripe_subscription_id == stripe_subscription_id)
    ).first()


def resolve_plan_for_snapshot(
    session: Session,
    snapshot: SubscriptionSnapshot,
    business: Optional[Business] = None,
) -> Optional[Plan]:
    """metadata planId first, then the plan's current price, then any applied queue price."""
    plan = None
    plan_id = snapshot.metadata.get("planId")
    if plan_id and plan_id.isdigit():
        plan = session.get(Plan, int(plan_id))

    if not plan and snapshot.price_id:
        plan = session.exec(select(Plan).where(Plan.stripe_price_id == snapshot.price_id)).first()
        if not plan:
            item = session.exec(
                select(PriceQueueItem).where(PriceQueueItem.stripe_price_id == snapshot.price_id)
            ).first()
            if item:
                plan = session.get(Plan, item.plan_id)

    if plan and business is not None and plan.business_id != business.id:
        logger.warning("⚠️ Plan %s resolved for %s belongs to another business", plan.id, snapshot.id)
        return None
    return plan


def _resolve_consumer(session: Session, snapshot: SubscriptionSnapshot) -> Optional[Consumer]:
    consumer_id = snapshot.metadata.get("consumerId")
    if consumer_id and consumer_id.isdigit():
        return session.get(Consumer, int(consumer_id))
    email = snapshot.metadata.get("consumerEmail")
    if email:
        return session.exec(select(Consumer).where(Consumer.email == email)).first()
    return None


# ========================================
# 🔁 Core upsert
# ========================================
def reconcile_subscription(
    session: Session,
    snapshot: SubscriptionSnapshot,
    create_missing: bool = False,
    business: Optional[Business] = None,
    consumer: Optional[Consumer] = None,
    now: Optional[datetime] = None,
) -> ReconcileResult:
    now = now or utc_now()
    existing = get_plan_subscription(session, snapshot.id)

    if existing is None:
        if snapshot.status == SubscriptionStatus.CANCELED.value:
            return ReconcileResult(
                stripe_subscription_id=snapshot.id,
                action=ReconcileAction.SKIPPED,
                reason=CANCELED_NOT_TRACKED,
            )

        plan = resolve_plan_for_snapshot(session, snapshot, business) if create_missing else None
        if plan is None:
            logger.warning("🔍 Subscription %s (%s) missing locally", snapshot.id, snapshot.status)
            return ReconcileResult(
                stripe_subscription_id=snapshot.id,
                action=ReconcileAction.FOUND_MISSING,
                reason=MISSING_NEEDS_INVESTIGATION,
            )

        created = _create_from_snapshot(session, snapshot, plan, consumer, now)
        if created is not None:
            return ReconcileResult(
                stripe_subscription_id=snapshot.id,
                action=ReconcileAction.CREATED,
                plan_subscription_id=created.id,
            )

        # Lost an insert race; the row exists now, so treat this as an update
        existing = get_plan_subscription(session, snapshot.id)
        if existing is None:
            raise RuntimeError(f"PlanSubscription for {snapshot.id} vanished after integrity error")

    if consumer is not None and existing.consumer_id is None:
        existing.consumer_id = consumer.id
    return _update_from_snapshot(session, existing, snapshot, now)


def _create_from_snapshot(
    session: Session,
    snapshot: SubscriptionSnapshot,
    plan: Plan,
    consumer: Optional[Consumer],
    now: datetime,
) -> Optional[PlanSubscription]:
    consumer = consumer or _resolve_consumer(session, snapshot)
    row = PlanSubscription(
        plan_id=plan.id,
        business_id=plan.business_id,
        consumer_id=consumer.id if consumer else None,
        stripe_subscription_id=snapshot.id,
        stripe_customer_id=snapshot.customer_id,
        status=snapshot.status,
        current_period_start=snapshot.current_period_start,
        current_period_end=snapshot.current_period_end,
        cancel_at_period_end=snapshot.cancel_at_period_end,
        paused_at=now if snapshot.is_paused else None,
        last_synced_at=now,
        last_event_at=snapshot.observed_at,
    )
    session.add(row)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.info("🔁 Concurrent insert for %s, re-reading", snapshot.id)
        return None
    session.refresh(row)
    logger.info("✅ Created PlanSubscription %s for %s (plan %s)", row.id, snapshot.id, plan.id)
    return row


def _whole_second(value: datetime) -> datetime:
    return value.replace(microsecond=0)


def _update_from_snapshot(
    session: Session,
    row: PlanSubscription,
    snapshot: SubscriptionSnapshot,
    now: datetime,
) -> ReconcileResult:
    row.last_synced_at = now

    # Stripe event times are whole seconds, local reads are not
    if row.last_event_at and _whole_second(snapshot.observed_at) < _whole_second(row.last_event_at):
        session.add(row)
        session.commit()
        return ReconcileResult(
            stripe_subscription_id=snapshot.id,
            action=ReconcileAction.SKIPPED,
            reason="Stale snapshot (older than last applied update)",
            plan_subscription_id=row.id,
        )

    changes: List[str] = []
    desired = {
        "status": snapshot.status,
        "current_period_start": snapshot.current_period_start,
        "current_period_end": snapshot.current_period_end,
        "cancel_at_period_end": snapshot.cancel_at_period_end,
    }
    for field, value in desired.items():
        # Missing periods in a snapshot never erase what we already know
        if value is None and field.startswith("current_period"):
            continue
        if getattr(row, field) != value:
            setattr(row, field, value)
            changes.append(field)

    if snapshot.is_paused and row.paused_at is None:
        row.paused_at = now
        changes.append("paused_at")
    elif not snapshot.is_paused and row.paused_at is not None:
        row.paused_at = None
        changes.append("paused_at")

    if not row.stripe_customer_id and snapshot.customer_id:
        row.stripe_customer_id = snapshot.customer_id
        changes.append("stripe_customer_id")

    row.last_event_at = snapshot.observed_at
    if changes:
        row.updated_at = now
    session.add(row)
    session.commit()

    if changes:
        logger.info("🔄 Synced PlanSubscription %s (%s): %s", row.id, snapshot.id, ", ".join(changes))
    return ReconcileResult(
        stripe_subscription_id=snapshot.id,
        action=ReconcileAction.UPDATED if changes else ReconcileAction.UNCHANGED,
        plan_subscription_id=row.id,
        changes=changes,
    )


def mark_subscription_canceled(session: Session, snapshot: SubscriptionSnapshot) -> ReconcileResult:
    """``customer.subscription.deleted`` carries the final object; force the canceled status."""
    if snapshot.status != SubscriptionStatus.CANCELED.value:
        snapshot = snapshot.model_copy(update={"status": SubscriptionStatus.CANCELED.value})
    return reconcile_subscription(session, snapshot)


# ========================================
# 📚 Batch sync
# ========================================
def sync_subscriptions(
    session: Session,
    subscriptions: Iterable[Any],
    create_missing: bool = False,
    business: Optional[Business] = None,
    now: Optional[datetime] = None,
) -> SyncReport:
    """Reconcile each item in turn. One bad item never stops the batch."""
    report = SyncReport()
    for item in subscriptions:
        subscription_id = sget(item, "id") if not isinstance(item, SubscriptionSnapshot) else item.id
        try:
            snapshot = item if isinstance(item, SubscriptionSnapshot) else SubscriptionSnapshot.from_stripe(item)
            result = reconcile_subscription(
                session, snapshot, create_missing=create_missing, business=business, now=now
            )
        except Exception as e:
            session.rollback()
            logger.error("❌ Failed to reconcile %s: %s", subscription_id, e)
            result = ReconcileResult(
                stripe_subscription_id=subscription_id or "unknown",
                action=ReconcileAction.FAILED,
                reason=str(e),
            )
        report.add(result)

    logger.info("📊 Subscription sync finished: %s", report.counts)
    return report


def sync_business_subscriptions(
    session: Session,
    business: Business,
    create_missing: bool = False,
) -> SyncReport:
    """Pull every subscription on the business's connected account and reconcile it."""
    if not business.stripe_account_id:
        return SyncReport()
    subscriptions = stripe_client.iter_subscriptions(business.stripe_account_id)
    return sync_subscriptions(session, subscriptions, create_missing=create_missing, business=business)


def sync_all_businesses(session: Session, create_missing: bool = False) -> Dict[str, Any]:
    """Bulk sync across connected businesses; Stripe errors are collected per business."""
    businesses = session.exec(
        select(Business).where(
            Business.stripe_account_id != None,  # noqa: E711
            Business.stripe_charges_enabled == True,  # noqa: E712
        )
    ).all()

    per_business: List[Dict[str, Any]] = []
    totals: Dict[str, int] = {}
    for business in businesses:
        try:
            report = sync_business_subscriptions(session, business, create_missing=create_missing)
        except Exception as e:
            session.rollback()
            logger.error("❌ Sync failed for business %s: %s", business.id, e)
            per_business.append({"business_id": business.id, "business_name": business.name, "error": str(e)})
            continue
        for key, count in report.counts.items():
            totals[key] = totals.get(key, 0) + count
        per_business.append({
            "business_id": business.id,
            "business_name": business.name,
            "report": report.model_dump(mode="json"),
        })

    return {"success": True, "businesses": per_business, "totals": totals}


# ========================================
# 🏦 Business account sync
# ========================================
def sync_business_account(
    session: Session,
    business: Business,
    account_state: Optional[AccountState],
    reason: str,
    triggered_by: Optional[str] = None,
    actor_user_id: Optional[int] = None,
    policy: Optional[DisabledReasonPolicy] = None,
) -> Dict[str, Any]:
    """Refresh the cached account flags and recompute the business status."""
    previous = business.status
    if account_state is not None:
        business.stripe_charges_enabled = account_state.charges_enabled
        business.stripe_details_submitted = account_state.details_submitted
        business.stripe_requirements = account_state.requirements

    new_status = determine_business_state(business.status, account_state, policy)
    changed = apply_transition(business, new_status, reason, triggered_by)
    if changed:
        record_audit(
            session,
            AuditLogType.BUSINESS_STATUS_CHANGED,
            business_id=business.id,
            actor_user_id=actor_user_id,
            metadata={"from": previous, "to": business.status, "reason": reason},
        )

    business.updated_at = utc_now()
    session.add(business)
    session.commit()
    session.refresh(business)
    return {"previous_status": previous, "status": business.status, "changed": changed}


def refresh_business_from_stripe(
    session: Session,
    business: Business,
    reason: str,
    triggered_by: Optional[str] = None,
    actor_user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Fresh ``stripe.Account.retrieve`` followed by ``sync_business_account``."""
    account_state = None
    if business.stripe_account_id:
        account = stripe_client.retrieve_account(business.stripe_account_id)
        account_state = AccountState.from_stripe(account)
    return sync_business_account(session, business, account_state, reason, triggered_by, actor_user_id)


# ========================================
# 🧾 Invoice mirror
# ========================================
def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    subscription_id = object_id(sget(invoice, "subscription"))
    if subscription_id:
        return subscription_id
    details = sget(sget(invoice, "parent"), "subscription_details")
    return object_id(sget(details, "subscription"))


def record_invoice(session: Session, invoice: Any, business: Optional[Business] = None) -> Invoice:
    """Upsert the invoice mirror by ``stripe_invoice_id``."""
    invoice_id = sget(invoice, "id")
    row = session.exec(select(Invoice).where(Invoice.stripe_invoice_id == invoice_id)).first()
    if row is None:
        row = Invoice(stripe_invoice_id=invoice_id)

    subscription_id = _invoice_subscription_id(invoice)
    plan_subscription = get_plan_subscription(session, subscription_id) if subscription_id else None

    row.stripe_subscription_id = subscription_id
    row.plan_subscription_id = plan_subscription.id if plan_subscription else row.plan_subscription_id
    row.business_id = (
        business.id if business else (plan_subscription.business_id if plan_subscription else row.business_id)
    )
    row.status = sget(invoice, "status")
    row.amount_due = int(sget(invoice, "amount_due", 0))
    row.amount_paid = int(sget(invoice, "amount_paid", 0))
    row.currency = sget(invoice, "currency", "usd")
    row.billing_reason = sget(invoice, "billing_reason")
    row.period_start = to_datetime(sget(invoice, "period_start"))
    row.period_end = to_datetime(sget(invoice, "period_end"))
    row.paid_at = to_datetime(sget(sget(invoice, "status_transitions"), "paid_at"))
    row.updated_at = utc_now()

    session.add(row)
    session.commit()
    session.refresh(row)
    logger.info("🧾 Invoice %s recorded (%s)", invoice_id, row.status)
    return row
