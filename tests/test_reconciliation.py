from datetime import datetime, timedelta

from sqlmodel import select

from core import stripe_client
from models.models import Consumer, Invoice, PlanSubscription
from services.reconciliation import (
    CANCELED_NOT_TRACKED,
    MISSING_NEEDS_INVESTIGATION,
    ReconcileAction,
    SubscriptionSnapshot,
    mark_subscription_canceled,
    reconcile_subscription,
    record_invoice,
    sync_all_businesses,
    sync_subscriptions,
)

T0 = datetime(2025, 6, 15, 12, 0)


def snapshot(build, observed_at=T0, **kwargs):
    return SubscriptionSnapshot.from_stripe(build(**kwargs), observed_at=observed_at)


def rows(session):
    return session.exec(select(PlanSubscription)).all()


def test_canceled_unknown_subscription_is_skipped(session, stripe_subscription):
    result = reconcile_subscription(session, snapshot(stripe_subscription, status="canceled"), create_missing=True)

    assert result.action == ReconcileAction.SKIPPED
    assert result.reason == CANCELED_NOT_TRACKED
    assert rows(session) == []


def test_past_due_update_refreshes_row_once(
    session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    row = make_plan_subscription(plan, status="active", last_synced_at=T0 - timedelta(days=1))

    result = reconcile_subscription(session, snapshot(stripe_subscription, status="past_due"), now=T0)
    assert result.action == ReconcileAction.UPDATED
    assert "status" in result.changes

    session.refresh(row)
    assert row.status == "past_due"
    assert row.last_synced_at == T0

    again = reconcile_subscription(
        session, snapshot(stripe_subscription, status="past_due"), now=T0 + timedelta(minutes=5)
    )
    assert again.action == ReconcileAction.UNCHANGED
    assert again.changes == []
    session.refresh(row)
    assert row.last_synced_at == T0 + timedelta(minutes=5)


def test_missing_active_subscription_is_reported(session, stripe_subscription):
    result = reconcile_subscription(session, snapshot(stripe_subscription, price="price_unknown"))

    assert result.action == ReconcileAction.FOUND_MISSING
    assert result.reason == MISSING_NEEDS_INVESTIGATION
    assert rows(session) == []


def test_create_missing_resolves_plan_from_metadata(session, business, make_membership, make_plan, stripe_subscription):
    plan = make_plan(make_membership(), stripe_price_id="price_other")
    consumer = Consumer(email="ann@example.com", name="Ann")
    session.add(consumer)
    session.commit()

    result = reconcile_subscription(
        session,
        snapshot(
            stripe_subscription,
            price="price_not_on_plan",
            metadata={"planId": str(plan.id), "consumerEmail": "ann@example.com"},
        ),
        create_missing=True,
        business=business,
    )

    assert result.action == ReconcileAction.CREATED
    row = rows(session)[0]
    assert row.plan_id == plan.id
    assert row.consumer_id == consumer.id
    assert row.current_period_start == datetime(2025, 7, 1)


def test_create_missing_resolves_plan_from_price(session, make_membership, make_plan, stripe_subscription):
    plan = make_plan(make_membership(), stripe_price_id="price_fixed")

    result = reconcile_subscription(session, snapshot(stripe_subscription), create_missing=True)

    assert result.action == ReconcileAction.CREATED
    assert rows(session)[0].plan_id == plan.id


def test_duplicates_and_reordering_leave_one_row_in_latest_state(
    session, make_membership, make_plan, stripe_subscription
):
    make_plan(make_membership())
    older = snapshot(stripe_subscription, observed_at=T0, status="trialing")
    newer = snapshot(stripe_subscription, observed_at=T0 + timedelta(hours=1), status="active")

    for snap in [newer, older, newer, older, older]:
        reconcile_subscription(session, snap, create_missing=True)

    all_rows = rows(session)
    assert len(all_rows) == 1
    assert all_rows[0].status == "active"


def test_stale_snapshot_is_skipped(session, make_membership, make_plan, make_plan_subscription, stripe_subscription):
    plan = make_plan(make_membership())
    make_plan_subscription(plan, status="active", last_event_at=T0)

    result = reconcile_subscription(
        session, snapshot(stripe_subscription, observed_at=T0 - timedelta(seconds=1), status="unpaid")
    )

    assert result.action == ReconcileAction.SKIPPED
    assert rows(session)[0].status == "active"


def test_event_in_same_second_as_local_read_applies(
    session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    # Local API read stamped mid-second; the webhook only carries whole seconds
    make_plan_subscription(plan, status="active", last_event_at=T0 + timedelta(microseconds=750000))

    result = reconcile_subscription(session, snapshot(stripe_subscription, observed_at=T0, status="past_due"))

    assert result.action == ReconcileAction.UPDATED
    assert rows(session)[0].status == "past_due"


def test_pause_collection_sets_and_clears_paused_at(
    session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    row = make_plan_subscription(plan)

    reconcile_subscription(session, snapshot(stripe_subscription, pause_collection={"behavior": "void"}), now=T0)
    session.refresh(row)
    assert row.paused_at == T0

    reconcile_subscription(session, snapshot(stripe_subscription, observed_at=T0 + timedelta(days=1)))
    session.refresh(row)
    assert row.paused_at is None


def test_missing_period_never_erases_known_period(
    session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    row = make_plan_subscription(plan, current_period_end=datetime(2025, 7, 31))

    reconcile_subscription(session, snapshot(stripe_subscription, period_start=None, period_end=None))
    session.refresh(row)
    assert row.current_period_end == datetime(2025, 7, 31)


def test_deleted_subscription_is_marked_canceled(
    session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    row = make_plan_subscription(plan)

    result = mark_subscription_canceled(session, snapshot(stripe_subscription, status="active"))

    assert result.action == ReconcileAction.UPDATED
    session.refresh(row)
    assert row.status == "canceled"


def test_batch_collects_failures_without_throwing(
    session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    make_plan_subscription(plan, stripe_subscription_id="sub_ok", status="active")

    items = [
        stripe_subscription(sub_id="sub_ok", status="past_due"),
        {"id": "sub_broken", "status": "active", "current_period_start": "soon"},
        stripe_subscription(sub_id="sub_old", status="canceled"),
        stripe_subscription(sub_id="sub_lost", price="price_nowhere"),
    ]
    report = sync_subscriptions(session, items)

    assert report.success is True
    assert report.counts == {"updated": 1, "failed": 1, "skipped": 1, "found_missing": 1}
    assert report.failures[0].stripe_subscription_id == "sub_broken"


def test_bulk_sync_reads_connected_accounts(
    session, business, make_membership, make_plan, make_plan_subscription, stripe_subscription, monkeypatch
):
    plan = make_plan(make_membership())
    make_plan_subscription(plan, status="active")
    seen = []

    def fake_iter(account_id, status="all"):
        seen.append(account_id)
        return iter([stripe_subscription(status="unpaid")])

    monkeypatch.setattr(stripe_client, "iter_subscriptions", fake_iter)

    summary = sync_all_businesses(session)

    assert seen == ["acct_valley"]
    assert summary["totals"] == {"updated": 1}
    assert rows(session)[0].status == "unpaid"


def test_invoice_mirror_upserts(session, make_membership, make_plan, make_plan_subscription):
    plan = make_plan(make_membership())
    row = make_plan_subscription(plan)
    invoice = {
        "id": "in_1",
        "status": "open",
        "amount_due": 4500,
        "amount_paid": 0,
        "currency": "usd",
        "billing_reason": "subscription_cycle",
        "parent": {"subscription_details": {"subscription": "sub_1"}},
        "period_start": 1751328000,
        "period_end": 1753920000,
    }
    record_invoice(session, invoice)
    record_invoice(session, {**invoice, "status": "paid", "amount_paid": 4500,
                             "status_transitions": {"paid_at": 1751328100}})

    invoices = session.exec(select(Invoice)).all()
    assert len(invoices) == 1
    assert invoices[0].status == "paid"
    assert invoices[0].plan_subscription_id == row.id
    assert invoices[0].business_id == row.business_id
    assert invoices[0].paid_at is not None
