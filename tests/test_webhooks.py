import json

import pytest
import stripe
from sqlmodel import select

from core.config import settings
from models.models import Business, Invoice, PlanSubscription, WebhookEvent
from routes import webhooks

HEADERS = {"stripe-signature": "t=1,v1=test"}


@pytest.fixture
def deliver(client, monkeypatch):
    """Posts an event as Stripe would, skipping real signature maths."""

    def _deliver(event):
        monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig_header, secret: event)
        return client.post("/webhooks/stripe", content=json.dumps(event), headers=HEADERS)

    return _deliver


def event(event_id, event_type, data_object, account="acct_valley", created=1751328000):
    return {
        "id": event_id,
        "type": event_type,
        "account": account,
        "created": created,
        "data": {"object": data_object},
    }


def test_missing_signature_is_rejected(client):
    response = client.post("/webhooks/stripe", content=b"{}")
    assert response.status_code == 400


def test_invalid_signature_is_rejected(client, monkeypatch):
    def bad_signature(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", bad_signature)
    response = client.post("/webhooks/stripe", content=b"{}", headers=HEADERS)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature"}


def test_missing_secret_is_server_error(client, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
    response = client.post("/webhooks/stripe", content=b"{}", headers=HEADERS)
    assert response.status_code == 500


def test_subscription_updated_is_reconciled_once(
    deliver, session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    make_plan_subscription(plan, status="active")
    evt = event("evt_1", "customer.subscription.updated", stripe_subscription(status="past_due"))

    first = deliver(evt)
    second = deliver(evt)

    assert first.json()["status"] == "success"
    assert second.json()["status"] == "duplicate"
    assert session.exec(select(PlanSubscription)).one().status == "past_due"
    assert len(session.exec(select(WebhookEvent)).all()) == 1


def test_out_of_order_events_keep_latest_state(
    deliver, session, make_membership, make_plan, stripe_subscription
):
    make_plan(make_membership())
    newer = event("evt_new", "customer.subscription.updated", stripe_subscription(status="active"), created=2000000000)
    older = event("evt_old", "customer.subscription.created", stripe_subscription(status="incomplete"), created=1900000000)

    deliver(newer)
    deliver(older)

    rows = session.exec(select(PlanSubscription)).all()
    assert len(rows) == 1
    assert rows[0].status == "active"


def test_subscription_deleted_marks_canceled(
    deliver, session, make_membership, make_plan, make_plan_subscription, stripe_subscription
):
    plan = make_plan(make_membership())
    make_plan_subscription(plan, status="active")

    deliver(event("evt_del", "customer.subscription.deleted", stripe_subscription(status="canceled")))

    assert session.exec(select(PlanSubscription)).one().status == "canceled"


def test_account_updated_recomputes_business_status(deliver, session, owner):
    business = Business(
        name="New Winery", slug="new-winery", owner_id=owner.id,
        stripe_account_id="acct_new", status="ONBOARDING_PENDING",
    )
    session.add(business)
    session.commit()

    account = {
        "id": "acct_new",
        "charges_enabled": False,
        "details_submitted": True,
        "payouts_enabled": False,
        "requirements": {"currently_due": [], "past_due": []},
    }
    response = deliver(event("evt_acct", "account.updated", account, account="acct_new"))

    assert response.status_code == 200
    session.refresh(business)
    assert business.status == "PENDING_VERIFICATION"
    assert business.stripe_details_submitted is True
    assert business.state_transitions[-1]["to"] == "PENDING_VERIFICATION"


def test_invoice_paid_is_recorded(deliver, session, business, make_membership, make_plan, make_plan_subscription):
    plan = make_plan(make_membership())
    row = make_plan_subscription(plan)
    invoice = {
        "id": "in_1",
        "subscription": "sub_1",
        "status": "paid",
        "amount_due": 4500,
        "amount_paid": 4500,
        "currency": "usd",
        "billing_reason": "subscription_create",
    }

    deliver(event("evt_inv", "invoice.paid", invoice))

    stored = session.exec(select(Invoice)).one()
    assert stored.plan_subscription_id == row.id
    assert stored.business_id == business.id


def test_handler_failure_returns_500_and_records_error(deliver, session, monkeypatch):
    def boom(session, event, data_object):
        raise RuntimeError("database unavailable")

    monkeypatch.setitem(webhooks.EVENT_HANDLERS, "invoice.paid", boom)

    response = deliver(event("evt_fail", "invoice.paid", {"id": "in_x"}))

    assert response.status_code == 500
    record = session.exec(select(WebhookEvent)).one()
    assert record.processed is False
    assert "database unavailable" in record.processing_error


def test_unhandled_event_is_acknowledged(deliver):
    response = deliver(event("evt_other", "payout.paid", {"id": "po_1"}))
    assert response.status_code == 200
