from datetime import datetime

import pytest
import stripe
from sqlmodel import select

from core import stripe_client
from core.security import create_token_for_user
from models.models import AuditLog, Business, Consumer, Invoice, PricingType, User
from services.metrics import business_metrics

COMPLETE_ACCOUNT = {
    "id": "acct_valley",
    "charges_enabled": True,
    "details_submitted": True,
    "payouts_enabled": True,
    "requirements": {"currently_due": [], "past_due": []},
}


# ==================================================================
#  Business onboarding
# ==================================================================
def test_create_business_starts_in_created(client, session, owner, auth_headers):
    response = client.post(
        "/businesses/", json={"name": "Hill Cellars", "slug": "hill-cellars"}, headers=auth_headers
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["status"] == "CREATED"
    assert body["owner_id"] == owner.id
    assert body["contact_email"] == owner.email
    assert session.exec(select(AuditLog).where(AuditLog.type == "BUSINESS_CREATED")).one()


def test_duplicate_business_slug_conflicts(client, business, auth_headers):
    response = client.post("/businesses/", json={"name": "Copycat", "slug": business.slug}, headers=auth_headers)

    assert response.status_code == 409
    assert response.json()["error"] == "DUPLICATE_SLUG"


def test_submit_details_then_account_link(client, session, owner, auth_headers, monkeypatch):
    created = client.post(
        "/businesses/", json={"name": "Hill Cellars", "slug": "hill-cellars"}, headers=auth_headers
    ).json()
    business_id = created["id"]

    details = client.put(
        f"/businesses/{business_id}/details",
        json={"name": "Hill Cellars Estate", "contact_email": "hello@hillcellars.com"},
        headers=auth_headers,
    )
    assert details.json()["status"] == "DETAILS_COLLECTED"

    monkeypatch.setattr(
        stripe_client, "create_connect_account", lambda email, name, business_id: {"id": "acct_hill"}
    )
    monkeypatch.setattr(
        stripe_client, "create_account_link",
        lambda account_id, business_id: {"url": "https://connect.stripe.test/setup", "expires_at": 1751328300},
    )

    response = client.post(f"/businesses/{business_id}/account-link", headers=auth_headers)

    assert response.status_code == 200, response.text
    assert response.json() == {
        "url": "https://connect.stripe.test/setup",
        "expires_at": 1751328300,
        "stripe_account_id": "acct_hill",
        "status": "ONBOARDING_PENDING",
    }
    business = session.get(Business, business_id)
    session.refresh(business)
    assert [t["to"] for t in business.state_transitions] == [
        "DETAILS_COLLECTED", "STRIPE_ACCOUNT_CREATED", "ONBOARDING_PENDING",
    ]


def test_account_link_refused_once_complete(client, business, auth_headers, monkeypatch):
    monkeypatch.setattr(stripe_client, "retrieve_account", lambda account_id: COMPLETE_ACCOUNT)

    response = client.post(f"/businesses/{business.id}/account-link", headers=auth_headers)

    assert response.status_code == 409
    assert response.json()["error"] == "ALREADY_COMPLETE"


def test_onboarding_status_uses_fresh_read(client, session, business, auth_headers, monkeypatch):
    restricted = {
        **COMPLETE_ACCOUNT,
        "charges_enabled": False,
        "requirements": {"currently_due": ["external_account"], "past_due": ["external_account"]},
    }
    monkeypatch.setattr(stripe_client, "retrieve_account", lambda account_id: restricted)

    response = client.get(f"/businesses/{business.id}/onboarding-status", headers=auth_headers)

    body = response.json()
    assert body["source"] == "stripe"
    assert body["previous_status"] == "ONBOARDING_COMPLETE"
    assert body["status"] == "RESTRICTED"
    assert body["changed"] is True
    assert body["next_action"]["action"] == "fix_requirements"
    session.refresh(business)
    assert business.stripe_charges_enabled is False


def test_onboarding_status_falls_back_to_cache(client, business, auth_headers, monkeypatch):
    def unreachable(account_id):
        raise stripe.APIConnectionError("Stripe is down")

    monkeypatch.setattr(stripe_client, "retrieve_account", unreachable)

    body = client.get(f"/businesses/{business.id}/onboarding-status", headers=auth_headers).json()

    assert body["source"] == "cache"
    assert body["status"] == "ONBOARDING_COMPLETE"
    assert body["changed"] is False


def test_onboarding_status_cache_is_re_derived(client, session, business, auth_headers, monkeypatch):
    # Stored status says onboarding, cached flags say Stripe rejected the account
    business.status = "ONBOARDING_PENDING"
    business.stripe_charges_enabled = False
    business.stripe_requirements = {"disabled_reason": "rejected.fraud", "currently_due": [], "past_due": []}
    session.add(business)
    session.commit()

    def unreachable(account_id):
        raise stripe.APIConnectionError("Stripe is down")

    monkeypatch.setattr(stripe_client, "retrieve_account", unreachable)

    body = client.get(f"/businesses/{business.id}/onboarding-status", headers=auth_headers).json()

    assert body["source"] == "cache"
    assert body["previous_status"] == "ONBOARDING_PENDING"
    assert body["status"] == "SUSPENDED"
    assert body["next_action"]["action"] == "contact_support"
    session.refresh(business)
    assert business.status == "SUSPENDED"


def test_account_link_refused_for_disabled_account(client, session, business, auth_headers, monkeypatch):
    business.status = "SUSPENDED"
    session.add(business)
    session.commit()
    rejected = {
        **COMPLETE_ACCOUNT,
        "charges_enabled": False,
        "requirements": {"disabled_reason": "rejected.fraud", "currently_due": [], "past_due": []},
    }
    links = []
    monkeypatch.setattr(stripe_client, "retrieve_account", lambda account_id: rejected)
    monkeypatch.setattr(stripe_client, "create_account_link", lambda account_id, business_id: links.append(account_id))

    response = client.post(f"/businesses/{business.id}/account-link", headers=auth_headers)

    assert response.status_code == 409
    assert response.json()["error"] == "INVALID_STATE"
    assert links == []
    session.refresh(business)
    assert business.status == "SUSPENDED"


def test_account_link_keeps_status_from_account_read(client, session, business, auth_headers, monkeypatch):
    business.status = "ONBOARDING_PENDING"
    session.add(business)
    session.commit()
    in_progress = {
        **COMPLETE_ACCOUNT,
        "charges_enabled": False,
        "details_submitted": False,
        "requirements": {"currently_due": ["business_type"], "past_due": []},
    }
    monkeypatch.setattr(stripe_client, "retrieve_account", lambda account_id: in_progress)
    monkeypatch.setattr(
        stripe_client, "create_account_link",
        lambda account_id, business_id: {"url": "https://connect.stripe.test/resume", "expires_at": None},
    )

    response = client.post(f"/businesses/{business.id}/account-link", headers=auth_headers)

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "STRIPE_ONBOARDING_IN_PROGRESS"


def test_manual_sync_reads_account_once(client, session, business, auth_headers, monkeypatch):
    business.status = "PENDING_VERIFICATION"
    session.add(business)
    session.commit()
    reads = []

    def retrieve(account_id):
        reads.append(account_id)
        return COMPLETE_ACCOUNT

    monkeypatch.setattr(stripe_client, "retrieve_account", retrieve)

    response = client.post(f"/businesses/{business.id}/sync-stripe", headers=auth_headers)

    assert response.json()["status"] == "ONBOARDING_COMPLETE"
    assert reads == ["acct_valley"]
    session.refresh(business)
    assert business.state_transitions[-1]["reason"] == "Manual sync from Stripe"


def test_manual_sync_surfaces_stripe_errors(client, business, auth_headers, monkeypatch):
    def unreachable(account_id):
        raise stripe.APIConnectionError("Stripe is down")

    monkeypatch.setattr(stripe_client, "retrieve_account", unreachable)

    response = client.post(f"/businesses/{business.id}/sync-stripe", headers=auth_headers)

    assert response.status_code == 502


# ==================================================================
#  Memberships & plans
# ==================================================================
def test_cohort_membership_without_day_is_rejected(client, business, auth_headers):
    response = client.post(
        f"/businesses/{business.id}/memberships/",
        json={"name": "Cohort", "slug": "cohort", "billing_anchor": "NEXT_INTERVAL"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_duplicate_membership_slug_conflicts(client, business, auth_headers):
    body = {"name": "Reds", "slug": "reds", "billing_anchor": "NEXT_INTERVAL", "cohort_billing_day": 1}
    first = client.post(f"/businesses/{business.id}/memberships/", json=body, headers=auth_headers)
    second = client.post(f"/businesses/{business.id}/memberships/", json=body, headers=auth_headers)

    assert first.status_code == 201
    assert first.json()["cohort_billing_day"] == 1
    assert second.status_code == 409
    assert second.json()["error"] == "DUPLICATE_SLUG"


def test_rolling_membership_drops_cohort_day(client, business, auth_headers):
    response = client.post(
        f"/businesses/{business.id}/memberships/",
        json={"name": "Rolling", "slug": "rolling", "cohort_billing_day": 12},
        headers=auth_headers,
    )
    assert response.json()["cohort_billing_day"] is None


def test_fixed_plan_creates_product_and_price(client, business, make_membership, auth_headers, monkeypatch):
    membership = make_membership()
    monkeypatch.setattr(stripe_client, "create_product", lambda name, account, metadata=None: {"id": "prod_new"})
    monkeypatch.setattr(
        stripe_client, "create_monthly_price",
        lambda product, amount, currency, account, metadata=None: {"id": f"price_{product}_{amount}"},
    )

    response = client.post(
        f"/businesses/{business.id}/plans/",
        json={"membership_id": membership.id, "name": "Six Bottles", "base_price": 6000},
        headers=auth_headers,
    )

    assert response.status_code == 201, response.text
    assert response.json()["stripe_product_id"] == "prod_new"
    assert response.json()["stripe_price_id"] == "price_prod_new_6000"


def test_fixed_plan_requires_base_price(client, business, make_membership, auth_headers):
    membership = make_membership()
    response = client.post(
        f"/businesses/{business.id}/plans/",
        json={"membership_id": membership.id, "name": "Six Bottles"},
        headers=auth_headers,
    )
    assert response.status_code == 400


def test_queue_price_for_dynamic_plan(client, business, make_membership, make_plan, auth_headers):
    plan = make_plan(make_membership(), pricing_type=PricingType.DYNAMIC)

    response = client.post(
        f"/businesses/{business.id}/plans/{plan.id}/prices",
        json={"effective_month": "2099-03-15", "price": 7200},
        headers=auth_headers,
    )

    assert response.status_code == 201, response.text
    assert response.json()["effective_at"].startswith("2099-03-01")
    listed = client.get(f"/businesses/{business.id}/plans/{plan.id}/prices", headers=auth_headers).json()
    assert [item["price"] for item in listed] == [7200]


# ==================================================================
#  Metrics
# ==================================================================
def test_active_members_counted_once_across_plans(
    session, business, make_membership, make_plan, make_plan_subscription
):
    reds = make_plan(make_membership("reds"), name="Reds")
    whites = make_plan(make_membership("whites"), name="Whites")
    ann = Consumer(email="ann@example.com")
    bob = Consumer(email="bob@example.com")
    session.add_all([ann, bob])
    session.commit()

    make_plan_subscription(reds, "sub_a1", "active", consumer_id=ann.id)
    make_plan_subscription(whites, "sub_a2", "trialing", consumer_id=ann.id)
    make_plan_subscription(reds, "sub_b1", "canceled", consumer_id=bob.id)
    make_plan_subscription(whites, "sub_b2", "active", consumer_id=bob.id, paused_at=datetime(2025, 6, 2))
    session.add(Invoice(
        stripe_invoice_id="in_1", business_id=business.id, status="paid",
        amount_paid=4500, paid_at=datetime(2025, 6, 3),
    ))
    session.commit()

    metrics = business_metrics(session, business.id, now=datetime(2025, 6, 20))

    assert metrics["active_members"] == 2
    assert metrics["subscriptions_by_status"] == {"active": 2, "trialing": 1, "canceled": 1}
    assert metrics["paused_subscriptions"] == 1
    assert metrics["revenue_this_month"] == 4500


@pytest.mark.parametrize("path", ["", "/metrics", "/alerts"])
def test_business_routes_require_ownership(client, session, business, path):
    other = User(email="other@example.com")
    session.add(other)
    session.commit()
    session.refresh(other)

    response = client.get(
        f"/businesses/{business.id}{path}",
        headers={"Authorization": f"Bearer {create_token_for_user(other)}"},
    )
    assert response.status_code == 403
