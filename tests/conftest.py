import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_unit")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_unit")
os.environ.setdefault("SECRET_KEY", "unit-test-secret")
os.environ.setdefault("SENDGRID_API_KEY", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models.models  # noqa: F401
from core.database import get_session
from core.security import create_token_for_user
from main import app
from models.models import (
    BillingAnchor,
    Business,
    BusinessStatus,
    Membership,
    MembershipStatus,
    Plan,
    PlanSubscription,
    PricingType,
    User,
)


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


# ========================================
# 👤 Users & auth
# ========================================
@pytest.fixture
def owner(session: Session) -> User:
    user = User(email="owner@valleyvines.com", full_name="Wendy Owner")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def admin(session: Session) -> User:
    user = User(email="admin@wineclub.com", full_name="Platform Admin", is_platform_admin=True)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def auth_headers(owner: User):
    return {"Authorization": f"Bearer {create_token_for_user(owner)}"}


@pytest.fixture
def admin_headers(admin: User):
    return {"Authorization": f"Bearer {create_token_for_user(admin)}"}


# ========================================
# 🍷 Tenant fixtures
# ========================================
@pytest.fixture
def business(session: Session, owner: User) -> Business:
    business = Business(
        name="Valley Vines",
        slug="valley-vines",
        contact_email=owner.email,
        owner_id=owner.id,
        stripe_account_id="acct_valley",
        stripe_charges_enabled=True,
        stripe_details_submitted=True,
        status=BusinessStatus.ONBOARDING_COMPLETE.value,
    )
    session.add(business)
    session.commit()
    session.refresh(business)
    return business


@pytest.fixture
def make_membership(session: Session, business: Business):
    def _make(slug="reds", billing_anchor=BillingAnchor.IMMEDIATE, cohort_billing_day=None, charge_immediately=True):
        membership = Membership(
            business_id=business.id,
            name=slug.title(),
            slug=slug,
            status=MembershipStatus.ACTIVE.value,
            billing_anchor=billing_anchor.value,
            cohort_billing_day=cohort_billing_day,
            charge_immediately=charge_immediately,
        )
        session.add(membership)
        session.commit()
        session.refresh(membership)
        return membership

    return _make


@pytest.fixture
def make_plan(session: Session, business: Business):
    def _make(membership, pricing_type=PricingType.FIXED, stripe_price_id="price_fixed", name="Six Bottles"):
        plan = Plan(
            membership_id=membership.id,
            business_id=business.id,
            name=name,
            pricing_type=pricing_type.value,
            base_price=4500 if pricing_type == PricingType.FIXED else None,
            stripe_product_id="prod_club",
            stripe_price_id=stripe_price_id if pricing_type == PricingType.FIXED else None,
        )
        session.add(plan)
        session.commit()
        session.refresh(plan)
        return plan

    return _make


@pytest.fixture
def make_plan_subscription(session: Session, business: Business):
    def _make(plan, stripe_subscription_id="sub_1", status="active", **fields):
        row = PlanSubscription(
            plan_id=plan.id,
            business_id=business.id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id="cus_1",
            status=status,
            **fields,
        )
        session.add(row)
        session.commit()
        session.refresh(row)
        return row

    return _make


@pytest.fixture
def stripe_subscription():
    """Builds a Stripe-shaped subscription payload (plain dict)."""

    def _build(
        sub_id="sub_1",
        status="active",
        customer="cus_1",
        price="price_fixed",
        period_start=1751328000,
        period_end=1753920000,
        cancel_at_period_end=False,
        pause_collection=None,
        metadata=None,
    ):
        return {
            "id": sub_id,
            "object": "subscription",
            "status": status,
            "customer": customer,
            "current_period_start": period_start,
            "current_period_end": period_end,
            "cancel_at_period_end": cancel_at_period_end,
            "pause_collection": pause_collection,
            "metadata": metadata or {},
            "items": {"data": [{"id": "si_1", "price": {"id": price}}]},
        }

    return _build
