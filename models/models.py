# wineclub_backend/models.py
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint, Column, JSON


def utc_now() -> datetime:
    """Naive UTC timestamp, the convention for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================
# ENUMS
# ============================================================
class BusinessStatus(str, Enum):
    CREATED = "CREATED"
    DETAILS_COLLECTED = "DETAILS_COLLECTED"
    STRIPE_ACCOUNT_CREATED = "STRIPE_ACCOUNT_CREATED"
    STRIPE_ONBOARDING_REQUIRED = "STRIPE_ONBOARDING_REQUIRED"
    STRIPE_ONBOARDING_IN_PROGRESS = "STRIPE_ONBOARDING_IN_PROGRESS"
    ONBOARDING_PENDING = "ONBOARDING_PENDING"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    RESTRICTED = "RESTRICTED"
    ONBOARDING_COMPLETE = "ONBOARDING_COMPLETE"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"
    SUSPENDED = "SUSPENDED"


class BillingAnchor(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    NEXT_INTERVAL = "NEXT_INTERVAL"


class MembershipStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class PlanStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class PricingType(str, Enum):
    FIXED = "FIXED"
    DYNAMIC = "DYNAMIC"


class SubscriptionStatus(str, Enum):
    """Stripe's subscription vocabulary, mirrored as-is."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PAUSED = "paused"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


# Statuses that block a second subscription to the same plan
OPEN_SUBSCRIPTION_STATUSES = [
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.PAUSED.value,
]


class AuditLogType(str, Enum):
    BUSINESS_CREATED = "BUSINESS_CREATED"
    BUSINESS_STATUS_CHANGED = "BUSINESS_STATUS_CHANGED"
    STRIPE_ACCOUNT_CREATED = "STRIPE_ACCOUNT_CREATED"
    MEMBERSHIP_CREATED = "MEMBERSHIP_CREATED"
    PLAN_CREATED = "PLAN_CREATED"
    PRICE_QUEUED = "PRICE_QUEUED"
    PRICE_APPLIED = "PRICE_APPLIED"
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_PAUSED = "SUBSCRIPTION_PAUSED"
    SUBSCRIPTION_RESUMED = "SUBSCRIPTION_RESUMED"
    SUBSCRIPTION_CANCELED = "SUBSCRIPTION_CANCELED"


class AlertType(str, Enum):
    MISSING_DYNAMIC_PRICE = "MISSING_DYNAMIC_PRICE"
    SUBSCRIPTION_PAUSED = "SUBSCRIPTION_PAUSED"


class AlertSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"


# ============================================================
# USER (business owner / platform staff)
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=255, nullable=False)
    full_name: Optional[str] = Field(default=None, max_length=100)
    is_platform_admin: bool = Field(default=False, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)

    businesses: List["Business"] = Relationship(back_populates="owner")


# ============================================================
# BUSINESS (tenant)
# ============================================================
class Business(SQLModel, table=True):
    __tablename__ = "business"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    slug: str = Field(max_length=60, unique=True, index=True)
    contact_email: Optional[str] = Field(default=None, max_length=255)
    owner_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    # ✅ Stripe Connect mirror (cache of the last account read)
    stripe_account_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)
    stripe_charges_enabled: bool = Field(default=False)
    stripe_details_submitted: bool = Field(default=False)
    stripe_requirements: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    status: str = Field(default=BusinessStatus.CREATED.value, max_length=40, index=True)
    state_transitions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    owner: Optional["User"] = Relationship(back_populates="businesses")
    memberships: List["Membership"] = Relationship(back_populates="business")
    plans: List["Plan"] = Relationship(back_populates="business")


# ============================================================
# MEMBERSHIP (product line, owns the billing anchor policy)
# ============================================================
class Membership(SQLModel, table=True):
    __tablename__ = "membership"
    __table_args__ = (UniqueConstraint("business_id", "slug", name="uq_membership_business_slug"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    business_id: int = Field(foreign_key="business.id", index=True)
    name: str = Field(max_length=100)
    slug: str = Field(max_length=60)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: str = Field(default=MembershipStatus.DRAFT.value, max_length=20)

    billing_anchor: str = Field(default=BillingAnchor.IMMEDIATE.value, max_length=20)
    cohort_billing_day: Optional[int] = Field(default=None, ge=1, le=31)
    charge_immediately: bool = Field(default=True)
    pause_enabled: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    business: Optional["Business"] = Relationship(back_populates="memberships")
    plans: List["Plan"] = Relationship(back_populates="membership")


# ============================================================
# PLAN
# ============================================================
class Plan(SQLModel, table=True):
    __tablename__ = "plan"

    id: Optional[int] = Field(default=None, primary_key=True)
    membership_id: int = Field(foreign_key="membership.id", index=True)
    business_id: int = Field(foreign_key="business.id", index=True)
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: str = Field(default=PlanStatus.ACTIVE.value, max_length=20)

    pricing_type: str = Field(default=PricingType.FIXED.value, max_length=20)
    base_price: Optional[int] = Field(default=None, description="Cents, fixed pricing only")
    currency: str = Field(default="usd", max_length=3)

    stripe_product_id: Optional[str] = Field(default=None, max_length=255)
    stripe_price_id: Optional[str] = Field(default=None, max_length=255, index=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    membership: Optional["Membership"] = Relationship(back_populates="plans")
    business: Optional["Business"] = Relationship(back_populates="plans")
    price_queue: List["PriceQueueItem"] = Relationship(back_populates="plan")
    subscriptions: List["PlanSubscription"] = Relationship(back_populates="plan")


# ============================================================
# PRICE QUEUE (dynamic pricing schedule)
# ============================================================
class PriceQueueItem(SQLModel, table=True):
    __tablename__ = "price_queue_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    plan_id: int = Field(foreign_key="plan.id", index=True)
    effective_at: datetime = Field(index=True, description="First day of the month, 00:00 UTC")
    price: int = Field(description="Cents")
    applied: bool = Field(default=False, index=True)
    stripe_price_id: Optional[str] = Field(default=None, max_length=255, index=True)

    created_at: datetime = Field(default_factory=utc_now)

    plan: Optional["Plan"] = Relationship(back_populates="price_queue")


# ============================================================
# CONSUMER (end customer)
# ============================================================
class Consumer(SQLModel, table=True):
    __tablename__ = "consumer"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=40)
    created_at: datetime = Field(default_factory=utc_now)

    subscriptions: List["PlanSubscription"] = Relationship(back_populates="consumer")


# ============================================================
# PLAN SUBSCRIPTION (local mirror of a Stripe subscription)
# ============================================================
class PlanSubscription(SQLModel, table=True):
    __tablename__ = "plan_subscription"

    id: Optional[int] = Field(default=None, primary_key=True)
    plan_id: int = Field(foreign_key="plan.id", index=True)
    business_id: int = Field(foreign_key="business.id", index=True)
    consumer_id: Optional[int] = Field(default=None, foreign_key="consumer.id", index=True)

    stripe_subscription_id: str = Field(unique=True, index=True, max_length=255)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)

    status: str = Field(default=SubscriptionStatus.INCOMPLETE.value, max_length=30, index=True)
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = Field(default=False)
    paused_at: Optional[datetime] = None

    last_synced_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = Field(default=None, description="Observation time of the newest applied snapshot")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    plan: Optional["Plan"] = Relationship(back_populates="subscriptions")
    consumer: Optional["Consumer"] = Relationship(back_populates="subscriptions")


# ============================================================
# INVOICE (mirror of Stripe invoices)
# ============================================================
class Invoice(SQLModel, table=True):
    __tablename__ = "invoice"

    id: Optional[int] = Field(default=None, primary_key=True)
    stripe_invoice_id: str = Field(unique=True, index=True, max_length=255)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)
    plan_subscription_id: Optional[int] = Field(default=None, foreign_key="plan_subscription.id", index=True)
    business_id: Optional[int] = Field(default=None, foreign_key="business.id", index=True)

    status: Optional[str] = Field(default=None, max_length=20)
    amount_due: int = Field(default=0)
    amount_paid: int = Field(default=0)
    currency: str = Field(default="usd", max_length=3)
    billing_reason: Optional[str] = Field(default=None, max_length=50)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ============================================================
# AUDIT LOG (append-only)
# ============================================================
class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    business_id: Optional[int] = Field(default=None, foreign_key="business.id", index=True)
    actor_user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    type: str = Field(max_length=50, index=True)
    event_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utc_now)


# ============================================================
# BUSINESS ALERT
# ============================================================
class BusinessAlert(SQLModel, table=True):
    __tablename__ = "business_alert"

    id: Optional[int] = Field(default=None, primary_key=True)
    business_id: int = Field(foreign_key="business.id", index=True)
    type: str = Field(max_length=50, index=True)
    severity: str = Field(default=AlertSeverity.INFO.value, max_length=20)
    title: str = Field(max_length=200)
    message: str = Field(max_length=1000)
    alert_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON))
    # Indexed copy of the plan/subscription the alert is about
    subject_id: Optional[int] = Field(default=None, index=True)
    resolved: bool = Field(default=False, index=True)
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


# ============================================================
# WEBHOOK EVENT LOG
# ============================================================
class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_event"

    id: Optional[int] = Field(default=None, primary_key=True)
    stripe_event_id: str = Field(unique=True, index=True, max_length=255)
    event_type: str = Field(max_length=100, index=True)
    account_id: Optional[str] = Field(default=None, max_length=255, index=True)

    payload: str = Field()
    processed: bool = Field(default=False)
    processing_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "utc_now",
    "User",
    "Business",
    "Membership",
    "Plan",
    "PriceQueueItem",
    "Consumer",
    "PlanSubscription",
    "Invoice",
    "AuditLog",
    "BusinessAlert",
    "WebhookEvent",
    "BusinessStatus",
    "BillingAnchor",
    "MembershipStatus",
    "PlanStatus",
    "PricingType",
    "SubscriptionStatus",
    "OPEN_SUBSCRIPTION_STATUSES",
    "AuditLogType",
    "AlertType",
    "AlertSeverity",
]
