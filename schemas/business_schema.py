# business_schema.py
from pydantic import BaseModel, Field, ConfigDict, EmailStr
from typing import Optional, List, Dict, Any
from datetime import datetime


class BusinessCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=2, max_length=60, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    contact_email: Optional[EmailStr] = None
    # owner_id is set server-side


class BusinessDetailsUpdate(BaseModel):
    # slug is immutable once set
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    contact_email: EmailStr


class BusinessRead(BaseModel):
    id: int
    name: str
    slug: str
    contact_email: Optional[str] = None
    owner_id: Optional[int] = None
    status: str
    stripe_account_id: Optional[str] = None
    stripe_charges_enabled: bool
    stripe_details_submitted: bool
    state_transitions: List[Dict[str, Any]] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NextAction(BaseModel):
    action: str
    message: str
    can_access_dashboard: bool


class OnboardingStatusRead(BaseModel):
    business_id: int
    status: str
    previous_status: Optional[str] = None
    changed: bool = False
    source: str = Field(..., description="'stripe' for a fresh read, 'cache' when Stripe was unreachable")
    charges_enabled: bool
    details_submitted: bool
    requirements: Optional[Dict[str, Any]] = None
    next_action: NextAction


class AccountLinkRead(BaseModel):
    url: str
    expires_at: Optional[int] = None
    stripe_account_id: str
    status: str


class BusinessMetricsRead(BaseModel):
    active_members: int
    subscriptions_by_status: Dict[str, int]
    paused_subscriptions: int
    revenue_this_month: int
