# membership_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import BillingAnchor, MembershipStatus


class MembershipCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=2, max_length=60, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = Field(default=None, max_length=1000)
    status: MembershipStatus = MembershipStatus.ACTIVE
    billing_anchor: BillingAnchor = BillingAnchor.IMMEDIATE
    # Range is checked by the billing rules so the caller gets a VALIDATION_ERROR code
    cohort_billing_day: Optional[int] = None
    charge_immediately: bool = True
    pause_enabled: bool = False


class MembershipRead(BaseModel):
    id: int
    business_id: int
    name: str
    slug: str
    description: Optional[str] = None
    status: str
    billing_anchor: str
    cohort_billing_day: Optional[int] = None
    charge_immediately: bool
    pause_enabled: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
