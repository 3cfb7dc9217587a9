# plan_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import date, datetime

from models.models import PricingType


class PlanCreate(BaseModel):
    membership_id: int
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    pricing_type: PricingType = PricingType.FIXED
    base_price: Optional[int] = Field(default=None, gt=0, description="Cents, required for fixed pricing")
    currency: str = Field(default="usd", min_length=3, max_length=3)


class PlanRead(BaseModel):
    id: int
    membership_id: int
    business_id: int
    name: str
    description: Optional[str] = None
    status: str
    pricing_type: str
    base_price: Optional[int] = None
    currency: str
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PriceQueueCreate(BaseModel):
    effective_month: date = Field(..., description="Any day in the month; stored as the 1st")
    price: int = Field(..., gt=0, description="Cents")


class PriceQueueItemRead(BaseModel):
    id: int
    plan_id: int
    effective_at: datetime
    price: int
    applied: bool
    stripe_price_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
