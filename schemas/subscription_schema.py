# subscription_schema.py
from pydantic import BaseModel, Field, ConfigDict, EmailStr
from typing import Optional
from datetime import datetime


class CheckoutSetupRequest(BaseModel):
    consumer_email: EmailStr
    consumer_name: Optional[str] = Field(default=None, max_length=100)


class CheckoutSetupRead(BaseModel):
    setup_intent_id: str
    client_secret: Optional[str] = None
    customer_id: str
    stripe_account_id: str


class CheckoutConfirmRequest(BaseModel):
    setup_intent_id: str
    payment_method_id: str
    consumer_email: EmailStr
    consumer_name: Optional[str] = Field(default=None, max_length=100)


class CheckoutConfirmRead(BaseModel):
    success: bool = True
    subscription_id: str
    plan_subscription_id: int
    status: str
    billing_model: str


class PlanSubscriptionRead(BaseModel):
    id: int
    plan_id: int
    business_id: int
    consumer_id: Optional[int] = None
    stripe_subscription_id: str
    stripe_customer_id: Optional[str] = None
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool
    paused_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CancelRequest(BaseModel):
    immediately: bool = False
