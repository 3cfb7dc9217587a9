# scenario_schema.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ScenarioRunRequest(BaseModel):
    price_id: Optional[str] = None
    start_date: Optional[datetime] = None
    cohort_billing_day: int = Field(default=1, ge=1, le=31)


class TestClockCreate(BaseModel):
    frozen_time: Optional[datetime] = None
    name: Optional[str] = Field(default=None, max_length=100)


class TestClockAdvance(BaseModel):
    frozen_time: Optional[datetime] = None
    advance_by_seconds: Optional[int] = Field(default=None, gt=0)


class BulkSyncRequest(BaseModel):
    create_missing: bool = False
    business_id: Optional[int] = None
