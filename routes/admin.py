# routes/admin.py
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session

from core.database import get_session
from core.errors import NotFound
from core.security import get_current_platform_admin
from models.models import Business
from schemas.scenario_schema import BulkSyncRequest, ScenarioRunRequest, TestClockAdvance, TestClockCreate
from services import scenario_runner
from services.price_queue import apply_due_prices, check_missing_dynamic_prices
from services.reconciliation import sync_all_businesses, sync_business_subscriptions

# Every route here is platform-admin only
router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(get_current_platform_admin)],
)


# ==================================================================
#  🔄 Bulk subscription sync
# ==================================================================
@router.post("/subscriptions/sync")
def bulk_sync_subscriptions(
    data: Optional[BulkSyncRequest] = Body(default=None),
    session: Session = Depends(get_session),
):
    data = data or BulkSyncRequest()
    if data.business_id is not None:
        business = session.get(Business, data.business_id)
        if not business:
            raise NotFound("Business not found")
        report = sync_business_subscriptions(session, business, create_missing=data.create_missing)
        return {"success": True, "business_id": business.id, "report": report.model_dump(mode="json")}
    return sync_all_businesses(session, create_missing=data.create_missing)


# ==================================================================
#  💲 Price queue jobs (same work as the cron scripts)
# ==================================================================
@router.post("/prices/apply")
def run_apply_due_prices(session: Session = Depends(get_session)):
    return apply_due_prices(session)


@router.post("/prices/check-missing")
def run_missing_price_check(session: Session = Depends(get_session)):
    return check_missing_dynamic_prices(session)


# ==================================================================
#  ⏱️ Test clocks
# ==================================================================
@router.get("/test-clocks")
def list_test_clocks():
    return {"test_clocks": scenario_runner.list_clocks()}


@router.post("/test-clocks")
def create_test_clock(data: TestClockCreate):
    return scenario_runner.create_clock(data.frozen_time, data.name)


@router.get("/test-clocks/{clock_id}")
def get_test_clock(clock_id: str):
    return scenario_runner.clock_details(clock_id)


@router.post("/test-clocks/{clock_id}/advance")
def advance_test_clock(clock_id: str, data: TestClockAdvance):
    return scenario_runner.advance_clock(clock_id, data.frozen_time, data.advance_by_seconds)


@router.delete("/test-clocks/{clock_id}")
def delete_test_clock(clock_id: str):
    return scenario_runner.delete_clock(clock_id)


# ==================================================================
#  🧪 Billing scenarios
# ==================================================================
@router.get("/scenarios")
def list_scenarios():
    return {
        "scenarios": [
            {"type": kind, "description": scenario_runner.SCENARIO_DESCRIPTIONS[kind]}
            for kind in scenario_runner.SCENARIO_TYPES
        ]
    }


@router.post("/scenarios/{scenario_type}/run")
def run_scenario(scenario_type: str, data: Optional[ScenarioRunRequest] = Body(default=None)):
    data = data or ScenarioRunRequest()
    return scenario_runner.run_scenario(
        scenario_type,
        price_id=data.price_id,
        start_date=data.start_date,
        cohort_billing_day=data.cohort_billing_day,
    )
