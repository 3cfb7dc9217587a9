# routes/businesses.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.database import get_session
from core.errors import Conflict, ErrorCode, NotFound
from core.security import get_business_for_owner, get_current_user
from models.models import AuditLogType, Business, BusinessAlert, BusinessStatus, User, utc_now
from schemas.business_schema import (
    AccountLinkRead,
    BusinessCreate,
    BusinessDetailsUpdate,
    BusinessMetricsRead,
    BusinessRead,
    OnboardingStatusRead,
)
from services import onboarding
from services.audit import record_audit
from services.metrics import business_metrics

router = APIRouter(prefix="/businesses", tags=["Businesses"])


# ==================================================================
#  ✅ Create Business
# ==================================================================
@router.post("/", response_model=BusinessRead, status_code=status.HTTP_201_CREATED)
def create_business(
    data: BusinessCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    if session.exec(select(Business).where(Business.slug == data.slug)).first():
        raise Conflict(f"The slug '{data.slug}' is already taken", code=ErrorCode.DUPLICATE_SLUG)

    business = Business(
        name=data.name,
        slug=data.slug,
        contact_email=data.contact_email or current_user.email,
        owner_id=current_user.id,
        status=BusinessStatus.CREATED.value,
    )
    try:
        session.add(business)
        session.flush()
        record_audit(
            session,
            AuditLogType.BUSINESS_CREATED,
            business_id=business.id,
            actor_user_id=current_user.id,
            metadata={"slug": business.slug},
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict(f"The slug '{data.slug}' is already taken", code=ErrorCode.DUPLICATE_SLUG)

    session.refresh(business)
    return business


# ==================================================================
#  ✅ List My Businesses
# ==================================================================
@router.get("/", response_model=List[BusinessRead])
def list_businesses(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return session.exec(
        select(Business)
        .where(Business.owner_id == current_user.id)
        .order_by(desc(Business.created_at))
    ).all()


@router.get("/{business_id}", response_model=BusinessRead)
def get_business(business: Business = Depends(get_business_for_owner)):
    return business


# ==================================================================
#  ✅ Onboarding
# ==================================================================
@router.put("/{business_id}/details", response_model=BusinessRead)
def submit_business_details(
    data: BusinessDetailsUpdate,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return onboarding.submit_details(session, business, data.name, data.contact_email, current_user.id)


@router.post("/{business_id}/account-link", response_model=AccountLinkRead)
def create_account_link(
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return onboarding.create_account_link(session, business, current_user.id)


@router.get("/{business_id}/onboarding-status", response_model=OnboardingStatusRead)
def get_onboarding_status(
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return onboarding.onboarding_status(session, business, current_user.id)


@router.post("/{business_id}/sync-stripe", response_model=OnboardingStatusRead)
def sync_stripe_account(
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Manual re-read of the Connect account (support button)."""
    return onboarding.onboarding_status(
        session, business, current_user.id, reason="Manual sync from Stripe", fallback_to_cache=False
    )


# ==================================================================
#  📊 Metrics & Alerts
# ==================================================================
@router.get("/{business_id}/metrics", response_model=BusinessMetricsRead)
def get_business_metrics(
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    return business_metrics(session, business.id)


@router.get("/{business_id}/alerts")
def list_alerts(
    include_resolved: bool = False,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    query = select(BusinessAlert).where(BusinessAlert.business_id == business.id)
    if not include_resolved:
        query = query.where(BusinessAlert.resolved == False)  # noqa: E712
    return session.exec(query.order_by(desc(BusinessAlert.created_at))).all()


@router.post("/{business_id}/alerts/{alert_id}/resolve")
def resolve_alert(
    alert_id: int,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    alert = session.get(BusinessAlert, alert_id)
    if not alert or alert.business_id != business.id:
        raise NotFound("Alert not found")
    if not alert.resolved:
        alert.resolved = True
        alert.resolved_at = utc_now()
        session.add(alert)
        session.commit()
        session.refresh(alert)
    return alert
