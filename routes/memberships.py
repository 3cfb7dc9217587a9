# routes/memberships.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.database import get_session
from core.errors import Conflict, ErrorCode
from core.security import get_business_for_owner, get_current_user
from models.models import AuditLogType, BillingAnchor, Business, Membership, User
from schemas.membership_schema import MembershipCreate, MembershipRead
from services.audit import record_audit
from services.billing_model import validate_membership_billing

router = APIRouter(prefix="/businesses/{business_id}/memberships", tags=["Memberships"])


# ==================================================================
#  ✅ Create Membership
# ==================================================================
@router.post("/", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
def create_membership(
    data: MembershipCreate,
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    validate_membership_billing(data.billing_anchor, data.cohort_billing_day)

    duplicate = session.exec(
        select(Membership).where(Membership.business_id == business.id, Membership.slug == data.slug)
    ).first()
    if duplicate:
        raise Conflict(f"A membership with slug '{data.slug}' already exists", code=ErrorCode.DUPLICATE_SLUG)

    is_cohort = data.billing_anchor == BillingAnchor.NEXT_INTERVAL
    membership = Membership(
        business_id=business.id,
        name=data.name,
        slug=data.slug,
        description=data.description,
        status=data.status.value,
        billing_anchor=data.billing_anchor.value,
        # Rolling memberships never carry a cohort day
        cohort_billing_day=data.cohort_billing_day if is_cohort else None,
        charge_immediately=data.charge_immediately if is_cohort else True,
        pause_enabled=data.pause_enabled,
    )
    try:
        session.add(membership)
        session.flush()
        record_audit(
            session,
            AuditLogType.MEMBERSHIP_CREATED,
            business_id=business.id,
            actor_user_id=current_user.id,
            metadata={"membershipId": membership.id, "billingAnchor": membership.billing_anchor},
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict(f"A membership with slug '{data.slug}' already exists", code=ErrorCode.DUPLICATE_SLUG)

    session.refresh(membership)
    return membership


@router.get("/", response_model=List[MembershipRead])
def list_memberships(
    business: Business = Depends(get_business_for_owner),
    session: Session = Depends(get_session),
):
    return session.exec(
        select(Membership).where(Membership.business_id == business.id).order_by(Membership.created_at)
    ).all()
