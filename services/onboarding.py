# ================================================================
# services/onboarding.py — Stripe Connect onboarding flow
# ================================================================
import logging
from typing import Any, Dict, Optional

import stripe
from sqlmodel import Session

from core import stripe_client
from core.config import settings
from core.errors import Conflict, ErrorCode
from core.stripe_client import sget
from models.models import AuditLogType, Business, BusinessStatus, utc_now
from services.audit import record_audit
from services.business_state import AccountState, apply_transition, get_next_action
from services.reconciliation import refresh_business_from_stripe, sync_business_account

logger = logging.getLogger(__name__)

# Stripe rejected or paused the account; a new onboarding link cannot help
DISABLED_STATUSES = (BusinessStatus.SUSPENDED.value, BusinessStatus.FAILED.value)


def submit_details(
    session: Session,
    business: Business,
    name: Optional[str],
    contact_email: str,
    actor_user_id: Optional[int] = None,
) -> Business:
    if name:
        business.name = name
    business.contact_email = contact_email
    if business.status == BusinessStatus.CREATED.value:
        apply_transition(business, BusinessStatus.DETAILS_COLLECTED, "Business details submitted", f"user:{actor_user_id}")
        record_audit(
            session,
            AuditLogType.BUSINESS_STATUS_CHANGED,
            business_id=business.id,
            actor_user_id=actor_user_id,
            metadata={"from": BusinessStatus.CREATED.value, "to": business.status, "reason": "Business details submitted"},
        )
    business.updated_at = utc_now()
    session.add(business)
    session.commit()
    session.refresh(business)
    return business


def create_account_link(session: Session, business: Business, actor_user_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Create the Connect account on first use, then hand out a fresh onboarding link.
    Refuses once the business is fully onboarded or Stripe has disabled the account.
    """
    stripe_client.require_stripe()

    if business.stripe_account_id:
        # Decide from a fresh read, not the cached status
        refresh_business_from_stripe(
            session, business, "Onboarding link requested", triggered_by=f"user:{actor_user_id}",
            actor_user_id=actor_user_id,
        )
    if business.status == BusinessStatus.ONBOARDING_COMPLETE.value:
        raise Conflict("Stripe onboarding is already complete", code=ErrorCode.ALREADY_COMPLETE)
    if business.status in DISABLED_STATUSES:
        raise Conflict(
            "Stripe has disabled this account. Please contact support.",
            code=ErrorCode.INVALID_STATE,
        )

    created = False
    if not business.stripe_account_id:
        account = stripe_client.create_connect_account(business.contact_email, business.name, business.id)
        business.stripe_account_id = account["id"]
        apply_transition(
            business, BusinessStatus.STRIPE_ACCOUNT_CREATED, "Stripe Connect account created", f"user:{actor_user_id}"
        )
        record_audit(
            session,
            AuditLogType.STRIPE_ACCOUNT_CREATED,
            business_id=business.id,
            actor_user_id=actor_user_id,
            metadata={"stripeAccountId": account["id"]},
        )
        session.add(business)
        session.commit()
        created = True
        logger.info("🏦 Created Stripe account %s for business %s", account["id"], business.id)

    link = stripe_client.create_account_link(business.stripe_account_id, business.id)
    if created:
        # Existing accounts keep the status derived from the fresh read above
        apply_transition(business, BusinessStatus.ONBOARDING_PENDING, "Onboarding link issued", f"user:{actor_user_id}")
        session.add(business)
        session.commit()
        session.refresh(business)

    return {
        "url": link["url"],
        "expires_at": sget(link, "expires_at"),
        "stripe_account_id": business.stripe_account_id,
        "status": business.status,
    }


def onboarding_status(
    session: Session,
    business: Business,
    actor_user_id: Optional[int] = None,
    reason: str = "Onboarding status check",
    fallback_to_cache: bool = True,
) -> Dict[str, Any]:
    """
    One account read per call, pushed through the state machine.
    When Stripe is unreachable the cached account flags are re-derived instead,
    unless ``fallback_to_cache`` is off (manual sync surfaces the Stripe error).
    """
    source = "stripe"
    account_state: Optional[AccountState] = None

    if business.stripe_account_id:
        if not settings.STRIPE_CONFIGURED:
            if not fallback_to_cache:
                stripe_client.require_stripe()
            source = "cache"
        else:
            try:
                account_state = AccountState.from_stripe(stripe_client.retrieve_account(business.stripe_account_id))
            except stripe.StripeError as e:
                if not fallback_to_cache:
                    raise
                logger.warning("⚠️ Stripe account read failed for business %s, using cache: %s", business.id, e)
                source = "cache"

    if source == "cache":
        # The stored status is only a cache; derive it again from the cached flags
        account_state = AccountState.from_business(business)
        reason = f"{reason} (cached account)"

    result = sync_business_account(
        session, business, account_state, reason,
        triggered_by=f"user:{actor_user_id}", actor_user_id=actor_user_id,
    )

    return {
        "business_id": business.id,
        "status": business.status,
        "previous_status": result["previous_status"],
        "changed": result["changed"],
        "source": source,
        "charges_enabled": business.stripe_charges_enabled,
        "details_submitted": business.stripe_details_submitted,
        "requirements": business.stripe_requirements,
        "next_action": get_next_action(BusinessStatus(business.status), account_state),
    }
