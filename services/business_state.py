# ================================================================
# services/business_state.py — Business onboarding state machine
# ================================================================
"""
Maps a Stripe Connect account read onto the platform's BusinessStatus.

Everything here is side-effect free: the stored ``Business.status`` is a
cache, and callers push every fresh account read back through
``determine_business_state`` before trusting it.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from core.stripe_client import sget
from models.models import Business, BusinessStatus, utc_now

logger = logging.getLogger(__name__)


# ========================================
# 📦 Account snapshot
# ========================================
class AccountState(BaseModel):
    """What Stripe reports about a connected account."""

    id: str
    charges_enabled: bool = False
    details_submitted: bool = False
    payouts_enabled: bool = False
    requirements: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, account: Any) -> "AccountState":
        requirements = sget(account, "requirements", {}) or {}
        capabilities = sget(account, "capabilities", {}) or {}
        return cls(
            id=sget(account, "id"),
            charges_enabled=bool(sget(account, "charges_enabled", False)),
            details_submitted=bool(sget(account, "details_submitted", False)),
            payouts_enabled=bool(sget(account, "payouts_enabled", False)),
            requirements=_plain_dict(requirements),
            capabilities=_plain_dict(capabilities),
        )

    @classmethod
    def from_business(cls, business: Business) -> Optional["AccountState"]:
        """Rebuild from the cached columns (used when Stripe cannot be reached)."""
        if not business.stripe_account_id:
            return None
        return cls(
            id=business.stripe_account_id,
            charges_enabled=business.stripe_charges_enabled,
            details_submitted=business.stripe_details_submitted,
            requirements=business.stripe_requirements or {},
        )

    def requirement_list(self, key: str) -> List[str]:
        return list(self.requirements.get(key) or [])

    @property
    def disabled_reason(self) -> Optional[str]:
        return self.requirements.get("disabled_reason") or None


def _plain_dict(value: Any) -> Dict[str, Any]:
    if hasattr(value, "to_dict_recursive"):
        return value.to_dict_recursive()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


# ========================================
# 🚫 Disabled-reason policy
# ========================================
# requirements.disabled_reason -> status that overrides everything else.
# Unlisted reasons fall through to RESTRICTED.
DEFAULT_DISABLED_REASON_POLICY: Dict[str, BusinessStatus] = {
    "rejected.fraud": BusinessStatus.SUSPENDED,
    "rejected.terms_of_service": BusinessStatus.SUSPENDED,
    "rejected.listed": BusinessStatus.SUSPENDED,
    "platform_paused": BusinessStatus.SUSPENDED,
    "rejected.other": BusinessStatus.FAILED,
}

DisabledReasonPolicy = Mapping[str, BusinessStatus]


# ========================================
# 🧠 Pure decision
# ========================================
def determine_business_state(
    current_status: BusinessStatus,
    account_state: Optional[AccountState],
    policy: Optional[DisabledReasonPolicy] = None,
) -> BusinessStatus:
    current_status = BusinessStatus(current_status)
    policy = DEFAULT_DISABLED_REASON_POLICY if policy is None else policy

    if account_state is None:
        if current_status in (BusinessStatus.CREATED, BusinessStatus.DETAILS_COLLECTED):
            return current_status
        return BusinessStatus.STRIPE_ONBOARDING_REQUIRED

    disabled_reason = account_state.disabled_reason
    if disabled_reason and disabled_reason in policy:
        return BusinessStatus(policy[disabled_reason])

    if account_state.charges_enabled and account_state.details_submitted:
        return BusinessStatus.ONBOARDING_COMPLETE

    has_currently_due = len(account_state.requirement_list("currently_due")) > 0
    has_past_due = len(account_state.requirement_list("past_due")) > 0

    if disabled_reason or has_past_due:
        return BusinessStatus.RESTRICTED

    if account_state.details_submitted and not account_state.charges_enabled:
        return BusinessStatus.PENDING_VERIFICATION

    if has_currently_due or not account_state.details_submitted:
        return BusinessStatus.STRIPE_ONBOARDING_IN_PROGRESS

    return BusinessStatus.STRIPE_ONBOARDING_REQUIRED


# ========================================
# 🔀 Transition table (advisory)
# ========================================
S = BusinessStatus
VALID_TRANSITIONS: Dict[BusinessStatus, List[BusinessStatus]] = {
    S.CREATED: [S.DETAILS_COLLECTED, S.ABANDONED],
    S.DETAILS_COLLECTED: [S.STRIPE_ACCOUNT_CREATED, S.STRIPE_ONBOARDING_REQUIRED, S.ABANDONED],
    S.STRIPE_ACCOUNT_CREATED: [S.STRIPE_ONBOARDING_REQUIRED, S.STRIPE_ONBOARDING_IN_PROGRESS, S.ONBOARDING_PENDING, S.ABANDONED],
    S.STRIPE_ONBOARDING_REQUIRED: [S.STRIPE_ACCOUNT_CREATED, S.STRIPE_ONBOARDING_IN_PROGRESS, S.ONBOARDING_PENDING, S.ABANDONED],
    S.STRIPE_ONBOARDING_IN_PROGRESS: [
        S.ONBOARDING_PENDING,
        S.PENDING_VERIFICATION,
        S.ONBOARDING_COMPLETE,
        S.RESTRICTED,
        S.FAILED,
        S.ABANDONED,
    ],
    S.ONBOARDING_PENDING: [
        S.STRIPE_ONBOARDING_IN_PROGRESS,
        S.PENDING_VERIFICATION,
        S.ONBOARDING_COMPLETE,
        S.RESTRICTED,
        S.ABANDONED,
    ],
    S.PENDING_VERIFICATION: [S.ONBOARDING_COMPLETE, S.RESTRICTED, S.FAILED],
    S.RESTRICTED: [S.STRIPE_ONBOARDING_IN_PROGRESS, S.ONBOARDING_COMPLETE, S.SUSPENDED],
    S.ONBOARDING_COMPLETE: [S.RESTRICTED, S.SUSPENDED],
    S.FAILED: [S.STRIPE_ONBOARDING_REQUIRED, S.ABANDONED],
    S.ABANDONED: [S.STRIPE_ONBOARDING_REQUIRED],
    S.SUSPENDED: [S.ONBOARDING_COMPLETE],
}


def is_valid_transition(from_status: BusinessStatus, to_status: BusinessStatus) -> bool:
    return BusinessStatus(to_status) in VALID_TRANSITIONS.get(BusinessStatus(from_status), [])


# ========================================
# 🧭 Next action (onboarding UI guidance)
# ========================================
def get_next_action(status: BusinessStatus, account_state: Optional[AccountState] = None) -> Dict[str, Any]:
    status = BusinessStatus(status) if status in BusinessStatus._value2member_map_ else status

    if status == S.CREATED:
        return _action("complete_details", "Complete your business details to continue", False)
    if status in (S.DETAILS_COLLECTED, S.STRIPE_ONBOARDING_REQUIRED):
        return _action("start_stripe_onboarding", "Connect your Stripe account to start accepting payments", False)
    if status in (S.STRIPE_ACCOUNT_CREATED, S.STRIPE_ONBOARDING_IN_PROGRESS, S.ONBOARDING_PENDING):
        return _action("resume_stripe_onboarding", "Complete your Stripe onboarding to activate your account", False)
    if status == S.PENDING_VERIFICATION:
        # Dashboard is viewable, payments are not
        return _action(
            "wait_verification",
            "Your account is being verified by Stripe. This usually takes a few minutes to 24 hours.",
            True,
        )
    if status == S.RESTRICTED:
        due = account_state.requirement_list("currently_due") if account_state else []
        return _action(
            "fix_requirements",
            f"Your account requires additional information: {', '.join(due)}",
            True,
        )
    if status == S.ONBOARDING_COMPLETE:
        return _action("none", "Your account is fully set up and ready to accept payments", True)
    if status == S.FAILED:
        return _action("contact_support", "There was an issue with your onboarding. Please contact support.", False)
    if status == S.ABANDONED:
        return _action("start_stripe_onboarding", "Resume your account setup to start accepting payments", False)
    if status == S.SUSPENDED:
        return _action("contact_support", "Your account has been suspended. Please contact support.", False)
    return _action("none", "", False)


def _action(action: str, message: str, can_access_dashboard: bool) -> Dict[str, Any]:
    return {"action": action, "message": message, "can_access_dashboard": can_access_dashboard}


# ========================================
# 📝 Transition log helpers
# ========================================
def create_state_transition(
    from_status: BusinessStatus,
    to_status: BusinessStatus,
    reason: str,
    triggered_by: Optional[str] = None,
) -> Dict[str, Any]:
    transition = {
        "from": BusinessStatus(from_status).value,
        "to": BusinessStatus(to_status).value,
        "reason": reason,
        "timestamp": utc_now().isoformat(),
    }
    if triggered_by:
        transition["triggered_by"] = triggered_by
    return transition


def append_transition(
    existing: Optional[List[Dict[str, Any]]],
    transition: Dict[str, Any],
) -> List[Dict[str, Any]]:
    """Return a new list; ``existing`` is left untouched."""
    return [*(existing or []), transition]


def apply_transition(
    business: Business,
    to_status: BusinessStatus,
    reason: str,
    triggered_by: Optional[str] = None,
) -> bool:
    """Move ``business`` to ``to_status`` and log it. Returns False when nothing changed."""
    from_status = BusinessStatus(business.status)
    to_status = BusinessStatus(to_status)
    if from_status == to_status:
        return False

    if not is_valid_transition(from_status, to_status):
        logger.warning(
            "⚠️ Unexpected business transition %s -> %s for business %s (%s)",
            from_status.value, to_status.value, business.id, reason,
        )

    business.status = to_status.value
    # Fresh list so SQLAlchemy sees the JSON column change
    business.state_transitions = append_transition(
        business.state_transitions,
        create_state_transition(from_status, to_status, reason, triggered_by),
    )
    business.updated_at = utc_now()
    logger.info("🔀 Business %s: %s -> %s (%s)", business.id, from_status.value, to_status.value, reason)
    return True
