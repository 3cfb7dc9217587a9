import pytest

from models.models import Business, BusinessStatus
from services.business_state import (
    AccountState,
    append_transition,
    apply_transition,
    create_state_transition,
    determine_business_state,
    get_next_action,
    is_valid_transition,
)


def account(charges=False, details=False, **requirements):
    return AccountState(
        id="acct_1",
        charges_enabled=charges,
        details_submitted=details,
        payouts_enabled=charges,
        requirements=requirements,
        capabilities={},
    )


def test_fully_enabled_account_completes_onboarding():
    state = account(charges=True, details=True)
    assert determine_business_state(BusinessStatus.CREATED, state) == BusinessStatus.ONBOARDING_COMPLETE


def test_same_read_is_idempotent_and_complete_is_sticky():
    state = account(charges=True, details=True)
    first = determine_business_state(BusinessStatus.ONBOARDING_PENDING, state)
    second = determine_business_state(first, state)
    assert first == second == BusinessStatus.ONBOARDING_COMPLETE


@pytest.mark.parametrize(
    "state, expected",
    [
        (account(details=True), BusinessStatus.PENDING_VERIFICATION),
        (account(currently_due=["external_account"]), BusinessStatus.STRIPE_ONBOARDING_IN_PROGRESS),
        (account(), BusinessStatus.STRIPE_ONBOARDING_IN_PROGRESS),
        (account(details=True, past_due=["individual.dob.day"]), BusinessStatus.RESTRICTED),
        (account(details=True, disabled_reason="requirements.past_due"), BusinessStatus.RESTRICTED),
    ],
)
def test_account_reads_map_to_statuses(state, expected):
    assert determine_business_state(BusinessStatus.STRIPE_ACCOUNT_CREATED, state) == expected


def test_rejected_account_overrides_enabled_flags():
    state = account(charges=True, details=True, disabled_reason="rejected.fraud")
    assert determine_business_state(BusinessStatus.ONBOARDING_COMPLETE, state) == BusinessStatus.SUSPENDED

    state = account(details=True, disabled_reason="rejected.other")
    assert determine_business_state(BusinessStatus.PENDING_VERIFICATION, state) == BusinessStatus.FAILED


def test_disabled_reason_policy_is_injectable():
    state = account(details=True, disabled_reason="under_review")
    assert determine_business_state(BusinessStatus.PENDING_VERIFICATION, state) == BusinessStatus.RESTRICTED

    policy = {"under_review": BusinessStatus.SUSPENDED}
    assert determine_business_state(BusinessStatus.PENDING_VERIFICATION, state, policy) == BusinessStatus.SUSPENDED


def test_no_account_keeps_pre_stripe_statuses():
    assert determine_business_state(BusinessStatus.CREATED, None) == BusinessStatus.CREATED
    assert determine_business_state(BusinessStatus.DETAILS_COLLECTED, None) == BusinessStatus.DETAILS_COLLECTED
    assert determine_business_state(BusinessStatus.ONBOARDING_PENDING, None) == BusinessStatus.STRIPE_ONBOARDING_REQUIRED


def test_account_state_from_stripe_payload():
    state = AccountState.from_stripe(
        {
            "id": "acct_9",
            "charges_enabled": True,
            "details_submitted": False,
            "payouts_enabled": False,
            "requirements": {"currently_due": ["tos_acceptance.date"], "disabled_reason": None},
        }
    )
    assert state.id == "acct_9"
    assert state.requirement_list("currently_due") == ["tos_acceptance.date"]
    assert state.disabled_reason is None


def test_append_transition_returns_new_list():
    existing = [create_state_transition(BusinessStatus.CREATED, BusinessStatus.DETAILS_COLLECTED, "details")]
    snapshot = list(existing)

    result = append_transition(existing, create_state_transition(
        BusinessStatus.DETAILS_COLLECTED, BusinessStatus.STRIPE_ACCOUNT_CREATED, "account created", "user:1"
    ))

    assert existing == snapshot
    assert len(result) == len(existing) + 1
    assert result[-1]["from"] == "DETAILS_COLLECTED"
    assert result[-1]["triggered_by"] == "user:1"
    assert append_transition(None, existing[0]) == existing


def test_apply_transition_logs_and_skips_noop():
    business = Business(name="B", slug="b", status=BusinessStatus.CREATED.value, state_transitions=[])

    assert apply_transition(business, BusinessStatus.DETAILS_COLLECTED, "details submitted") is True
    assert business.status == "DETAILS_COLLECTED"
    assert len(business.state_transitions) == 1

    assert apply_transition(business, BusinessStatus.DETAILS_COLLECTED, "again") is False
    assert len(business.state_transitions) == 1


def test_transition_table():
    assert is_valid_transition(BusinessStatus.CREATED, BusinessStatus.DETAILS_COLLECTED)
    assert is_valid_transition(BusinessStatus.ONBOARDING_COMPLETE, BusinessStatus.RESTRICTED)
    assert not is_valid_transition(BusinessStatus.ONBOARDING_COMPLETE, BusinessStatus.CREATED)


def test_next_action_guides_the_owner():
    restricted = get_next_action(BusinessStatus.RESTRICTED, account(currently_due=["external_account"]))
    assert restricted["action"] == "fix_requirements"
    assert "external_account" in restricted["message"]
    assert restricted["can_access_dashboard"] is True

    assert get_next_action(BusinessStatus.PENDING_VERIFICATION)["can_access_dashboard"] is True
    assert get_next_action(BusinessStatus.CREATED)["action"] == "complete_details"
    assert get_next_action(BusinessStatus.ONBOARDING_COMPLETE)["action"] == "none"
