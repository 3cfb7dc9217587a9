from .business_schema import (
    BusinessCreate, BusinessDetailsUpdate, BusinessRead,
    NextAction, OnboardingStatusRead, AccountLinkRead, BusinessMetricsRead
)
from .membership_schema import MembershipCreate, MembershipRead
from .plan_schema import PlanCreate, PlanRead, PriceQueueCreate, PriceQueueItemRead
from .subscription_schema import (
    CheckoutSetupRequest, CheckoutSetupRead,
    CheckoutConfirmRequest, CheckoutConfirmRead,
    PlanSubscriptionRead, CancelRequest
)
from .scenario_schema import ScenarioRunRequest, TestClockCreate, TestClockAdvance, BulkSyncRequest

__all__ = [
    # Business
    "BusinessCreate", "BusinessDetailsUpdate", "BusinessRead",
    "NextAction", "OnboardingStatusRead", "AccountLinkRead", "BusinessMetricsRead",

    # Membership
    "MembershipCreate", "MembershipRead",

    # Plan
    "PlanCreate", "PlanRead", "PriceQueueCreate", "PriceQueueItemRead",

    # Subscription / checkout
    "CheckoutSetupRequest", "CheckoutSetupRead",
    "CheckoutConfirmRequest", "CheckoutConfirmRead",
    "PlanSubscriptionRead", "CancelRequest",

    # Admin
    "ScenarioRunRequest", "TestClockCreate", "TestClockAdvance", "BulkSyncRequest",
]
