# ================================================================
# core/stripe_client.py — Stripe SDK setup + Connect-scoped helpers
# ================================================================
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

import stripe

from core.config import settings
from core.errors import ErrorCode, PreconditionFailed

logger = logging.getLogger(__name__)

# ------------------------
# STRIPE CONFIG
# ------------------------
stripe.api_key = settings.STRIPE_SECRET_KEY
if settings.STRIPE_API_VERSION:
    stripe.api_version = settings.STRIPE_API_VERSION


def require_stripe() -> None:
    """Refuse early when the platform key is missing or a placeholder."""
    if not settings.STRIPE_CONFIGURED:
        raise PreconditionFailed(
            "Stripe is not configured on this server",
            code=ErrorCode.STRIPE_NOT_CONFIGURED,
            status_code=503,
        )


# ========================================
# 🔧 Field helpers (dicts and StripeObjects alike)
# ========================================
def sget(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def to_datetime(timestamp: Optional[int]) -> Optional[datetime]:
    """Stripe epoch seconds -> naive UTC datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)


def to_epoch(value: datetime) -> int:
    """Naive values are treated as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def object_id(value: Any) -> Optional[str]:
    """Expanded objects and bare ids both collapse to the id."""
    if value is None or isinstance(value, str):
        return value
    return sget(value, "id")


# ========================================
# 🏦 Connect accounts
# ========================================
def retrieve_account(account_id: str):
    return stripe.Account.retrieve(account_id)


def create_connect_account(email: Optional[str], business_name: str, business_id: int):
    return stripe.Account.create(
        type="express",
        email=email,
        business_profile={"name": business_name},
        capabilities={
            "card_payments": {"requested": True},
            "transfers": {"requested": True},
        },
        metadata={"businessId": str(business_id)},
    )


def create_account_link(account_id: str, business_id: int):
    return stripe.AccountLink.create(
        account=account_id,
        refresh_url=f"{settings.ONBOARDING_REFRESH_URL}?businessId={business_id}",
        return_url=f"{settings.ONBOARDING_RETURN_URL}?businessId={business_id}",
        type="account_onboarding",
    )


# ========================================
# 🧾 Products & prices
# ========================================
def create_product(name: str, stripe_account: Optional[str], metadata: Optional[Dict[str, str]] = None):
    if stripe_account:
        return stripe.Product.create(name=name, metadata=metadata or {}, stripe_account=stripe_account)
    return stripe.Product.create(name=name, metadata=metadata or {})


def create_monthly_price(
    product_id: str,
    unit_amount: int,
    currency: str,
    stripe_account: Optional[str],
    metadata: Optional[Dict[str, str]] = None,
):
    params: Dict[str, Any] = {
        "product": product_id,
        "unit_amount": unit_amount,
        "currency": currency,
        "recurring": {"interval": "month"},
        "metadata": metadata or {},
    }
    if stripe_account:
        params["stripe_account"] = stripe_account
    return stripe.Price.create(**params)


def archive_price(price_id: str, stripe_account: str) -> None:
    stripe.Price.modify(price_id, active=False, stripe_account=stripe_account)


# ========================================
# 🔁 Subscriptions
# ========================================
def create_subscription(params: Dict[str, Any], stripe_account: Optional[str]):
    if stripe_account:
        return stripe.Subscription.create(stripe_account=stripe_account, **params)
    return stripe.Subscription.create(**params)


def retrieve_subscription(subscription_id: str, stripe_account: str):
    return stripe.Subscription.retrieve(subscription_id, stripe_account=stripe_account)


def modify_subscription(subscription_id: str, stripe_account: str, **params):
    return stripe.Subscription.modify(subscription_id, stripe_account=stripe_account, **params)


def cancel_subscription_now(subscription_id: str, stripe_account: str):
    return stripe.Subscription.cancel(subscription_id, stripe_account=stripe_account)


def iter_subscriptions(stripe_account: str, status: str = "all") -> Iterator[Any]:
    subscriptions = stripe.Subscription.list(status=status, limit=100, stripe_account=stripe_account)
    return subscriptions.auto_paging_iter()


# ========================================
# 👤 Customers & setup intents
# ========================================
def create_customer(email: str, name: Optional[str], stripe_account: str, metadata: Optional[Dict[str, str]] = None):
    return stripe.Customer.create(email=email, name=name, metadata=metadata or {}, stripe_account=stripe_account)


def create_setup_intent(customer_id: str, stripe_account: str, metadata: Optional[Dict[str, str]] = None):
    return stripe.SetupIntent.create(
        customer=customer_id,
        payment_method_types=["card"],
        usage="off_session",
        metadata=metadata or {},
        stripe_account=stripe_account,
    )


def retrieve_setup_intent(setup_intent_id: str, stripe_account: str):
    return stripe.SetupIntent.retrieve(setup_intent_id, stripe_account=stripe_account)


def charge_now(customer_id: str, subscription_id: str, stripe_account: str):
    """Create and finalize an invoice for the subscription's pending items."""
    invoice = stripe.Invoice.create(
        customer=customer_id,
        subscription=subscription_id,
        auto_advance=True,
        stripe_account=stripe_account,
    )
    return stripe.Invoice.finalize_invoice(invoice["id"], stripe_account=stripe_account)


def list_invoices(stripe_account: Optional[str] = None, **filters) -> List[Any]:
    if stripe_account:
        filters["stripe_account"] = stripe_account
    return list(stripe.Invoice.list(limit=100, **filters).auto_paging_iter())


# ========================================
# ⏱️ Test clocks (platform account only)
# ========================================
def create_test_clock(frozen_time: int, name: str):
    return stripe.test_helpers.TestClock.create(frozen_time=frozen_time, name=name)


def retrieve_test_clock(clock_id: str):
    return stripe.test_helpers.TestClock.retrieve(clock_id)


def list_test_clocks(limit: int = 20) -> List[Any]:
    return list(stripe.test_helpers.TestClock.list(limit=limit).data)


def delete_test_clock(clock_id: str):
    return stripe.test_helpers.TestClock.delete(clock_id)


def wait_for_test_clock(clock_id: str, retries: int = 10, delay: float = 2.0):
    """Retrieve the clock, polling while Stripe still reports ``advancing``."""
    clock = stripe.test_helpers.TestClock.retrieve(clock_id)
    attempts = 0
    while sget(clock, "status") == "advancing" and attempts < retries:
        time.sleep(delay)
        clock = stripe.test_helpers.TestClock.retrieve(clock_id)
        attempts += 1
    if sget(clock, "status") == "advancing":
        logger.warning("⏳ Test clock %s still advancing after %s retries", clock_id, retries)
    return clock


def advance_test_clock(clock_id: str, frozen_time: int):
    return stripe.test_helpers.TestClock.advance(clock_id, frozen_time=frozen_time)


def create_test_customer(email: str, name: str, test_clock_id: str):
    """Customer on a test clock with the ``pm_card_visa`` test card as default."""
    customer = stripe.Customer.create(email=email, name=name, test_clock=test_clock_id)
    payment_method = stripe.PaymentMethod.attach("pm_card_visa", customer=customer["id"])
    stripe.Customer.modify(
        customer["id"],
        invoice_settings={"default_payment_method": payment_method["id"]},
    )
    return customer, payment_method


def list_clock_customers(clock_id: str) -> List[Any]:
    return list(stripe.Customer.list(test_clock=clock_id, limit=100).data)


def list_customer_subscriptions(customer_id: str) -> List[Any]:
    return list(stripe.Subscription.list(customer=customer_id, status="all", limit=100).data)
