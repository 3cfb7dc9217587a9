# routes/webhooks.py
import logging
from typing import Any, Optional

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from core import stripe_client
from core.config import settings
from core.database import get_session
from core.stripe_client import object_id, sget, to_datetime
from models.models import Business, WebhookEvent
from services.business_state import AccountState
from services.reconciliation import (
    SubscriptionSnapshot,
    mark_subscription_canceled,
    reconcile_subscription,
    record_invoice,
    sync_business_account,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _business_for_account(session: Session, account_id: Optional[str]) -> Optional[Business]:
    if not account_id:
        return None
    return session.exec(select(Business).where(Business.stripe_account_id == account_id)).first()


# ========================================
# 🧩 Event handlers
# ========================================
def handle_account_updated(session: Session, event: Any, data_object: Any) -> None:
    business = _business_for_account(session, sget(data_object, "id"))
    if not business:
        logger.warning("⚠️ account.updated for unknown account %s", sget(data_object, "id"))
        return
    sync_business_account(
        session,
        business,
        AccountState.from_stripe(data_object),
        "Stripe account updated",
        triggered_by="webhook:account.updated",
    )


def handle_checkout_session_completed(session: Session, event: Any, data_object: Any) -> None:
    subscription_id = object_id(sget(data_object, "subscription"))
    if sget(data_object, "mode") != "subscription" or not subscription_id:
        logger.info("ℹ️ Checkout session %s has no subscription", sget(data_object, "id"))
        return
    account_id = sget(event, "account")
    business = _business_for_account(session, account_id)
    subscription = stripe_client.retrieve_subscription(subscription_id, account_id)
    reconcile_subscription(
        session,
        SubscriptionSnapshot.from_stripe(subscription),
        create_missing=True,
        business=business,
    )


def handle_subscription_changed(session: Session, event: Any, data_object: Any) -> None:
    snapshot = SubscriptionSnapshot.from_stripe(data_object, observed_at=to_datetime(sget(event, "created")))
    result = reconcile_subscription(
        session,
        snapshot,
        create_missing=True,
        business=_business_for_account(session, sget(event, "account")),
    )
    logger.info("🔁 %s -> %s", snapshot.id, result.action.value)


def handle_subscription_deleted(session: Session, event: Any, data_object: Any) -> None:
    snapshot = SubscriptionSnapshot.from_stripe(data_object, observed_at=to_datetime(sget(event, "created")))
    mark_subscription_canceled(session, snapshot)


def handle_invoice(session: Session, event: Any, data_object: Any) -> None:
    record_invoice(session, data_object, business=_business_for_account(session, sget(event, "account")))


EVENT_HANDLERS = {
    "account.updated": handle_account_updated,
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice,
    "invoice.payment_failed": handle_invoice,
}


# ==================================================================
#  🔔 Stripe Webhook
# ==================================================================
@router.post("/stripe")
async def stripe_webhook(request: Request, session: Session = Depends(get_session)):
    """Verify, de-duplicate and dispatch a Stripe (Connect) event."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    webhook_secret = settings.STRIPE_WEBHOOK_SECRET

    if not webhook_secret:
        logger.error("❌ STRIPE_WEBHOOK_SECRET not configured")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})

    if not sig_header:
        return JSONResponse(status_code=400, content={"error": "Missing stripe-signature header"})

    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=webhook_secret)
    except ValueError as e:
        logger.warning("❌ Invalid webhook payload: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})
    except stripe.SignatureVerificationError as e:
        logger.warning("❌ Invalid webhook signature: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    event_id = sget(event, "id")
    event_type = sget(event, "type")

    record = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == event_id)).first()
    if record and record.processed:
        logger.info("↩️ Duplicate webhook %s (%s) ignored", event_id, event_type)
        return JSONResponse(status_code=200, content={"status": "duplicate", "event": event_type})
    if record is None:
        record = WebhookEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            account_id=sget(event, "account"),
            payload=payload.decode("utf-8", errors="replace"),
        )
        session.add(record)
        session.commit()
        session.refresh(record)

    record_id = record.id
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("ℹ️ Unhandled event type: %s", event_type)
    else:
        try:
            handler(session, event, event["data"]["object"])
        except Exception as e:
            session.rollback()
            logger.exception("❌ Error processing webhook event %s (%s)", event_id, event_type)
            record = session.get(WebhookEvent, record_id)
            record.processing_error = str(e)
            session.add(record)
            session.commit()
            # Non-2xx makes Stripe retry the delivery
            return JSONResponse(status_code=500, content={"error": f"Error processing event: {e}"})

    record.processed = True
    record.processing_error = None
    session.add(record)
    session.commit()
    return JSONResponse(status_code=200, content={"status": "success", "event": event_type})
