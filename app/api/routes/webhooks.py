"""
Stripe webhook. Register this URL in the Stripe dashboard:
https://your-backend.com/webhooks/stripe

Events handled: checkout.session.completed, customer.subscription.*, invoice.*
and payment_intent.succeeded (subscription payments only).
"""
import logging
import stripe
from fastapi import APIRouter, Request, HTTPException, status, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.services.billing_client import BillingClient, get_billing_client
from app.services.stripe_events import handle_stripe_event
from app.services.subscription_sync import BillingUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header")

    try:
        event = billing.construct_event(payload, sig_header)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("[Stripe webhook] Signature verification failed: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

    logger.info("[Stripe webhook] type=%s id=%s", event.get("type"), event.get("id"))

    try:
        report = handle_stripe_event(db, billing, event)
    except BillingUnavailableError as e:
        # Non-2xx makes Stripe redeliver the event later
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except stripe.StripeError as e:
        logger.error("[Stripe webhook] Stripe error handling %s: %s", event.get("id"), e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Stripe request failed")

    return {"received": True, **report}
