"""
webhooks.py
Stripe and RevenueCat webhook receivers.

Both vendors retry on non-2xx answers, so only authentication and malformed
payloads return 4xx. Duplicate deliveries are acknowledged as already processed.
"""

import hmac
import json
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
import stripe

from db import get_db
from config import StripeConfig, RevenueCat, get_logger, log_debug
from services.audit_service import AuditService
from services.stripe_billing import StripeBilling
from services.revenuecat import handle_webhook_event

logger = get_logger(__name__)

router = APIRouter()


def revenuecat_authorized(authorization: Optional[str]) -> bool:
    if not authorization:
        return False
    expected = RevenueCat.WEBHOOK_AUTH or ""
    received = authorization.encode()
    # Raw secret or the Bearer form
    return (
        hmac.compare_digest(received, expected.encode())
        or hmac.compare_digest(received, f"Bearer {expected}".encode())
    )


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db)
):
    if not StripeConfig.WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook secret not configured")

    payload = await request.body()
    try:
        stripe.Webhook.construct_event(payload, stripe_signature, StripeConfig.WEBHOOK_SECRET)
        event = json.loads(payload)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Stripe webhook signature verification failed: {str(e)}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {str(e)}")

    logger.info(f"Stripe webhook received: {event.get('type')} ({event.get('id')})")

    try:
        result = StripeBilling.handle_event(db, event)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing Stripe event {event.get('id')}: {str(e)}")
        AuditService.log_request(
            db,
            request,
            user_id=None,
            action="stripe_webhook",
            status="error",
            details={"eventId": event.get("id"), "type": event.get("type"), "error": str(e)},
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed")

    AuditService.log_request(
        db,
        request,
        user_id=None,
        action="stripe_webhook",
        status=result.get("status", "processed"),
        details={"eventId": event.get("id"), "type": event.get("type")},
    )
    return {"received": True, **result}


@router.post("/webhook/revenuecat")
async def revenuecat_webhook(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    if not RevenueCat.WEBHOOK_AUTH:
        logger.error("REVENUECAT_WEBHOOK_AUTH is not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook secret not configured")
    if not revenuecat_authorized(authorization):
        logger.warning("RevenueCat webhook rejected: invalid authorization")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        body = json.loads(await request.body())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    event = body.get("event") if isinstance(body, dict) else None
    if not isinstance(event, dict) or not event.get("type"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event")

    logger.info(f"RevenueCat webhook received: {event.get('type')} for {event.get('app_user_id')}")
    log_debug(logger, f"RevenueCat event payload: {json.dumps(event, default=str)[:2000]}")

    try:
        result = handle_webhook_event(db, event)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing RevenueCat event {event.get('id')}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed")

    AuditService.log_request(
        db,
        request,
        user_id=None,
        action="revenuecat_webhook",
        status=result.get("status", "processed"),
        details={"eventId": event.get("id"), "type": event.get("type")},
    )
    return {"received": True, **result}
