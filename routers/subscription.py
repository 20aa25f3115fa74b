"""
subscription.py
Stripe subscription endpoints, the post-checkout landing pages and credit spending
"""

import html
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session
import stripe

from models import User
from schemas import CheckoutSessionRequest, UseCreditsRequest
from db import get_db
from auth import get_current_user
from config import AppConfig, get_logger
from services.audit_service import AuditService
from services.credit_ledger import CreditLedger, InsufficientCredits
from services.rate_limiter import rate_limiter
from services.stripe_billing import StripeBilling
from services.subscription_service import SubscriptionService

logger = get_logger(__name__)

router = APIRouter()

LANDING_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
           display: flex; align-items: center; justify-content: center; min-height: 100vh;
           margin: 0; background: #008C99; text-align: center; padding: 20px; }}
    .container {{ background: white; border-radius: 20px; padding: 40px; max-width: 400px; }}
    h1 {{ color: #333; }}
    p {{ color: #666; }}
    .btn {{ background: #008C99; color: white; padding: 14px 28px; border-radius: 10px; text-decoration: none; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>{title}</h1>
    <p>{message}</p>
    <a class="btn" href="{deep_link}">Return to {app_name}</a>
  </div>
  <script>setTimeout(function () {{ window.location.href = "{deep_link}"; }}, 1500);</script>
</body>
</html>
"""


def render_landing_page(title: str, message: str, deep_link: str) -> HTMLResponse:
    return HTMLResponse(LANDING_PAGE.format(
        title=title,
        message=message,
        deep_link=html.escape(deep_link, quote=True),
        app_name=AppConfig.APP_NAME,
    ))


# *** Public landing pages Stripe redirects to ***

@router.get("/api/subscription/success", response_class=HTMLResponse)
def checkout_success(session_id: str = Query("")):
    logger.info(f"Payment success redirect, session: {session_id}")
    deep_link = f"{AppConfig.DEEP_LINK_SCHEME}://subscription/success?session_id={session_id}"
    return render_landing_page(
        "Payment Successful",
        "Your subscription is active. Your credits will appear in the app shortly.",
        deep_link,
    )


@router.get("/api/subscription/cancel", response_class=HTMLResponse)
def checkout_cancelled():
    deep_link = f"{AppConfig.DEEP_LINK_SCHEME}://subscription/cancel"
    return render_landing_page("Payment Cancelled", "No charge was made. You can subscribe any time.", deep_link)


# *** Authenticated endpoints ***

@router.get("/api/subscription/plans")
def get_plans(current_user: User = Depends(get_current_user)):
    return {"success": True, "data": {"plans": SubscriptionService.plans()}}


@router.post("/api/subscription/create-checkout-session")
def create_checkout_session(
    payload: CheckoutSessionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        session = StripeBilling.create_checkout_session(db, current_user, payload.plan)
        return {"success": True, "data": session}
    except HTTPException:
        raise
    except stripe.StripeError as e:
        db.rollback()
        logger.error(f"Stripe error creating checkout session for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment provider error")
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating checkout session for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error creating checkout session")


@router.get("/api/subscription/status")
def get_status(current_user: User = Depends(get_current_user)):
    return {"success": True, "data": SubscriptionService.status(current_user)}


@router.post("/api/subscription/verify")
def verify_subscription(request: Request, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Client polling after checkout. Grants the latest paid invoice if no
    webhook has granted it yet.
    """
    rate_limiter.enforce(current_user.id, "subscription-verify", limit=20, window_seconds=300)
    try:
        result = StripeBilling.verify(db, current_user)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Verify subscription error for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error verifying subscription")

    AuditService.log_request(
        db,
        request,
        user_id=current_user.id,
        action="stripe_verify",
        status="success",
        details={"creditsAdded": result["creditsAdded"]},
    )
    return {
        "success": True,
        "message": result["message"],
        "data": {
            "subscription": result["subscription"],
            "credits": result["credits"],
            "creditsAdded": result["creditsAdded"],
        },
    }


@router.post("/api/subscription/cancel")
def cancel_subscription(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        subscription = StripeBilling.cancel(db, current_user)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Cancel subscription error for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error canceling subscription")

    return {
        "success": True,
        "message": "Subscription will be canceled at the end of the billing period",
        "data": {"subscription": subscription},
    }


@router.post("/api/subscription/use-credits")
def use_credits(payload: UseCreditsRequest, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not payload.amount or payload.amount <= 0:
        raise HTTPException(status_code=400, detail="Invalid credit amount")

    try:
        CreditLedger.spend(
            db,
            user_id=current_user.id,
            amount=payload.amount,
            source="use_credits",
            description="Credits used in app",
        )
        db.commit()
    except InsufficientCredits:
        db.rollback()
        raise HTTPException(status_code=400, detail="Insufficient credits")

    db.refresh(current_user)
    return {
        "success": True,
        "message": f"Successfully used {payload.amount} credits",
        "data": {"creditsRemaining": current_user.credits, "creditsUsed": payload.amount},
    }
