"""
stripe_billing.py
Stripe subscriptions: checkout, status sync, client verification, cancellation,
and webhook event handling.

Credits are granted per paid invoice under stripe_invoice:<invoice id>, so the
checkout completion event, the invoice webhook and client polling converge on
one grant. Subscription lifecycle events only sync status.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import stripe
from fastapi import HTTPException
from sqlalchemy.orm import Session

from config import AppConfig, StripeConfig, SubscriptionPlans, get_logger, log_debug
from models import User
from services.credit_ledger import CreditLedger, GrantResult, stripe_invoice_key
from services.subscription_service import SubscriptionService, subscription_payload

logger = get_logger(__name__)

stripe.api_key = StripeConfig.SECRET_KEY


def _to_dict(obj) -> Optional[Dict[str, Any]]:
    """Stripe API objects to plain dicts"""
    if obj is None:
        return None
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _expandable_id(value) -> Optional[str]:
    """Stripe expandable fields are either an id or the expanded object"""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _timestamp_to_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.utcfromtimestamp(int(value))


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def plan_for_price(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    for key, plan in SubscriptionPlans.PLANS.items():
        if plan["stripe_price_id"] and plan["stripe_price_id"] == price_id:
            return key
    return None


def subscription_period_end(subscription: dict) -> Optional[datetime]:
    # Newer API versions report the period on the subscription items
    period_end = subscription.get("current_period_end") or _first_item(subscription).get("current_period_end")
    return _timestamp_to_datetime(period_end)


def subscription_plan(subscription: dict, user: Optional[User] = None) -> Optional[str]:
    plan = (subscription.get("metadata") or {}).get("plan")
    if plan in SubscriptionPlans.PLANS:
        return plan
    price = _first_item(subscription).get("price") or {}
    plan = plan_for_price(price.get("id"))
    if plan:
        return plan
    return user.subscription_plan if user else None


def invoice_subscription_details(invoice: dict) -> dict:
    details = invoice.get("subscription_details")
    if not details:
        details = (invoice.get("parent") or {}).get("subscription_details")
    return details or {}


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    return _expandable_id(invoice.get("subscription")) or _expandable_id(invoice_subscription_details(invoice).get("subscription"))


def invoice_plan(invoice: dict, user: Optional[User] = None) -> Optional[str]:
    plan = (invoice_subscription_details(invoice).get("metadata") or {}).get("plan")
    if plan in SubscriptionPlans.PLANS:
        return plan
    for line in (invoice.get("lines") or {}).get("data") or []:
        price = line.get("price") or {}
        price_id = price.get("id") or ((line.get("pricing") or {}).get("price_details") or {}).get("price")
        plan = plan_for_price(price_id)
        if plan:
            return plan
    return user.subscription_plan if user else None


def invoice_is_paid(invoice: Optional[dict]) -> bool:
    return bool(invoice) and (invoice.get("status") == "paid" or invoice.get("paid") is True)


def find_user(db: Session, customer_id: Optional[str], metadata: Optional[dict] = None) -> Optional[User]:
    metadata = metadata or {}
    user_id = metadata.get("userId")
    if user_id and str(user_id).isdigit():
        user = db.query(User).filter(User.id == int(user_id)).first()
        if user:
            return user
    if customer_id:
        return db.query(User).filter(User.stripe_customer_id == customer_id).first()
    return None


class StripeBilling:
    @staticmethod
    def get_or_create_customer(db: Session, user: User) -> str:
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer = _to_dict(stripe.Customer.create(
            email=user.email,
            name=user.name,
            metadata={"userId": str(user.id)},
        ))
        user.stripe_customer_id = customer["id"]
        db.commit()
        logger.info(f"Created Stripe customer {customer['id']} for user {user.id}")
        return user.stripe_customer_id

    @staticmethod
    def create_checkout_session(db: Session, user: User, plan_key: str) -> dict:
        plan = SubscriptionPlans.PLANS.get(plan_key)
        if not plan:
            raise HTTPException(status_code=400, detail="Invalid subscription plan")
        if not plan["stripe_price_id"]:
            logger.error(f"Stripe price id missing for plan {plan_key}")
            raise HTTPException(status_code=500, detail=f"Stripe price not configured for {plan_key} plan")

        customer_id = StripeBilling.get_or_create_customer(db, user)
        metadata = {"userId": str(user.id), "plan": plan_key}

        session = _to_dict(stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": plan["stripe_price_id"], "quantity": 1}],
            success_url=f"{AppConfig.BACKEND_URL}/api/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{AppConfig.BACKEND_URL}/api/subscription/cancel",
            metadata=metadata,
            subscription_data={"metadata": metadata},
        ))
        logger.info(f"Created checkout session {session['id']} for user {user.id} ({plan_key})")
        return {"sessionId": session["id"], "url": session.get("url")}

    @staticmethod
    def sync_subscription(db: Session, user: User, subscription: dict) -> None:
        """Copy Stripe's view of the subscription onto the user. Never touches credits."""
        user.stripe_subscription_id = subscription.get("id")
        user.subscription_status = subscription.get("status")
        user.subscription_platform = "stripe"
        plan = subscription_plan(subscription, user)
        if plan:
            user.subscription_plan = plan
        period_end = subscription_period_end(subscription)
        if period_end:
            user.current_period_end = period_end
        user.cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
        customer_id = _expandable_id(subscription.get("customer"))
        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
        db.commit()
        log_debug(logger, f"Synced Stripe subscription {user.stripe_subscription_id} for user {user.id}: {user.subscription_status}")

    @staticmethod
    def grant_invoice(db: Session, user: User, invoice_id: str, plan_key: Optional[str]) -> Optional[GrantResult]:
        if not invoice_id:
            return None
        if plan_key not in SubscriptionPlans.PLANS:
            logger.error(f"Cannot grant credits for invoice {invoice_id}: unknown plan {plan_key}")
            return None
        plan = SubscriptionPlans.PLANS[plan_key]
        return CreditLedger.grant(
            db,
            user_id=user.id,
            amount=plan["credits"],
            idempotency_key=stripe_invoice_key(invoice_id),
            source="stripe",
            reference=invoice_id,
            description=f"{plan['name']} plan invoice",
        )

    @staticmethod
    def verify(db: Session, user: User) -> dict:
        """Client polling after checkout: sync the latest subscription and grant its paid invoice"""
        if not user.stripe_customer_id:
            raise HTTPException(status_code=400, detail="No Stripe customer found")

        subscriptions = _to_dict(stripe.Subscription.list(
            customer=user.stripe_customer_id,
            limit=1,
            expand=["data.latest_invoice"],
        ))
        data = subscriptions.get("data") or []
        if not data:
            return {
                "message": "No active subscription found",
                "creditsAdded": 0,
                "subscription": subscription_payload(user),
                "credits": user.credits,
            }

        subscription = data[0]
        StripeBilling.sync_subscription(db, user, subscription)

        credits_added = 0
        if subscription.get("status") == "active":
            invoice = subscription.get("latest_invoice")
            if invoice and not isinstance(invoice, dict):
                invoice = _to_dict(stripe.Invoice.retrieve(invoice))
            if invoice_is_paid(invoice):
                result = StripeBilling.grant_invoice(db, user, invoice["id"], subscription_plan(subscription, user))
                if result and result.granted:
                    credits_added = result.transaction.amount

        db.refresh(user)
        return {
            "message": "Subscription verified and synced",
            "creditsAdded": credits_added,
            "subscription": subscription_payload(user),
            "credits": user.credits,
        }

    @staticmethod
    def cancel(db: Session, user: User) -> dict:
        if not user.stripe_subscription_id:
            raise HTTPException(status_code=400, detail="No active subscription found")

        stripe.Subscription.modify(user.stripe_subscription_id, cancel_at_period_end=True)
        user.cancel_at_period_end = True
        db.commit()
        logger.info(f"Stripe subscription {user.stripe_subscription_id} set to cancel at period end")
        return subscription_payload(user)

    # *** Webhook events ***

    @staticmethod
    def handle_event(db: Session, event: dict) -> Dict[str, Any]:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        log_debug(logger, f"Stripe event {event.get('id')} ({event_type})")

        if event_type == "checkout.session.completed":
            return StripeBilling._on_checkout_completed(db, obj)
        if event_type in ("invoice.payment_succeeded", "invoice.paid"):
            return StripeBilling._on_invoice_paid(db, obj)
        if event_type == "invoice.payment_failed":
            return StripeBilling._on_invoice_failed(db, obj)
        if event_type in ("customer.subscription.created", "customer.subscription.updated", "customer.subscription.deleted"):
            return StripeBilling._on_subscription_changed(db, obj)

        logger.info(f"Unhandled Stripe event type: {event_type}")
        return {"status": "ignored"}

    @staticmethod
    def _grant_outcome(result: Optional[GrantResult]) -> Dict[str, Any]:
        if result is None:
            return {"status": "processed", "credits_granted": False}
        return {
            "status": "processed" if result.granted else "already processed",
            "credits_granted": result.granted,
            "credits": result.balance,
        }

    @staticmethod
    def _on_checkout_completed(db: Session, session: dict) -> Dict[str, Any]:
        if session.get("mode") != "subscription":
            return {"status": "ignored"}

        customer_id = _expandable_id(session.get("customer"))
        user = find_user(db, customer_id, session.get("metadata"))
        if not user:
            logger.warning(f"Checkout session {session.get('id')} completed for unknown user")
            return {"status": "ignored", "message": "User not found"}

        if customer_id and user.stripe_customer_id != customer_id:
            user.stripe_customer_id = customer_id
            db.commit()

        subscription = session.get("subscription")
        if subscription and not isinstance(subscription, dict):
            subscription = _to_dict(stripe.Subscription.retrieve(subscription))
        if subscription:
            StripeBilling.sync_subscription(db, user, subscription)

        if session.get("payment_status") != "paid":
            return {"status": "processed", "credits_granted": False}

        invoice_id = _expandable_id(session.get("invoice")) or _expandable_id((subscription or {}).get("latest_invoice"))
        plan_key = (session.get("metadata") or {}).get("plan") or (subscription_plan(subscription, user) if subscription else None)
        return StripeBilling._grant_outcome(StripeBilling.grant_invoice(db, user, invoice_id, plan_key))

    @staticmethod
    def _on_invoice_paid(db: Session, invoice: dict) -> Dict[str, Any]:
        if not invoice_subscription_id(invoice):
            return {"status": "ignored", "message": "Not a subscription invoice"}

        user = find_user(db, _expandable_id(invoice.get("customer")), invoice_subscription_details(invoice).get("metadata"))
        if not user:
            logger.warning(f"Invoice {invoice.get('id')} paid for unknown customer {invoice.get('customer')}")
            return {"status": "ignored", "message": "User not found"}

        return StripeBilling._grant_outcome(
            StripeBilling.grant_invoice(db, user, invoice.get("id"), invoice_plan(invoice, user))
        )

    @staticmethod
    def _on_invoice_failed(db: Session, invoice: dict) -> Dict[str, Any]:
        user = find_user(db, _expandable_id(invoice.get("customer")), invoice_subscription_details(invoice).get("metadata"))
        if not user:
            return {"status": "ignored", "message": "User not found"}
        user.subscription_status = "past_due"
        db.commit()
        logger.warning(f"Invoice payment failed for user {user.id}, subscription marked past_due")
        return {"status": "processed"}

    @staticmethod
    def _on_subscription_changed(db: Session, subscription: dict) -> Dict[str, Any]:
        user = find_user(db, _expandable_id(subscription.get("customer")), subscription.get("metadata"))
        if not user:
            return {"status": "ignored", "message": "User not found"}
        StripeBilling.sync_subscription(db, user, subscription)
        return {"status": "processed", "subscription_status": user.subscription_status}
