"""
revenuecat.py
RevenueCat REST lookups, offerings, and webhook event handling.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from config import RevenueCat, SubscriptionPlans, get_logger, log_debug, log_debug_warning
from models import User
from services.credit_ledger import CreditLedger
from services.subscription_service import SubscriptionService

logger = get_logger(__name__)

# RevenueCat store names to our platform names
STORE_PLATFORMS = {
    "APP_STORE": "ios",
    "MAC_APP_STORE": "ios",
    "PLAY_STORE": "android",
}

GRANT_EVENTS = ("INITIAL_PURCHASE", "RENEWAL", "NON_RENEWING_PURCHASE")

PACKAGE_TITLES = {
    "basic": "Builder Package",
    "standard": "Legacy Package",
    "premium": "Supporter Package",
}


def configured_products() -> list:
    products = []
    for product_id, plan_key in SubscriptionPlans.PRODUCT_PLAN_MAPPING.items():
        plan = SubscriptionPlans.PLANS[plan_key]
        price = plan["price"] / 100
        products.append({
            "identifier": product_id,
            "price": price,
            "price_string": f"${price:.2f}",
            "currency_code": "USD",
            "title": PACKAGE_TITLES.get(plan_key, plan["name"]),
            "description": f"{plan['credits']} credits for ATC",
            "credits": plan["credits"],
        })
    return products


def fallback_offerings() -> dict:
    """Static offerings served whenever the RevenueCat API can't be used"""
    packages = []
    for product in configured_products():
        plan_key = SubscriptionPlans.PRODUCT_PLAN_MAPPING[product["identifier"]]
        product = {k: v for k, v in product.items() if k != "credits"}
        packages.append({
            "identifier": f"{plan_key}_package",
            "platform_product_identifier": product["identifier"],
            "product": product,
        })
    return {
        "current": {
            "identifier": "credit_packages",
            "description": "ATC Credit Packages",
            "packages": packages,
        }
    }


async def fetch_offerings() -> dict:
    if not RevenueCat.API_KEY or not RevenueCat.PROJECT_ID:
        logger.warning("RevenueCat API key not configured, returning fallback offerings")
        return {"offerings": fallback_offerings()}

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(
                f"{RevenueCat.API_URL}/projects/{RevenueCat.PROJECT_ID}/offerings",
                headers={
                    "Authorization": f"Bearer {RevenueCat.API_KEY}",
                    "Content-Type": "application/json",
                },
            )
        if response.status_code != 200:
            raise ValueError(f"RevenueCat API error: {response.status_code}")
        return response.json()
    except Exception as e:
        logger.error(f"Error fetching RevenueCat offerings: {str(e)}")
        return {"offerings": fallback_offerings()}


async def fetch_subscriber(app_user_id: str, platform: str) -> dict:
    """Fetch customer info from RevenueCat"""
    async with httpx.AsyncClient() as client:
        response = await client.get(
            f"{RevenueCat.API_URL}/subscribers/{app_user_id}",
            headers={
                "Authorization": f"Bearer {RevenueCat.API_KEY}",
                "X-Platform": platform.lower(),
            },
            timeout=10.0,
        )

    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Failed to verify with RevenueCat: {response.status_code}"
        )
    return response.json()


def _product_matches(product_key: str, product_id: str) -> bool:
    # Package identifiers can wrap the store product id
    return product_key == product_id or product_id in product_key or product_key in product_id


def _transaction_ids(entry: Any) -> Iterable[str]:
    if isinstance(entry, str):
        return [entry]
    if isinstance(entry, dict):
        return [
            value for value in (
                entry.get("id"),
                entry.get("store_transaction_id"),
                entry.get("transaction_id"),
                entry.get("original_transaction_id"),
            ) if value
        ]
    return []


def transaction_exists_in_customer_info(customer_info: dict, transaction_id: str, product_id: str) -> bool:
    """
    Check whether RevenueCat's customer info knows about the transaction.

    RevenueCat lists purchases under:
    1. subscriptions - {product_id: {...subscription fields, store_transaction_id}}
    2. non_subscriptions - {product_id: [{id, store_transaction_id, ...}]}
    3. other_purchases - StoreKit simulator/test purchases
    """
    if not isinstance(customer_info, dict):
        logger.error(f"Invalid customer_info type: {type(customer_info)}")
        return False

    subscriber = customer_info.get("subscriber") or {}
    if not isinstance(subscriber, dict):
        logger.error(f"Invalid subscriber type: {type(subscriber)}")
        return False

    log_debug(logger, f"Looking for transaction_id: {transaction_id}, product_id: {product_id}")

    for source_name in ("subscriptions", "non_subscriptions", "other_purchases"):
        purchases = subscriber.get(source_name) or {}
        if not isinstance(purchases, dict):
            continue
        for product_key, entries in purchases.items():
            if not _product_matches(product_key, product_id):
                continue
            if not isinstance(entries, (list, tuple)):
                entries = [entries]
            for entry in entries:
                if transaction_id in _transaction_ids(entry):
                    log_debug(logger, f"Found matching transaction in {source_name}")
                    return True

    log_debug_warning(
        logger,
        f"Transaction not found. Subscriber structure: {json.dumps(subscriber, default=str)[:2000]}"
    )
    return False


def subscription_expiry(customer_info: dict, product_id: str) -> Optional[datetime]:
    subscriptions = ((customer_info or {}).get("subscriber") or {}).get("subscriptions") or {}
    for product_key, entry in subscriptions.items():
        if _product_matches(product_key, product_id) and isinstance(entry, dict) and entry.get("expires_date"):
            try:
                return datetime.strptime(entry["expires_date"][:19], "%Y-%m-%dT%H:%M:%S")
            except ValueError:
                return None
    return None


async def wait_for_transaction(app_user_id: str, platform: str, transaction_id: str, product_id: str) -> Tuple[bool, dict]:
    """
    RevenueCat processes purchases asynchronously, so poll with exponential
    backoff (1s, 2s, 4s) until the transaction shows up.
    """
    retry_delay = RevenueCat.INITIAL_RETRY_DELAY
    customer_info: dict = {}

    for attempt in range(RevenueCat.MAX_RETRIES):
        customer_info = await fetch_subscriber(app_user_id, platform)
        if transaction_exists_in_customer_info(customer_info, transaction_id, product_id):
            logger.info(f"Transaction {transaction_id} found in RevenueCat on attempt {attempt + 1}")
            return True, customer_info

        if attempt < RevenueCat.MAX_RETRIES - 1:
            logger.info(
                f"Transaction not found yet (attempt {attempt + 1}/{RevenueCat.MAX_RETRIES}). "
                f"Retrying in {retry_delay} seconds..."
            )
            await asyncio.sleep(retry_delay)
            retry_delay *= 2

    return False, customer_info


def _ms_to_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.utcfromtimestamp(int(value) / 1000)


def resolve_webhook_user(db: Session, event: dict) -> Optional[User]:
    """The app user id is our user id; aliases and stored RevenueCat ids also resolve"""
    candidates = [event.get("app_user_id"), event.get("original_app_user_id")]
    candidates += list(event.get("aliases") or [])
    candidates = [str(c) for c in candidates if c]

    for candidate in candidates:
        if candidate.isdigit():
            user = db.query(User).filter(User.id == int(candidate)).first()
            if user:
                return user

    if candidates:
        return db.query(User).filter(User.revenuecat_id.in_(candidates)).first()
    return None


def handle_webhook_event(db: Session, event: dict) -> Dict[str, Any]:
    event_type = event.get("type")
    if event_type == "TEST":
        return {"status": "ok", "message": "Test event acknowledged"}

    user = resolve_webhook_user(db, event)
    if not user:
        logger.warning(f"RevenueCat {event_type} event for unknown user {event.get('app_user_id')}")
        return {"status": "ignored", "message": "User not found"}

    store = event.get("store")
    if store == "STRIPE":
        # Stripe purchases are reconciled by the Stripe webhook
        return {"status": "ignored", "message": "Stripe purchases are handled by the Stripe webhook"}

    platform = STORE_PLATFORMS.get(store)
    product_id = event.get("product_id")
    expires_at = _ms_to_datetime(event.get("expiration_at_ms"))

    if event_type in GRANT_EVENTS:
        if not SubscriptionPlans.plan_for_product(product_id):
            logger.error(f"RevenueCat {event_type} for unknown product {product_id}")
            return {"status": "ignored", "message": f"Unknown product ID: {product_id}"}

        transaction_id = event.get("transaction_id") or event.get("id")
        result = SubscriptionService.apply_store_purchase(
            db,
            user,
            product_id=product_id,
            transaction_id=transaction_id,
            platform=platform,
            source="revenuecat",
            expires_at=expires_at,
            revenuecat_id=event.get("app_user_id"),
        )
        return {
            "status": "processed" if result.granted else "already processed",
            "credits": result.balance,
        }

    if event_type == "UNCANCELLATION":
        user.subscription_status = "active"
        user.cancel_at_period_end = False
        if expires_at:
            user.current_period_end = expires_at
    elif event_type == "CANCELLATION":
        user.cancel_at_period_end = True
    elif event_type == "EXPIRATION":
        user.subscription_status = "canceled"
        user.cancel_at_period_end = False
    elif event_type == "BILLING_ISSUE":
        user.subscription_status = "past_due"
    else:
        logger.info(f"Unhandled RevenueCat event type: {event_type}")
        return {"status": "ignored", "message": f"Unhandled event type {event_type}"}

    db.commit()
    logger.info(f"RevenueCat {event_type} synced for user {user.id}: status {user.subscription_status}")
    return {"status": "processed", "credits": CreditLedger.current_balance(db, user.id)}
