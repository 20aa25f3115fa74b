"""
subscription_service.py
Shared subscription state handling for every billing channel, and the
store purchase grant used by receipt verification, RevenueCat verification
and the RevenueCat webhook.
"""
from typing import Optional
from datetime import datetime
from fastapi import HTTPException
from sqlalchemy.orm import Session
from models import User
from config import SubscriptionPlans, get_logger
from services.credit_ledger import CreditLedger, GrantResult, store_transaction_key

logger = get_logger(__name__)


def subscription_payload(user: User) -> dict:
    return {
        "plan": user.subscription_plan,
        "status": user.subscription_status,
        "platform": user.subscription_platform,
        "productId": user.subscription_product_id,
        "stripeCustomerId": user.stripe_customer_id,
        "stripeSubscriptionId": user.stripe_subscription_id,
        "currentPeriodEnd": user.current_period_end,
        "cancelAtPeriodEnd": bool(user.cancel_at_period_end),
    }


class SubscriptionService:
    @staticmethod
    def plans() -> list:
        return [
            {
                "id": key,
                "name": plan["name"],
                "price": plan["price"] / 100,
                "credits": plan["credits"],
                "interval": plan["interval"],
                "description": plan["description"],
                "stripePriceId": plan["stripe_price_id"],
            }
            for key, plan in SubscriptionPlans.PLANS.items()
        ]

    @staticmethod
    def is_active(user: User, now: Optional[datetime] = None) -> bool:
        if user.subscription_status != "active" or not user.current_period_end:
            return False
        return (now or datetime.utcnow()) < user.current_period_end

    @staticmethod
    def status(user: User) -> dict:
        return {
            "subscription": subscription_payload(user),
            "credits": user.credits,
            "isActive": SubscriptionService.is_active(user),
            "hasSubscription": bool(user.subscription_plan),
        }

    @staticmethod
    def record_store_subscription(
        db: Session,
        user: User,
        *,
        plan: str,
        platform: Optional[str],
        product_id: str,
        expires_at: Optional[datetime] = None,
        revenuecat_id: Optional[str] = None,
    ) -> None:
        user.subscription_plan = plan
        user.subscription_status = "active"
        if platform:
            user.subscription_platform = platform
        user.subscription_product_id = product_id
        user.cancel_at_period_end = False
        if expires_at:
            user.current_period_end = expires_at
        if revenuecat_id:
            user.revenuecat_id = revenuecat_id
        db.commit()

    @staticmethod
    def apply_store_purchase(
        db: Session,
        user: User,
        *,
        product_id: str,
        transaction_id: str,
        platform: Optional[str],
        source: str,
        expires_at: Optional[datetime] = None,
        revenuecat_id: Optional[str] = None,
    ) -> GrantResult:
        """
        Record the store subscription on the user and grant the plan's credits
        once per store transaction, whichever channel reports it first.
        """
        plan = SubscriptionPlans.plan_for_product(product_id)
        if not plan:
            logger.error(f"Unknown product ID: {product_id}")
            raise HTTPException(status_code=400, detail=f"Unknown product ID: {product_id}")

        # Known transactions leave subscription state untouched
        if CreditLedger.transaction_already_processed(db, store_transaction_key(transaction_id)):
            logger.info(f"Store transaction {transaction_id} already processed for user {user.id}")
            return GrantResult(False, CreditLedger.current_balance(db, user.id))

        # Subscription state is committed before the grant so a duplicate grant cannot roll it back
        SubscriptionService.record_store_subscription(
            db,
            user,
            plan=plan,
            platform=platform,
            product_id=product_id,
            expires_at=expires_at,
            revenuecat_id=revenuecat_id,
        )

        return CreditLedger.grant(
            db,
            user_id=user.id,
            amount=SubscriptionPlans.PLANS[plan]["credits"],
            idempotency_key=store_transaction_key(transaction_id),
            source=source,
            reference=product_id,
            description=f"{SubscriptionPlans.PLANS[plan]['name']} plan purchase",
        )
