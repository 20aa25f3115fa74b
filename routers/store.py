"""
store.py
In-app purchase verification for App Store and Google Play subscriptions.
Purchases are verified server side, either against the store directly or
through RevenueCat, before any credits are granted.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from models import User
from schemas import (
    VerifyNativeRequest,
    VerifyRevenueCatRequest,
    PurchaseVerificationResponse,
)
from db import get_db
from auth import get_current_user
from config import RevenueCat, SubscriptionPlans, get_logger
from services.audit_service import AuditService
from services.credit_ledger import CreditLedger, GrantResult, store_transaction_key
from services.rate_limiter import rate_limiter
from services.receipt_verifier import receipt_verifier
from services.revenuecat import wait_for_transaction, subscription_expiry
from services.subscription_service import SubscriptionService

logger = get_logger(__name__)

router = APIRouter()

STORE_SOURCES = {
    "ios": "app_store",
    "android": "play_store",
}


def purchase_response(result: GrantResult, product_id: str) -> PurchaseVerificationResponse:
    if not result.granted:
        return PurchaseVerificationResponse(
            success=True,
            credits=result.balance,
            message="Transaction already processed",
        )
    plan = SubscriptionPlans.plan_for_product(product_id)
    return PurchaseVerificationResponse(
        success=True,
        credits=result.balance,
        creditsAdded=SubscriptionPlans.PLANS[plan]["credits"],
        message="Purchase verified and credits granted",
    )


def already_processed_response(db: Session, user: User) -> PurchaseVerificationResponse:
    balance = CreditLedger.current_balance(db, user.id)
    logger.info(f"Transaction already processed. Returning current credit balance: {balance}")
    return PurchaseVerificationResponse(success=True, credits=balance, message="Transaction already processed")


@router.post("/api/subscription/verify-native", response_model=PurchaseVerificationResponse)
async def verify_native_purchase(
    request_data: VerifyNativeRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Verify an App Store or Play Store receipt and grant the plan's credits.

    The receipt is checked with the store, the product must map to a plan,
    and the store transaction id is the idempotency key for the grant.
    """
    rate_limiter.enforce(current_user.id, "verify-native", limit=10, window_seconds=60)
    platform = request_data.platform.value

    logger.info(
        f"Verifying {platform} purchase for user {current_user.id}: "
        f"product {request_data.productId}, transaction {request_data.transactionId}"
    )

    try:
        if not SubscriptionPlans.plan_for_product(request_data.productId):
            logger.error(f"Unknown product ID: {request_data.productId}")
            raise HTTPException(status_code=400, detail=f"Unknown product ID: {request_data.productId}")

        if CreditLedger.transaction_already_processed(db, store_transaction_key(request_data.transactionId)):
            return already_processed_response(db, current_user)

        is_valid, details = await receipt_verifier.verify(
            platform,
            request_data.receiptData,
            request_data.productId,
            request_data.transactionId,
        )
        if not is_valid:
            logger.warning(f"Receipt verification failed for user {current_user.id}: {details.get('error')}")
            AuditService.log_request(
                db,
                request,
                user_id=current_user.id,
                action="verify_native",
                status="failure",
                details={"productId": request_data.productId, "error": details.get("error")},
            )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Receipt verification failed: {details.get('error', 'invalid receipt')}"
            )

        result = SubscriptionService.apply_store_purchase(
            db,
            current_user,
            product_id=request_data.productId,
            transaction_id=request_data.transactionId,
            platform=platform,
            source=STORE_SOURCES[platform],
            expires_at=details.get("expiresAt"),
        )
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to verify native purchase for user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to verify purchase: {str(e)}"
        )

    AuditService.log_request(
        db,
        request,
        user_id=current_user.id,
        action="verify_native",
        status="success" if result.granted else "duplicate",
        details={"productId": request_data.productId, "transactionId": request_data.transactionId},
    )
    logger.info(f"Native purchase complete for user {current_user.id}. Balance: {result.balance}")
    return purchase_response(result, request_data.productId)


@router.post("/api/subscription/verify-revenuecat", response_model=PurchaseVerificationResponse)
async def verify_revenuecat_purchase(
    request_data: VerifyRevenueCatRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Verify a purchase with the RevenueCat API and grant the plan's credits.

    RevenueCat processes purchases asynchronously so the lookup is retried
    with backoff. Simulator purchases may skip the lookup when
    REVENUECAT_ALLOW_SIMULATOR_BYPASS is set.
    """
    rate_limiter.enforce(current_user.id, "verify-revenuecat", limit=10, window_seconds=60)
    platform = request_data.platform.value
    device_fingerprint = request.headers.get("Device-Fingerprint")

    logger.info(f"Verifying RevenueCat purchase for user {current_user.id}")
    logger.info(f"RevenueCat User ID: {request_data.revenueCatUserId}")
    logger.info(f"Transaction ID: {request_data.transactionId}, Product ID: {request_data.productId}")
    if device_fingerprint:
        logger.info(f"Device Fingerprint: {device_fingerprint[:20]}...")

    try:
        if not SubscriptionPlans.plan_for_product(request_data.productId):
            logger.error(f"Unknown product ID: {request_data.productId}")
            raise HTTPException(status_code=400, detail=f"Unknown product ID: {request_data.productId}")

        # Quick duplicate check, the unique idempotency key is the real guard
        if CreditLedger.transaction_already_processed(db, store_transaction_key(request_data.transactionId)):
            return already_processed_response(db, current_user)

        is_simulator = request_data.revenueCatUserId.startswith("$RCAnonymousID")
        transaction_found, customer_info = await wait_for_transaction(
            request_data.revenueCatUserId,
            platform,
            request_data.transactionId,
            request_data.productId,
        )

        if not transaction_found:
            if is_simulator and RevenueCat.ALLOW_SIMULATOR_BYPASS:
                logger.warning(
                    f"Allowing simulator purchase to bypass RevenueCat verification. "
                    f"Transaction ID: {request_data.transactionId}, Product ID: {request_data.productId}"
                )
            else:
                error_detail = (
                    f"Transaction not found in RevenueCat after {RevenueCat.MAX_RETRIES} attempts. "
                    f"Product ID: {request_data.productId}, Transaction ID: {request_data.transactionId}. "
                )
                if is_simulator:
                    error_detail += (
                        "Simulator transactions may take a few seconds to sync to RevenueCat. "
                        "For development, set REVENUECAT_ALLOW_SIMULATOR_BYPASS=true to bypass verification."
                    )
                else:
                    error_detail += "RevenueCat processes transactions asynchronously. Please try again in a few seconds."
                AuditService.log_request(
                    db,
                    request,
                    user_id=current_user.id,
                    action="verify_revenuecat",
                    status="failure",
                    details={"productId": request_data.productId, "transactionId": request_data.transactionId},
                )
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_detail)

        result = SubscriptionService.apply_store_purchase(
            db,
            current_user,
            product_id=request_data.productId,
            transaction_id=request_data.transactionId,
            platform=platform,
            source="revenuecat",
            expires_at=subscription_expiry(customer_info, request_data.productId),
            revenuecat_id=request_data.revenueCatUserId,
        )
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to verify RevenueCat purchase for user {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to verify purchase: {str(e)}"
        )

    AuditService.log_request(
        db,
        request,
        user_id=current_user.id,
        action="verify_revenuecat",
        status="success" if result.granted else "duplicate",
        details={"productId": request_data.productId, "transactionId": request_data.transactionId},
    )
    logger.info(f"RevenueCat purchase complete for user {current_user.id}. Balance: {result.balance}")
    return purchase_response(result, request_data.productId)
