"""
receipt_verifier.py
Server-side receipt verification for Apple App Store and Google Play.

Apple: legacy verifyReceipt endpoint, production first and sandbox when Apple
answers with status 21007.
Google: Android Publisher API purchases.subscriptions.get with a service
account access token.
"""

from typing import Dict, Any, Optional, Tuple, List
from datetime import datetime, timedelta
import httpx

from config import AppStore, GooglePlay, RECEIPT_TEST_MODE, get_logger, log_debug, log_debug_error

logger = get_logger(__name__)


def _ms_to_datetime(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.utcfromtimestamp(int(value) / 1000)


class ReceiptVerifier:
    def __init__(self) -> None:
        self.test_mode = RECEIPT_TEST_MODE
        # Apple
        self.apple_shared_secret = AppStore.SHARED_SECRET
        # Google
        self.google_token = GooglePlay.ACCESS_TOKEN
        self.google_package = GooglePlay.PACKAGE_NAME

    async def verify(self, platform: str, receipt_data: str, product_id: str, transaction_id: str) -> Tuple[bool, Dict[str, Any]]:
        if self.test_mode:
            # Simulated verification for development/testing
            return True, {
                "productId": product_id,
                "transactionId": transaction_id,
                "expiresAt": datetime.utcnow() + timedelta(days=30),
                "environment": "Test",
            }

        if platform == "ios":
            return await self._verify_apple(receipt_data, product_id, transaction_id)
        elif platform == "android":
            return await self._verify_google(receipt_data, product_id, transaction_id)
        else:
            return False, {"error": "Unsupported platform"}

    async def _post_apple(self, client: httpx.AsyncClient, url: str, receipt_data: str) -> Dict[str, Any]:
        payload = {"receipt-data": receipt_data, "exclude-old-transactions": False}
        if self.apple_shared_secret:
            payload["password"] = self.apple_shared_secret
        response = await client.post(url, json=payload)
        return response.json()

    async def _verify_apple(self, receipt_data: str, product_id: str, transaction_id: str) -> Tuple[bool, Dict[str, Any]]:
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                result = await self._post_apple(client, AppStore.VERIFY_RECEIPT_PRODUCTION, receipt_data)
                environment = "Production"
                if result.get("status") == AppStore.SANDBOX_RECEIPT_STATUS:
                    log_debug(logger, "Sandbox receipt sent to production, retrying against sandbox")
                    result = await self._post_apple(client, AppStore.VERIFY_RECEIPT_SANDBOX, receipt_data)
                    environment = "Sandbox"
        except httpx.HTTPError as e:
            logger.error(f"Apple receipt verification request failed: {str(e)}")
            return False, {"error": "Could not reach Apple receipt verification"}

        receipt_status = result.get("status")
        if receipt_status != 0:
            log_debug_error(logger, f"Apple receipt rejected with status {receipt_status}")
            return False, {"error": f"Invalid receipt (status {receipt_status})"}

        transactions: List[Dict[str, Any]] = list(result.get("latest_receipt_info") or [])
        transactions += (result.get("receipt") or {}).get("in_app") or []

        match = next((t for t in transactions if t.get("transaction_id") == transaction_id), None)
        if not match:
            return False, {"error": "Transaction not found in receipt"}
        if match.get("product_id") != product_id:
            return False, {"error": "Product ID does not match receipt"}

        return True, {
            "productId": product_id,
            "transactionId": transaction_id,
            "originalTransactionId": match.get("original_transaction_id"),
            "expiresAt": _ms_to_datetime(match.get("expires_date_ms")),
            "environment": environment,
        }

    async def _verify_google(self, purchase_token: str, product_id: str, order_id: str) -> Tuple[bool, Dict[str, Any]]:
        if not (self.google_token and self.google_package):
            return False, {"error": "Google credentials not configured"}

        url = (
            f"{GooglePlay.API_URL}/applications/{self.google_package}"
            f"/purchases/subscriptions/{product_id}/tokens/{purchase_token}"
        )
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                response = await client.get(url, headers={"Authorization": f"Bearer {self.google_token}"})
        except httpx.HTTPError as e:
            logger.error(f"Google Play verification request failed: {str(e)}")
            return False, {"error": "Could not reach Google Play"}

        if response.status_code != 200:
            log_debug_error(logger, f"Google Play verification failed: {response.status_code} {response.text}")
            return False, {"error": f"Google Play verification failed ({response.status_code})"}

        data = response.json()
        purchase_order = data.get("orderId") or ""
        # Renewals carry the original order id with a ..N suffix
        if purchase_order != order_id and not purchase_order.startswith(f"{order_id}.."):
            return False, {"error": "Order ID does not match purchase"}

        # paymentState: 0 pending, 1 received, 2 free trial, 3 deferred
        if data.get("paymentState") not in (1, 2):
            return False, {"error": "Payment not received"}

        expires_at = _ms_to_datetime(data.get("expiryTimeMillis"))
        if expires_at and expires_at < datetime.utcnow():
            return False, {"error": "Subscription expired"}

        return True, {
            "productId": product_id,
            "transactionId": purchase_order,
            "expiresAt": expires_at,
            "environment": "Test" if data.get("purchaseType") == 0 else "Production",
        }


# Singleton instance
receipt_verifier = ReceiptVerifier()
