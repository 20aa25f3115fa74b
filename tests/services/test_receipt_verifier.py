"""
Tests for App Store and Google Play receipt verification
"""
import asyncio
import time
import httpx
import pytest
from config import AppStore
from services.receipt_verifier import ReceiptVerifier

EXPIRES_MS = str(int((time.time() + 30 * 24 * 3600) * 1000))


def apple_receipt(transaction_id="1000", product_id="com.booali.Atc.basic"):
    return {
        "status": 0,
        "latest_receipt_info": [{
            "transaction_id": transaction_id,
            "original_transaction_id": "900",
            "product_id": product_id,
            "expires_date_ms": EXPIRES_MS,
        }],
    }


@pytest.fixture
def verifier():
    verifier = ReceiptVerifier()
    verifier.test_mode = False
    return verifier


@pytest.fixture
def apple_responses(monkeypatch, verifier):
    """Answer verifyReceipt calls per endpoint URL"""
    responses = {}
    calls = []

    async def fake_post(client, url, receipt_data):
        calls.append(url)
        return responses[url]

    monkeypatch.setattr(verifier, "_post_apple", fake_post)
    return responses, calls


def test_apple_production_receipt(verifier, apple_responses):
    responses, calls = apple_responses
    responses[AppStore.VERIFY_RECEIPT_PRODUCTION] = apple_receipt()

    ok, details = asyncio.run(verifier.verify("ios", "receipt", "com.booali.Atc.basic", "1000"))
    assert ok
    assert details["environment"] == "Production"
    assert details["originalTransactionId"] == "900"
    assert details["expiresAt"] is not None
    assert calls == [AppStore.VERIFY_RECEIPT_PRODUCTION]


def test_apple_sandbox_receipt_retried_against_sandbox(verifier, apple_responses):
    responses, calls = apple_responses
    responses[AppStore.VERIFY_RECEIPT_PRODUCTION] = {"status": AppStore.SANDBOX_RECEIPT_STATUS}
    responses[AppStore.VERIFY_RECEIPT_SANDBOX] = apple_receipt()

    ok, details = asyncio.run(verifier.verify("ios", "receipt", "com.booali.Atc.basic", "1000"))
    assert ok
    assert details["environment"] == "Sandbox"
    assert calls == [AppStore.VERIFY_RECEIPT_PRODUCTION, AppStore.VERIFY_RECEIPT_SANDBOX]


def test_apple_rejects_unknown_transaction(verifier, apple_responses):
    responses, _ = apple_responses
    responses[AppStore.VERIFY_RECEIPT_PRODUCTION] = apple_receipt(transaction_id="other")

    ok, details = asyncio.run(verifier.verify("ios", "receipt", "com.booali.Atc.basic", "1000"))
    assert not ok
    assert details["error"] == "Transaction not found in receipt"


def test_apple_rejects_product_mismatch(verifier, apple_responses):
    responses, _ = apple_responses
    responses[AppStore.VERIFY_RECEIPT_PRODUCTION] = apple_receipt(product_id="com.booali.Atc.premium")

    ok, details = asyncio.run(verifier.verify("ios", "receipt", "com.booali.Atc.basic", "1000"))
    assert not ok
    assert details["error"] == "Product ID does not match receipt"


def test_apple_rejects_bad_status(verifier, apple_responses):
    responses, _ = apple_responses
    responses[AppStore.VERIFY_RECEIPT_PRODUCTION] = {"status": 21003}

    ok, _ = asyncio.run(verifier.verify("ios", "receipt", "com.booali.Atc.basic", "1000"))
    assert not ok


@pytest.fixture
def google_purchase(monkeypatch, verifier):
    verifier.google_token = "token"
    verifier.google_package = "com.booali.Atc"
    purchase = {}

    async def fake_get(self, url, **kwargs):
        return httpx.Response(200, json=purchase)

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    return purchase


def test_google_renewal_order_id_accepted(verifier, google_purchase):
    google_purchase.update({"orderId": "GPA.1234..1", "paymentState": 1, "expiryTimeMillis": EXPIRES_MS})

    ok, details = asyncio.run(verifier.verify("android", "purchase-token", "com.booali.Atc.basic", "GPA.1234"))
    assert ok
    assert details["transactionId"] == "GPA.1234..1"


def test_google_pending_payment_rejected(verifier, google_purchase):
    google_purchase.update({"orderId": "GPA.1234", "paymentState": 0, "expiryTimeMillis": EXPIRES_MS})

    ok, details = asyncio.run(verifier.verify("android", "purchase-token", "com.booali.Atc.basic", "GPA.1234"))
    assert not ok
    assert details["error"] == "Payment not received"


def test_google_expired_subscription_rejected(verifier, google_purchase):
    expired = str(int((time.time() - 3600) * 1000))
    google_purchase.update({"orderId": "GPA.1234", "paymentState": 1, "expiryTimeMillis": expired})

    ok, details = asyncio.run(verifier.verify("android", "purchase-token", "com.booali.Atc.basic", "GPA.1234"))
    assert not ok
    assert details["error"] == "Subscription expired"


def test_google_without_credentials(verifier):
    verifier.google_token = None
    ok, details = asyncio.run(verifier.verify("android", "purchase-token", "com.booali.Atc.basic", "GPA.1234"))
    assert not ok


def test_test_mode_accepts_any_receipt():
    verifier = ReceiptVerifier()
    verifier.test_mode = True
    ok, details = asyncio.run(verifier.verify("ios", "anything", "com.booali.Atc.basic", "1"))
    assert ok
    assert details["environment"] == "Test"
