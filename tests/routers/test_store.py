"""
Tests for App Store / Play Store receipt verification and RevenueCat purchase verification
"""
from datetime import datetime, timedelta
import pytest
from fastapi import status
from config import RevenueCat
from models import CreditTransaction, AuditLog
from services import revenuecat
from services.receipt_verifier import receipt_verifier

RC_HEADERS = {"Authorization": "rc-webhook-secret"}
PRODUCT = "com.booali.Atc.basic"


@pytest.fixture
def valid_receipts(monkeypatch):
    calls = []

    async def fake_verify(platform, receipt_data, product_id, transaction_id):
        calls.append((platform, product_id, transaction_id))
        return True, {
            "productId": product_id,
            "transactionId": transaction_id,
            "expiresAt": datetime.utcnow() + timedelta(days=30),
        }

    monkeypatch.setattr(receipt_verifier, "verify", fake_verify)
    return calls


@pytest.fixture
def revenuecat_customer(monkeypatch):
    """RevenueCat subscriber lookups answered from a mutable customer info dict"""
    monkeypatch.setattr(RevenueCat, "INITIAL_RETRY_DELAY", 0)
    customer_info = {"subscriber": {"subscriptions": {}, "non_subscriptions": {}, "other_purchases": {}}}
    lookups = []

    async def fake_fetch(app_user_id, platform):
        lookups.append(app_user_id)
        return customer_info

    monkeypatch.setattr(revenuecat, "fetch_subscriber", fake_fetch)
    return {"info": customer_info, "lookups": lookups}


def verify_native(client, headers, transaction_id="txn_1", platform="ios", product_id=PRODUCT):
    return client.post("/api/subscription/verify-native", headers=headers, json={
        "platform": platform,
        "productId": product_id,
        "transactionId": transaction_id,
        "receiptData": "base64-receipt",
    })


def verify_revenuecat(client, headers, rc_user_id="rc_user_1", transaction_id="2000", product_id=PRODUCT):
    return client.post("/api/subscription/verify-revenuecat", headers=headers, json={
        "revenueCatUserId": rc_user_id,
        "transactionId": transaction_id,
        "productId": product_id,
        "platform": "ios",
    })


# *** Native receipts ***

def test_verify_native_grants_plan_credits(client, db, auth_headers, test_user, valid_receipts):
    response = verify_native(client, auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "success": True,
        "credits": 200,
        "creditsAdded": 100,
        "message": "Purchase verified and credits granted",
    }

    db.refresh(test_user)
    assert test_user.subscription_platform == "ios"
    assert test_user.subscription_product_id == PRODUCT
    assert test_user.current_period_end > datetime.utcnow()
    entry = db.query(CreditTransaction).one()
    assert entry.idempotency_key == "store_txn:txn_1"
    assert entry.source == "app_store"


def test_verify_native_duplicate_transaction(client, db, auth_headers, valid_receipts):
    verify_native(client, auth_headers)
    response = verify_native(client, auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Transaction already processed"
    assert response.json()["credits"] == 200
    assert response.json()["creditsAdded"] == 0
    # The store is not asked again for a known transaction
    assert len(valid_receipts) == 1


def test_verify_native_android_source(client, db, auth_headers, valid_receipts):
    verify_native(client, auth_headers, transaction_id="GPA.1234", platform="android")
    assert db.query(CreditTransaction).one().source == "play_store"


def test_verify_native_invalid_receipt(client, db, monkeypatch, auth_headers, test_user):
    async def reject(platform, receipt_data, product_id, transaction_id):
        return False, {"error": "Transaction not found in receipt"}

    monkeypatch.setattr(receipt_verifier, "verify", reject)

    response = verify_native(client, auth_headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    db.refresh(test_user)
    assert test_user.credits == 100
    assert db.query(AuditLog).filter(AuditLog.status == "failure").count() == 1


def test_verify_native_unknown_product(client, auth_headers, valid_receipts):
    response = verify_native(client, auth_headers, product_id="com.other.app.gold")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert valid_receipts == []


def test_verify_native_invalid_platform(client, auth_headers, valid_receipts):
    response = verify_native(client, auth_headers, platform="windows")
    assert response.status_code == 422


def test_webhook_then_native_verify_grants_once(client, db, auth_headers, test_user, valid_receipts):
    """The same store transaction reported by the webhook and the app is granted once"""
    body = {"event": {
        "id": "rc_evt_1",
        "type": "INITIAL_PURCHASE",
        "app_user_id": str(test_user.id),
        "product_id": PRODUCT,
        "transaction_id": "txn_shared",
        "store": "APP_STORE",
    }}
    client.post("/webhook/revenuecat", json=body, headers=RC_HEADERS)

    response = verify_native(client, auth_headers, transaction_id="txn_shared")
    assert response.json()["message"] == "Transaction already processed"
    db.refresh(test_user)
    assert test_user.credits == 200
    assert db.query(CreditTransaction).count() == 1


# *** RevenueCat verification ***

def test_verify_revenuecat_grants_when_transaction_found(client, db, auth_headers, test_user, revenuecat_customer):
    revenuecat_customer["info"]["subscriber"]["subscriptions"][PRODUCT] = {
        "store_transaction_id": "2000",
        "expires_date": "2030-01-01T00:00:00Z",
    }

    response = verify_revenuecat(client, auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["creditsAdded"] == 100
    assert response.json()["credits"] == 200

    db.refresh(test_user)
    assert test_user.revenuecat_id == "rc_user_1"
    assert test_user.current_period_end == datetime(2030, 1, 1)
    assert db.query(CreditTransaction).one().source == "revenuecat"


def test_verify_revenuecat_non_subscription_purchase(client, auth_headers, revenuecat_customer):
    revenuecat_customer["info"]["subscriber"]["non_subscriptions"][PRODUCT] = [{"id": "rc_1", "store_transaction_id": "2000"}]
    response = verify_revenuecat(client, auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["creditsAdded"] == 100


def test_verify_revenuecat_retries_then_fails(client, db, auth_headers, test_user, revenuecat_customer):
    response = verify_revenuecat(client, auth_headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert len(revenuecat_customer["lookups"]) == RevenueCat.MAX_RETRIES
    db.refresh(test_user)
    assert test_user.credits == 100


def test_verify_revenuecat_simulator_bypass(client, monkeypatch, auth_headers, revenuecat_customer):
    monkeypatch.setattr(RevenueCat, "ALLOW_SIMULATOR_BYPASS", True)
    response = verify_revenuecat(client, auth_headers, rc_user_id="$RCAnonymousID:sim")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["creditsAdded"] == 100


def test_verify_revenuecat_simulator_without_bypass(client, auth_headers, revenuecat_customer):
    response = verify_revenuecat(client, auth_headers, rc_user_id="$RCAnonymousID:sim")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "REVENUECAT_ALLOW_SIMULATOR_BYPASS" in response.json()["detail"]


def test_verify_revenuecat_already_processed_skips_lookup(client, auth_headers, revenuecat_customer):
    revenuecat_customer["info"]["subscriber"]["subscriptions"][PRODUCT] = {"store_transaction_id": "2000"}
    verify_revenuecat(client, auth_headers)
    lookups = len(revenuecat_customer["lookups"])

    response = verify_revenuecat(client, auth_headers)
    assert response.json()["message"] == "Transaction already processed"
    assert len(revenuecat_customer["lookups"]) == lookups


# *** Offerings ***

def test_offerings_fall_back_without_api_key(client, monkeypatch, auth_headers):
    monkeypatch.setattr(RevenueCat, "API_KEY", None)
    response = client.get("/api/revenuecat/offerings", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    current = response.json()["data"]["offerings"]["current"]
    assert current["identifier"] == "credit_packages"
    assert {p["platform_product_identifier"] for p in current["packages"]} == {
        "com.booali.Atc.basic",
        "com.booali.Atc.standard",
        "com.booali.Atc.premium",
    }


def test_products(client, auth_headers):
    response = client.get("/api/revenuecat/products", headers=auth_headers)
    products = {p["identifier"]: p for p in response.json()["data"]["products"]}
    assert products["com.booali.Atc.premium"]["credits"] == 500
    assert products["com.booali.Atc.premium"]["price_string"] == "$5.00"
