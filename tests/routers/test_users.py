"""
Tests for account settings, safety endpoints, credit history and admin credit grants
"""
from fastapi import status
from models import UserBlock, Report, AuditLog, CreditTransaction

ADMIN_HEADERS = {"X-Admin-Key": "admin-test-key"}


def test_push_token_save_and_remove(client, db, auth_headers, test_user):
    response = client.post("/api/user/push-token", headers=auth_headers, json={"token": "ExponentPushToken[abc]"})
    assert response.status_code == status.HTTP_200_OK
    db.refresh(test_user)
    assert test_user.expo_push_token == "ExponentPushToken[abc]"

    response = client.delete("/api/user/push-token", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    db.refresh(test_user)
    assert test_user.expo_push_token is None


def test_push_token_required(client, auth_headers):
    response = client.post("/api/user/push-token", headers=auth_headers, json={"token": ""})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_notification_preferences_partial_update(client, auth_headers):
    response = client.put("/api/user/notification-preferences", headers=auth_headers, json={"push": False})
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["notificationPreferences"] == {
        "email": True,
        "push": False,
        "subscriptionReminders": True,
    }


def test_block_and_unblock(client, db, auth_headers, test_user, other_user):
    response = client.post(f"/api/user/block/{other_user.id}", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    # Blocking twice is harmless
    response = client.post(f"/api/user/block/{other_user.id}", headers=auth_headers)
    assert response.json()["message"] == "User already blocked"
    assert db.query(UserBlock).count() == 1

    response = client.post(f"/api/user/unblock/{other_user.id}", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert db.query(UserBlock).count() == 0


def test_block_self(client, auth_headers, test_user):
    response = client.post(f"/api/user/block/{test_user.id}", headers=auth_headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_report_user(client, db, auth_headers, test_user, other_user):
    response = client.post("/api/user/report", headers=auth_headers, json={
        "reportedUserId": other_user.id,
        "reason": "spam",
        "description": "Sends the same message to everyone",
    })
    assert response.status_code == status.HTTP_200_OK
    report = db.query(Report).one()
    assert report.reporter_id == test_user.id
    assert report.status == "pending"


def test_report_invalid_reason(client, auth_headers, other_user):
    response = client.post("/api/user/report", headers=auth_headers, json={
        "reportedUserId": other_user.id,
        "reason": "rude",
    })
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_report_description_too_long(client, auth_headers, other_user):
    response = client.post("/api/user/report", headers=auth_headers, json={
        "reportedUserId": other_user.id,
        "reason": "other",
        "description": "x" * 501,
    })
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_admin_add_credits(client, db, test_user):
    response = client.post("/api/user/add-credits", headers=ADMIN_HEADERS, json={
        "userId": test_user.id,
        "amount": 25,
        "reason": "Support refund",
    })
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["credits"] == 125

    entry = db.query(CreditTransaction).one()
    assert entry.source == "admin"
    assert entry.idempotency_key.startswith("admin:")
    assert db.query(AuditLog).filter(AuditLog.action == "admin_add_credits").count() == 1


def test_admin_add_credits_requires_key(client, test_user):
    response = client.post("/api/user/add-credits", headers={"X-Admin-Key": "wrong"}, json={
        "userId": test_user.id,
        "amount": 25,
    })
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_admin_add_credits_rejects_non_positive(client, test_user):
    response = client.post("/api/user/add-credits", headers=ADMIN_HEADERS, json={"userId": test_user.id, "amount": 0})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_credit_history_newest_first(client, auth_headers, test_user):
    client.post("/api/user/add-credits", headers=ADMIN_HEADERS, json={"userId": test_user.id, "amount": 5})
    client.post("/api/subscription/use-credits", headers=auth_headers, json={"amount": 30})

    response = client.get("/api/user/credits/history", headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["credits"] == 75
    assert [t["amount"] for t in data["transactions"]] == [-30, 5]
    assert data["transactions"][0]["balance_after"] == 75
