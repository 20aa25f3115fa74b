"""
Tests for registration, OTP verification, login, token refresh and password reset
"""
from datetime import datetime, timedelta
import pytest
from fastapi import status
from models import User, VerificationCode, RefreshToken
from services.email_service import EmailService
from conftest import TEST_PASSWORD


@pytest.fixture
def sent_codes(monkeypatch):
    """Capture emailed codes instead of calling SendGrid"""
    codes = []

    def fake_send(self, to_email, name, code):
        codes.append((to_email, code))
        return True

    monkeypatch.setattr(EmailService, "send_registration_code", fake_send)
    monkeypatch.setattr(EmailService, "send_password_reset_code", fake_send)
    return codes


def register(client, email="new@example.com", phone=None):
    return client.post("/api/auth/register", json={
        "name": "New User",
        "email": email,
        "phone": phone,
        "password": "secret123",
    })


def test_register_and_verify_otp(client, db, sent_codes):
    """Registration emails a code and verifying it returns tokens"""
    response = register(client)
    assert response.status_code == status.HTTP_200_OK
    user_id = response.json()["userId"]

    user = db.query(User).filter(User.id == user_id).first()
    assert user.is_verified == False
    assert len(sent_codes) == 1

    response = client.post("/api/auth/verify-otp", json={"userId": user_id, "otp": sent_codes[0][1]})
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["access_token"]
    assert data["refresh_token"]
    assert data["user"]["is_verified"] == True
    assert data["nextStep"] == "complete-profile"


def test_register_duplicate_email(client, test_user, sent_codes):
    response = register(client, email="TEST@example.com")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "User with this email already exists"


def test_register_email_failure_removes_user(client, db, monkeypatch):
    monkeypatch.setattr(EmailService, "send_registration_code", lambda self, to_email, name, code: False)

    response = register(client)
    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert db.query(User).filter(User.email == "new@example.com").first() is None


def test_verify_otp_wrong_code(client, sent_codes):
    user_id = register(client).json()["userId"]
    wrong = "000000" if sent_codes[0][1] != "000000" else "111111"

    response = client.post("/api/auth/verify-otp", json={"userId": user_id, "otp": wrong})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Invalid OTP"


def test_verify_otp_expired(client, db, sent_codes):
    user_id = register(client).json()["userId"]
    entry = db.query(VerificationCode).filter(VerificationCode.user_id == user_id).first()
    entry.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    response = client.post("/api/auth/verify-otp", json={"userId": user_id, "otp": sent_codes[0][1]})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "OTP has expired"


def test_login_success(client, test_user):
    response = client.post("/api/auth/login", json={"email": test_user.email, "password": TEST_PASSWORD})
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["id"] == test_user.id


def test_login_wrong_password(client, test_user):
    response = client.post("/api/auth/login", json={"email": test_user.email, "password": "nope"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Invalid credentials"


def test_login_unverified(client, make_user):
    user = make_user(is_verified=False)
    response = client.post("/api/auth/login", json={"email": user.email, "password": TEST_PASSWORD})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Please verify your account first"


def test_refresh_rotates_token(client, test_user):
    tokens = client.post("/api/auth/login", json={"email": test_user.email, "password": TEST_PASSWORD}).json()

    response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["refresh_token"] != tokens["refresh_token"]

    # The old refresh token is revoked
    response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_password_reset_flow(client, db, test_user, sent_codes):
    client.post("/api/auth/login", json={"email": test_user.email, "password": TEST_PASSWORD})

    response = client.post("/api/auth/forgot-password", json={"email": test_user.email})
    assert response.status_code == status.HTTP_200_OK
    code = sent_codes[-1][1]

    response = client.post("/api/auth/reset-password", json={
        "email": test_user.email,
        "otp": code,
        "newPassword": "brandnew123",
    })
    assert response.status_code == status.HTTP_200_OK

    # Every session is signed out
    active = db.query(RefreshToken).filter(
        RefreshToken.user_id == test_user.id,
        RefreshToken.is_revoked == False
    ).count()
    assert active == 0

    response = client.post("/api/auth/login", json={"email": test_user.email, "password": "brandnew123"})
    assert response.status_code == status.HTTP_200_OK


def test_forgot_password_unknown_email(client, sent_codes):
    response = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert response.status_code == status.HTTP_200_OK
    assert sent_codes == []


def test_protected_route_requires_token(client):
    response = client.get("/api/user/profile")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
