"""
login.py
Endpoints using JWT to authenticate users: login, token refresh and password reset
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from models import User
from schemas import LoginRequest, RefreshTokenRequest, ForgotPasswordRequest, ResetPasswordRequest, TokenResponse, UserResponse
from db import get_db
from auth import (
    create_access_token,
    create_refresh_token,
    verify_refresh_token,
    revoke_refresh_token,
    revoke_all_refresh_tokens,
    verify_password,
    hash_password,
    issue_tokens,
)
from config import get_logger
from services.email_service import EmailService
from services.rate_limiter import rate_limiter
from services.verification_codes import issue_code, consume_code, RESET_PASSWORD

logger = get_logger(__name__)

router = APIRouter()


@router.post("/api/auth/login")
def login(login_request: LoginRequest, request: Request, db: Session = Depends(get_db)):
    """
    Login with email or phone and return access and refresh tokens with user info
    """
    client_ip = request.client.host if request.client else "unknown"
    rate_limiter.enforce(client_ip, "login", limit=20, window_seconds=300)

    if login_request.email:
        user = db.query(User).filter(User.email == login_request.email.strip().lower()).first()
    elif login_request.phone:
        user = db.query(User).filter(User.phone == login_request.phone).first()
    else:
        raise HTTPException(status_code=400, detail="Email or phone is required")

    if not user:
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not user.is_verified:
        raise HTTPException(status_code=400, detail="Please verify your account first")
    if not verify_password(login_request.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    logger.info(f"User logged in successfully: {user.id}")
    return {
        "message": "Login successful",
        **issue_tokens(user, db),
        "user": UserResponse.model_validate(user),
    }


@router.post("/api/auth/refresh", response_model=TokenResponse)
def refresh_token(refresh_request: RefreshTokenRequest, db: Session = Depends(get_db)):
    """
    Rotate the refresh token and issue a new access token
    """
    user = verify_refresh_token(refresh_request.refresh_token, db)

    access_token = create_access_token(data={"sub": user.email, "user_id": user.id})
    new_refresh_token = create_refresh_token(user.id, db)
    revoke_refresh_token(refresh_request.refresh_token, db)

    logger.info(f"Tokens refreshed successfully for user: {user.id}")
    return TokenResponse(access_token=access_token, refresh_token=new_refresh_token, token_type="bearer")


@router.post("/api/auth/forgot-password")
def forgot_password(forgot_request: ForgotPasswordRequest, db: Session = Depends(get_db)):
    email = forgot_request.email.strip().lower()
    rate_limiter.enforce(email, "forgot-password", limit=5, window_seconds=3600)

    response = {"message": "If the email exists, a reset code has been sent", "success": True}
    user = db.query(User).filter(User.email == email).first()
    if not user:
        return response

    code = issue_code(db, user, RESET_PASSWORD)
    if not EmailService().send_password_reset_code(user.email, user.name, code):
        logger.error(f"Failed to deliver password reset code to user {user.id}")
    return response


@router.post("/api/auth/reset-password")
def reset_password(reset_request: ResetPasswordRequest, db: Session = Depends(get_db)):
    email = reset_request.email.strip().lower()
    rate_limiter.enforce(email, "reset-password", limit=10, window_seconds=600)

    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise HTTPException(status_code=400, detail="Invalid code or email.")

    consume_code(db, user, RESET_PASSWORD, reset_request.otp)
    user.hashed_password = hash_password(reset_request.newPassword)
    db.commit()

    # Sign out every device
    revoke_all_refresh_tokens(user.id, db)

    logger.info(f"Password reset for user {user.id}")
    return {"message": "Password reset successfully", "success": True}
