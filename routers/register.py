"""
register.py
Account registration with an emailed one time code
"""

import secrets
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from models import User
from schemas import RegisterRequest, VerifyOtpRequest, UserResponse
from db import get_db
from auth import hash_password, issue_tokens
from config import get_logger
from services.email_service import EmailService
from services.rate_limiter import rate_limiter
from services.verification_codes import issue_code, consume_code, REGISTER

logger = get_logger(__name__)

router = APIRouter()


@router.post("/api/auth/register")
def register(user_data: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    """
    Create an unverified account and email it a verification code.
    The account is removed again if the code can't be delivered.
    """
    email = user_data.email.strip().lower()
    client_ip = request.client.host if request.client else "unknown"
    rate_limiter.enforce(client_ip, "register", limit=10, window_seconds=3600)

    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="User with this email already exists")
    if user_data.phone and db.query(User).filter(User.phone == user_data.phone).first():
        raise HTTPException(status_code=400, detail="User with this phone already exists")

    try:
        user = User(
            name=user_data.name.strip(),
            email=email,
            phone=user_data.phone or None,
            hashed_password=hash_password(user_data.password),
            is_verified=False,
            referral_code=secrets.token_hex(4).upper(),
            skills_offered=[],
            skills_wanted=[],
            credits=0,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating user {email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create user")

    code = issue_code(db, user, REGISTER)
    if not EmailService().send_registration_code(user.email, user.name, code):
        db.delete(user)
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send OTP email. Please try again."
        )

    logger.info(f"Registered user {user.id}, verification code sent")
    return {"message": "OTP sent successfully to your email", "userId": user.id}


@router.post("/api/auth/verify-otp")
def verify_otp(payload: VerifyOtpRequest, db: Session = Depends(get_db)):
    rate_limiter.enforce(payload.userId, "verify-otp", limit=10, window_seconds=600)

    user = db.query(User).filter(User.id == payload.userId).first()
    if not user:
        raise HTTPException(status_code=400, detail="User not found")

    consume_code(db, user, REGISTER, payload.otp)
    user.is_verified = True
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.id} verified their email")
    return {
        "message": "OTP verified successfully",
        **issue_tokens(user, db),
        "user": UserResponse.model_validate(user),
        "nextStep": "complete-profile",
    }
