"""
verification_codes.py
Six digit email codes for account verification and password resets.
"""
import secrets
from datetime import datetime, timedelta
from fastapi import HTTPException
from sqlalchemy.orm import Session
from models import User, VerificationCode
from config import UserAuth

REGISTER = "register"
RESET_PASSWORD = "reset_password"


def generate_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def issue_code(db: Session, user: User, purpose: str) -> str:
    """Invalidate earlier codes for this purpose and store a fresh one"""
    db.query(VerificationCode).filter(
        VerificationCode.user_id == user.id,
        VerificationCode.purpose == purpose,
        VerificationCode.is_used == False
    ).update({VerificationCode.is_used: True}, synchronize_session=False)

    code = generate_code()
    db.add(VerificationCode(
        user_id=user.id,
        purpose=purpose,
        code=code,
        expires_at=datetime.utcnow() + timedelta(minutes=UserAuth.OTP_EXPIRE_MINUTES),
    ))
    db.commit()
    return code


def consume_code(db: Session, user: User, purpose: str, code: str) -> None:
    """Mark a matching code as used. Does NOT commit."""
    entry = db.query(VerificationCode).filter(
        VerificationCode.user_id == user.id,
        VerificationCode.purpose == purpose,
        VerificationCode.code == code,
        VerificationCode.is_used == False
    ).order_by(VerificationCode.id.desc()).first()

    if not entry:
        raise HTTPException(status_code=400, detail="Invalid OTP")
    if entry.expires_at < datetime.utcnow():
        raise HTTPException(status_code=400, detail="OTP has expired")

    entry.is_used = True
