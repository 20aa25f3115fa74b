"""
users.py
Account settings and safety endpoints: push tokens, notification preferences,
blocking, reporting, credit history and admin credit adjustments
"""

import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Header, Request, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from models import User, UserBlock, Report
from schemas import (
    PushTokenRequest,
    NotificationPreferencesRequest,
    ReportRequest,
    ReportReason,
    AddCreditsRequest,
    CreditTransactionResponse,
)
from db import get_db
from auth import get_current_user
from config import AppConfig, get_logger
from services.audit_service import AuditService
from services.credit_ledger import CreditLedger, admin_key

logger = get_logger(__name__)

router = APIRouter()

REPORT_DESCRIPTION_MAX = 500


def require_admin_key(x_admin_key: Optional[str] = Header(None)):
    if not AppConfig.ADMIN_API_KEY:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin endpoints are disabled")
    if x_admin_key != AppConfig.ADMIN_API_KEY:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin key")


@router.post("/api/user/push-token")
def save_push_token(payload: PushTokenRequest, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not payload.token:
        raise HTTPException(status_code=400, detail="Push token is required")
    current_user.expo_push_token = payload.token
    db.commit()
    return {"success": True, "message": "Push token saved successfully"}


@router.delete("/api/user/push-token")
def remove_push_token(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    current_user.expo_push_token = None
    db.commit()
    return {"success": True, "message": "Push token removed successfully"}


@router.put("/api/user/notification-preferences")
def update_notification_preferences(
    prefs: NotificationPreferencesRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if prefs.email is not None:
        current_user.notify_email = prefs.email
    if prefs.push is not None:
        current_user.notify_push = prefs.push
    if prefs.subscriptionReminders is not None:
        current_user.notify_subscription_reminders = prefs.subscriptionReminders
    db.commit()
    return {
        "success": True,
        "notificationPreferences": {
            "email": current_user.notify_email,
            "push": current_user.notify_push,
            "subscriptionReminders": current_user.notify_subscription_reminders,
        },
    }


@router.post("/api/user/block/{user_id}")
def block_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot block yourself")
    if not db.query(User).filter(User.id == user_id).first():
        raise HTTPException(status_code=404, detail="User not found")

    existing = db.query(UserBlock).filter(
        UserBlock.blocker_id == current_user.id,
        UserBlock.blocked_id == user_id
    ).first()
    if existing:
        return {"success": True, "message": "User already blocked"}

    try:
        db.add(UserBlock(blocker_id=current_user.id, blocked_id=user_id))
        db.commit()
    except IntegrityError:
        db.rollback()
    return {"success": True, "message": "User blocked successfully"}


@router.post("/api/user/unblock/{user_id}")
def unblock_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db.query(UserBlock).filter(
        UserBlock.blocker_id == current_user.id,
        UserBlock.blocked_id == user_id
    ).delete(synchronize_session=False)
    db.commit()
    return {"success": True, "message": "User unblocked successfully"}


@router.post("/api/user/report")
def report_user(report: ReportRequest, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if report.reason not in [r.value for r in ReportReason]:
        raise HTTPException(status_code=400, detail="Invalid report reason")
    if report.description and len(report.description) > REPORT_DESCRIPTION_MAX:
        raise HTTPException(status_code=400, detail=f"Description cannot exceed {REPORT_DESCRIPTION_MAX} characters")
    if report.reportedUserId == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot report yourself")
    if not db.query(User).filter(User.id == report.reportedUserId).first():
        raise HTTPException(status_code=404, detail="User not found")

    entry = Report(
        reporter_id=current_user.id,
        reported_user_id=report.reportedUserId,
        reason=report.reason,
        description=report.description,
    )
    db.add(entry)
    db.commit()
    logger.info(f"User {current_user.id} reported user {report.reportedUserId} for {report.reason}")
    return {"success": True, "message": "Report submitted successfully", "reportId": entry.id}


@router.get("/api/user/credits/history")
def credit_history(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entries = CreditLedger.history(db, current_user.id)
    return {
        "success": True,
        "credits": current_user.credits,
        "transactions": [CreditTransactionResponse.model_validate(entry) for entry in entries],
    }


@router.post("/api/user/add-credits", dependencies=[Depends(require_admin_key)])
def add_credits(payload: AddCreditsRequest, request: Request, db: Session = Depends(get_db)):
    """Admin credit grant, recorded in the ledger and the audit log"""
    if payload.amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")
    user = db.query(User).filter(User.id == payload.userId).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    result = CreditLedger.grant(
        db,
        user_id=user.id,
        amount=payload.amount,
        idempotency_key=admin_key(uuid.uuid4().hex),
        source="admin",
        description=payload.reason or "Admin credit adjustment",
    )
    AuditService.log_request(
        db,
        request,
        user_id=user.id,
        action="admin_add_credits",
        status="success",
        details={"amount": payload.amount, "reason": payload.reason, "balance": result.balance},
    )
    return {"success": True, "message": f"Added {payload.amount} credits", "credits": result.balance}
