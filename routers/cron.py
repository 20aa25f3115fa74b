"""
cron.py
Endpoints called by the scheduler: subscription expiry reminders and a manual push test
"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from db import get_db
from models import User
from schemas import TestNotificationRequest
from config import AppConfig, PushNotifications, get_logger
from services.push_notifications import PushNotificationService

logger = get_logger(__name__)

router = APIRouter()

REMINDER_LABELS = {3: "threeDays", 1: "oneDay", 0: "today"}


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)):
    if AppConfig.CRON_SECRET and x_cron_secret != AppConfig.CRON_SECRET:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/api/cron/subscription-reminders", dependencies=[Depends(verify_cron_secret)])
async def subscription_reminders(db: Session = Depends(get_db)):
    logger.info("Running subscription expiry reminder job")
    try:
        results = {}
        for days in PushNotifications.REMINDER_DAYS:
            label = REMINDER_LABELS.get(days, f"{days}Days")
            results[label] = await PushNotificationService.send_expiry_reminders(db, days)
    except Exception as e:
        logger.error(f"Subscription reminder job failed: {str(e)}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error sending subscription reminders")

    return {"success": True, "message": "Subscription reminders processed", "results": results}


@router.post("/api/cron/test-notification", dependencies=[Depends(verify_cron_secret)])
async def test_notification(payload: TestNotificationRequest, db: Session = Depends(get_db)):
    if not payload.userId:
        raise HTTPException(status_code=400, detail="userId is required")

    user = db.query(User).filter(User.id == payload.userId).first()
    if not user or not user.expo_push_token:
        raise HTTPException(status_code=404, detail="User not found or no push token")

    message = PushNotificationService.expiry_reminder_message(user, payload.days)
    result = await PushNotificationService.send([message])
    return {"success": True, "message": "Test notification sent", "result": result}
