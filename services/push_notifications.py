"""
push_notifications.py
Expo push notifications for barter activity, chat messages and subscription reminders.
Sending is best effort: failures are logged and reported in the result, never raised.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from config import PushNotifications, get_logger
from models import User

logger = get_logger(__name__)


def can_receive_push(user: Optional[User]) -> bool:
    return bool(user and user.expo_push_token and user.notify_push)


def build_message(token: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    data = data or {}
    return {
        "to": token,
        "sound": "default",
        "title": title,
        "body": body,
        "data": data,
        "priority": "high",
        "channelId": data.get("channelId", "default"),
    }


def message_preview(content: str) -> str:
    limit = PushNotifications.PREVIEW_LENGTH
    return content[:limit] + "..." if len(content) > limit else content


class PushNotificationService:
    @staticmethod
    async def send(messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Post one or more messages to the Expo push API"""
        if not messages:
            return {"success": False, "error": "No messages provided"}

        payload = messages[0] if len(messages) == 1 else messages
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    PushNotifications.EXPO_PUSH_URL,
                    json=payload,
                    headers={
                        "Accept": "application/json",
                        "Accept-Encoding": "gzip, deflate",
                        "Content-Type": "application/json",
                    },
                )
            result = response.json()
            logger.info(f"Push notification batch of {len(messages)} sent: {response.status_code}")
            return {"success": response.status_code == 200, "result": result}
        except Exception as e:
            logger.error(f"Error sending push notification: {str(e)}")
            return {"success": False, "error": str(e)}

    @staticmethod
    def queue(
        background_tasks: BackgroundTasks,
        recipient: Optional[User],
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Schedule a push to run after the response is sent, if the recipient accepts pushes"""
        if not can_receive_push(recipient):
            return False
        message = build_message(recipient.expo_push_token, title, body, data)
        background_tasks.add_task(PushNotificationService.send, [message])
        return True

    # *** Event notifications ***

    @staticmethod
    def barter_proposal(background_tasks: BackgroundTasks, recipient: User, proposer_name: str, offered_skill: str, barter_id: int) -> bool:
        return PushNotificationService.queue(
            background_tasks,
            recipient,
            "New Barter Proposal! 🤝",
            f'{proposer_name} wants to trade "{offered_skill}" with you. Check it out!',
            {"type": "barter_proposal", "barterId": barter_id},
        )

    @staticmethod
    def friend_request_accepted(background_tasks: BackgroundTasks, recipient: User, accepter_name: str) -> bool:
        return PushNotificationService.queue(
            background_tasks,
            recipient,
            "Friend Request Accepted! 🎉",
            f"{accepter_name} accepted your friend request. You can now propose a barter!",
            {"type": "friend_request_accepted", "userId": recipient.id},
        )

    @staticmethod
    def barter_accepted(background_tasks: BackgroundTasks, recipient: User, accepter_name: str, barter_id: int) -> bool:
        return PushNotificationService.queue(
            background_tasks,
            recipient,
            "Barter Accepted! 🎉",
            f"{accepter_name} accepted your barter proposal. Start trading now!",
            {"type": "barter_accepted", "barterId": barter_id},
        )

    @staticmethod
    def new_message(background_tasks: BackgroundTasks, recipient: User, sender: User, chat_id: int, content: str) -> bool:
        return PushNotificationService.queue(
            background_tasks,
            recipient,
            f"New message from {sender.name} 💬",
            message_preview(content),
            {"type": "new_message", "chatId": chat_id, "senderId": sender.id},
        )

    # *** Subscription reminders ***

    @staticmethod
    def expiry_reminder_message(user: User, days: int) -> Dict[str, Any]:
        return build_message(
            user.expo_push_token,
            "Subscription Expiring Soon! ⏰",
            f"Hi {user.name}! Your subscription will expire in {days} days. "
            f"Renew now to keep your monthly credits coming without interruption.",
            {
                "type": "subscription_expiry",
                "userId": user.id,
                "daysRemaining": days,
                "channelId": "subscription",
            },
        )

    @staticmethod
    def users_expiring_in(db: Session, days: int, now: Optional[datetime] = None) -> List[User]:
        """Active subscribers whose period ends on the calendar day `days` from now"""
        now = now or datetime.utcnow()
        start_of_day = datetime(now.year, now.month, now.day) + timedelta(days=days)
        end_of_day = start_of_day + timedelta(days=1)

        return db.query(User).filter(
            User.subscription_status == "active",
            User.current_period_end >= start_of_day,
            User.current_period_end < end_of_day,
            User.expo_push_token.isnot(None),
            User.notify_push == True,
            User.notify_subscription_reminders == True,
        ).all()

    @staticmethod
    async def send_expiry_reminders(db: Session, days: int) -> Dict[str, Any]:
        users = PushNotificationService.users_expiring_in(db, days)
        logger.info(f"Found {len(users)} users to notify about subscription expiry in {days} days")

        if not users:
            return {"success": True, "notified": 0, "message": "No users to notify"}

        messages = [PushNotificationService.expiry_reminder_message(user, days) for user in users]
        result = await PushNotificationService.send(messages)
        result["notified"] = len(messages)
        return result
