"""
friend_service.py
Business logic for friend requests. Sending and accepting a request each cost the sender credits.
"""
from typing import List, Optional
from sqlalchemy.orm import Session
from models import FriendRequest, User, UserBlock
from datetime import datetime
from fastapi import HTTPException
from config import Credits, get_logger
from services.credit_ledger import CreditLedger, InsufficientCredits, insufficient_credits_exception

logger = get_logger(__name__)


def user_summary(user: Optional[User], rating: Optional[float] = None) -> Optional[dict]:
    if user is None:
        return None
    summary = {
        "id": user.id,
        "name": user.name,
        "profileImage": user.profile_image_url,
        "skills_offered": user.skills_offered or [],
        "skills_wanted": user.skills_wanted or [],
    }
    if rating is not None:
        summary["rating"] = rating
    return summary


def is_blocked_between(db: Session, user_a: int, user_b: int) -> bool:
    return db.query(UserBlock).filter(
        ((UserBlock.blocker_id == user_a) & (UserBlock.blocked_id == user_b)) |
        ((UserBlock.blocker_id == user_b) & (UserBlock.blocked_id == user_a))
    ).first() is not None


def serialize_request(fr: FriendRequest, counterpart: Optional[User] = None, rating: Optional[float] = None) -> dict:
    data = {
        "id": fr.id,
        "from": fr.requester_id,
        "to": fr.addressee_id,
        "status": fr.status,
        "barter_proposed": fr.barter_proposed,
        "createdAt": fr.created_at,
    }
    if counterpart is not None:
        data["user"] = user_summary(counterpart, rating)
    return data


class FriendService:
    @staticmethod
    def find_between(db: Session, user_a: int, user_b: int, status: Optional[str] = None) -> Optional[FriendRequest]:
        query = db.query(FriendRequest).filter(
            ((FriendRequest.requester_id == user_a) & (FriendRequest.addressee_id == user_b)) |
            ((FriendRequest.requester_id == user_b) & (FriendRequest.addressee_id == user_a))
        )
        if status:
            query = query.filter(FriendRequest.status == status)
        return query.first()

    @staticmethod
    def send_request(db: Session, sender: User, to_user_id: int) -> dict:
        if sender.id == to_user_id:
            raise HTTPException(status_code=400, detail="Cannot send friend request to yourself")

        if not sender.subscription_plan:
            raise HTTPException(status_code=403, detail="Free trial users cannot send friend requests")

        if sender.credits < Credits.FRIEND_REQUEST_COST:
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient credits. Need {Credits.FRIEND_REQUEST_COST} credits to send friend request"
            )

        addressee = db.query(User).filter(User.id == to_user_id).first()
        if not addressee:
            raise HTTPException(status_code=404, detail="User not found")

        if is_blocked_between(db, sender.id, to_user_id):
            raise HTTPException(status_code=403, detail="You cannot send a friend request to this user")

        if FriendService.find_between(db, sender.id, to_user_id):
            raise HTTPException(status_code=400, detail="Friend request already exists")

        try:
            fr = FriendRequest(requester_id=sender.id, addressee_id=to_user_id, status="pending")
            db.add(fr)
            db.flush()
            CreditLedger.spend(
                db,
                user_id=sender.id,
                amount=Credits.FRIEND_REQUEST_COST,
                source="friend_request",
                idempotency_key=f"friend_request:{fr.id}:send",
                reference=str(fr.id),
                description=f"Friend request to user {to_user_id}",
            )
            db.commit()
        except InsufficientCredits as e:
            db.rollback()
            raise insufficient_credits_exception(e)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to send friend request from {sender.id} to {to_user_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to send friend request")

        db.refresh(fr)
        logger.info(f"User {sender.id} sent friend request {fr.id} to user {to_user_id}")
        return serialize_request(fr)

    @staticmethod
    def accept_request(db: Session, request_id: int, user: User) -> FriendRequest:
        fr = db.query(FriendRequest).filter(FriendRequest.id == request_id).first()
        if not fr:
            raise HTTPException(status_code=404, detail="Friend request not found")
        if fr.addressee_id != user.id:
            raise HTTPException(status_code=403, detail="You are not authorized to accept this request")
        if fr.status != "pending":
            raise HTTPException(status_code=400, detail="Request already processed")

        sender = db.query(User).filter(User.id == fr.requester_id).first()
        if not sender:
            raise HTTPException(status_code=404, detail="Sender not found")

        insufficient_detail = {
            "message": (
                f"Cannot accept: The person who sent this request ({sender.name}) has insufficient credits. "
                f"They need at least {Credits.FRIEND_ACCEPT_COST} credits."
            ),
            "senderCredits": sender.credits,
            "requiredCredits": Credits.FRIEND_ACCEPT_COST,
        }
        if sender.credits < Credits.FRIEND_ACCEPT_COST:
            raise HTTPException(status_code=400, detail=insufficient_detail)

        try:
            CreditLedger.spend(
                db,
                user_id=sender.id,
                amount=Credits.FRIEND_ACCEPT_COST,
                source="friend_request",
                idempotency_key=f"friend_request:{fr.id}:accept",
                reference=str(fr.id),
                description=f"Friend request accepted by user {user.id}",
            )
            fr.status = "accepted"
            fr.updated_at = datetime.utcnow()
            db.commit()
        except InsufficientCredits as e:
            db.rollback()
            insufficient_detail["senderCredits"] = e.available
            raise HTTPException(status_code=400, detail=insufficient_detail)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to accept friend request {request_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to accept friend request")

        db.refresh(fr)
        logger.info(f"User {user.id} accepted friend request {fr.id}")
        return fr

    @staticmethod
    def decline_request(db: Session, request_id: int, user_id: int) -> dict:
        fr = db.query(FriendRequest).filter(FriendRequest.id == request_id).first()
        if not fr:
            raise HTTPException(status_code=404, detail="Friend request not found")
        if fr.addressee_id != user_id:
            raise HTTPException(status_code=403, detail="You are not authorized to decline this request")
        if fr.status != "pending":
            raise HTTPException(status_code=400, detail="Request already processed")
        db.delete(fr)
        db.commit()
        return {"success": True, "message": "Friend request declined"}

    @staticmethod
    def list_pending(db: Session, user_id: int) -> List[dict]:
        from services.barter_service import average_rating

        requests = db.query(FriendRequest).filter(
            FriendRequest.addressee_id == user_id,
            FriendRequest.status == "pending"
        ).order_by(FriendRequest.id.desc()).all()
        return [serialize_request(fr, fr.requester, average_rating(db, fr.requester_id)) for fr in requests]

    @staticmethod
    def list_all(db: Session, user_id: int) -> dict:
        """Received and sent requests with the counterpart's rating attached"""
        from services.barter_service import average_rating

        received = db.query(FriendRequest).filter(
            FriendRequest.addressee_id == user_id
        ).order_by(FriendRequest.id.desc()).all()
        sent = db.query(FriendRequest).filter(
            FriendRequest.requester_id == user_id
        ).order_by(FriendRequest.id.desc()).all()

        return {
            "received": [serialize_request(fr, fr.requester, average_rating(db, fr.requester_id)) for fr in received],
            "sent": [serialize_request(fr, fr.addressee, average_rating(db, fr.addressee_id)) for fr in sent],
        }

    @staticmethod
    def list_friends(db: Session, user_id: int) -> List[dict]:
        accepted = db.query(FriendRequest).filter(
            (FriendRequest.requester_id == user_id) | (FriendRequest.addressee_id == user_id),
            FriendRequest.status == "accepted"
        ).all()

        friends = []
        for fr in accepted:
            friend = fr.addressee if fr.requester_id == user_id else fr.requester
            summary = user_summary(friend)
            if summary:
                summary["friendRequestId"] = fr.id
                summary["barter_proposed"] = fr.barter_proposed
                friends.append(summary)
        return friends
