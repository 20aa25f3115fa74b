"""
barter_service.py
Barter proposals between friends: propose, accept, complete with a review, cancel, and listings.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import HTTPException
from sqlalchemy.orm import Session
from models import Barter, FriendRequest, User
from config import Credits, get_logger
from services.credit_ledger import CreditLedger, InsufficientCredits, insufficient_credits_exception
from services.friend_service import FriendService, user_summary

logger = get_logger(__name__)

# ?status= filter values on the trades listing
TRADE_STATUS_FILTERS = {
    "ongoing": "accepted",
    "completed": "completed",
    "pending": "proposed",
}


def average_rating(db: Session, user_id: int) -> float:
    """
    Mean of the ratings counterparts left on this user's completed barters.
    0 when nobody has rated them yet.
    """
    completed = db.query(Barter).filter(
        Barter.status == "completed",
        (Barter.requester_id == user_id) | (Barter.accepter_id == user_id)
    ).all()

    ratings = []
    for barter in completed:
        # The review about this user is the one written by the other side
        rating = barter.accepter_rating if barter.requester_id == user_id else barter.requester_rating
        if rating:
            ratings.append(rating)

    return sum(ratings) / len(ratings) if ratings else 0


def serialize_barter(barter: Barter, viewer_id: Optional[int] = None, db: Optional[Session] = None) -> dict:
    data = {
        "id": barter.id,
        "requester": barter.requester_id,
        "accepter": barter.accepter_id,
        "friendRequest": barter.friend_request_id,
        "offered_skill": barter.offered_skill,
        "wanted_skill": barter.wanted_skill,
        "status": barter.status,
        "requester_review": {"rating": barter.requester_rating, "comment": barter.requester_comment}
        if barter.requester_rating else None,
        "accepter_review": {"rating": barter.accepter_rating, "comment": barter.accepter_comment}
        if barter.accepter_rating else None,
        "completed_at": barter.completed_at,
        "createdAt": barter.created_at,
    }
    if viewer_id is not None and db is not None:
        other = barter.accepter if barter.requester_id == viewer_id else barter.requester
        data["otherUser"] = user_summary(other, average_rating(db, other.id)) if other else None
    return data


class BarterService:
    @staticmethod
    def has_accepted_barter(db: Session, user_a: int, user_b: int) -> bool:
        return db.query(Barter).filter(
            ((Barter.requester_id == user_a) & (Barter.accepter_id == user_b)) |
            ((Barter.requester_id == user_b) & (Barter.accepter_id == user_a)),
            Barter.status == "accepted"
        ).first() is not None

    @staticmethod
    def get_participant_barter(db: Session, barter_id: int, user_id: int) -> Barter:
        barter = db.query(Barter).filter(Barter.id == barter_id).first()
        if not barter:
            raise HTTPException(status_code=404, detail="Barter not found")
        if user_id not in (barter.requester_id, barter.accepter_id):
            raise HTTPException(status_code=403, detail="Not authorized")
        return barter

    @staticmethod
    def propose(
        db: Session,
        proposer: User,
        offered_skill: str,
        wanted_skill: str,
        friend_request_id: Optional[int] = None,
        other_user_id: Optional[int] = None,
    ) -> Barter:
        fr = None
        if friend_request_id:
            fr = db.query(FriendRequest).filter(FriendRequest.id == friend_request_id).first()
        elif other_user_id:
            fr = FriendService.find_between(db, proposer.id, other_user_id, status="accepted")

        if not fr or fr.status != "accepted":
            raise HTTPException(
                status_code=400,
                detail="No accepted friend request found. Please send and accept a friend request first."
            )
        if proposer.id not in (fr.requester_id, fr.addressee_id):
            raise HTTPException(status_code=403, detail="Not authorized")

        if db.query(Barter).filter(Barter.friend_request_id == fr.id).first():
            raise HTTPException(status_code=400, detail="Barter already proposed for this friend request")

        if proposer.credits < Credits.BARTER_PROPOSAL_COST:
            raise HTTPException(
                status_code=400,
                detail=f"Insufficient credits. Need {Credits.BARTER_PROPOSAL_COST} credits to propose barter."
            )

        accepter_id = fr.addressee_id if fr.requester_id == proposer.id else fr.requester_id
        try:
            barter = Barter(
                requester_id=proposer.id,
                accepter_id=accepter_id,
                friend_request_id=fr.id,
                offered_skill=offered_skill,
                wanted_skill=wanted_skill,
                status="proposed",
            )
            db.add(barter)
            fr.barter_proposed = True
            db.flush()
            CreditLedger.spend(
                db,
                user_id=proposer.id,
                amount=Credits.BARTER_PROPOSAL_COST,
                source="barter",
                idempotency_key=f"barter:{barter.id}:propose",
                reference=str(barter.id),
                description=f"Barter proposal to user {accepter_id}",
            )
            db.commit()
        except InsufficientCredits as e:
            db.rollback()
            raise insufficient_credits_exception(e)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to propose barter for friend request {fr.id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to propose barter")

        db.refresh(barter)
        logger.info(f"User {proposer.id} proposed barter {barter.id} to user {accepter_id}")
        return barter

    @staticmethod
    def accept(db: Session, barter_id: int, user: User) -> Barter:
        barter = db.query(Barter).filter(Barter.id == barter_id).first()
        # Only the accepter may see the proposal here
        if not barter or barter.accepter_id != user.id:
            raise HTTPException(status_code=404, detail="Barter not found")
        if barter.status != "proposed":
            raise HTTPException(status_code=400, detail="Barter already processed")
        if user.credits < Credits.BARTER_ACCEPT_COST:
            raise HTTPException(status_code=400, detail="Insufficient credits")

        try:
            CreditLedger.spend(
                db,
                user_id=user.id,
                amount=Credits.BARTER_ACCEPT_COST,
                source="barter",
                idempotency_key=f"barter:{barter.id}:accept",
                reference=str(barter.id),
                description=f"Accepted barter from user {barter.requester_id}",
            )
            barter.status = "accepted"
            db.commit()
        except InsufficientCredits as e:
            db.rollback()
            raise insufficient_credits_exception(e)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to accept barter {barter_id}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to accept barter")

        db.refresh(barter)
        logger.info(f"User {user.id} accepted barter {barter.id}")
        return barter

    @staticmethod
    def complete(db: Session, barter_id: int, user_id: int, rating: int, comment: Optional[str]) -> Barter:
        if rating is None or not 1 <= rating <= 5:
            raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")

        barter = BarterService.get_participant_barter(db, barter_id, user_id)
        if barter.status != "accepted":
            raise HTTPException(status_code=400, detail="Barter not active")

        if barter.requester_id == user_id:
            barter.requester_rating = rating
            barter.requester_comment = comment
        else:
            barter.accepter_rating = rating
            barter.accepter_comment = comment

        barter.status = "completed"
        barter.completed_at = datetime.utcnow()
        db.commit()
        db.refresh(barter)
        return barter

    @staticmethod
    def cancel(db: Session, barter_id: int, user_id: int) -> Barter:
        barter = db.query(Barter).filter(Barter.id == barter_id).first()
        if not barter:
            raise HTTPException(status_code=404, detail="Barter not found")
        if user_id not in (barter.requester_id, barter.accepter_id):
            raise HTTPException(status_code=403, detail="Not authorized to cancel this barter")
        if barter.status == "completed":
            raise HTTPException(status_code=400, detail="Cannot cancel a completed barter")
        if barter.status == "cancelled":
            raise HTTPException(status_code=400, detail="Barter is already cancelled")

        barter.status = "cancelled"
        db.commit()
        db.refresh(barter)
        return barter

    @staticmethod
    def get_for_viewer(db: Session, barter_id: int, user_id: int) -> dict:
        barter = db.query(Barter).filter(Barter.id == barter_id).first()
        if not barter:
            raise HTTPException(status_code=404, detail="Barter not found")
        if user_id not in (barter.requester_id, barter.accepter_id):
            raise HTTPException(status_code=403, detail="Not authorized to view this barter")
        return serialize_barter(barter, user_id, db)

    @staticmethod
    def list_trades(db: Session, user_id: int, status: Optional[str] = None) -> List[dict]:
        query = db.query(Barter).filter(
            (Barter.requester_id == user_id) | (Barter.accepter_id == user_id)
        )
        if status in TRADE_STATUS_FILTERS:
            query = query.filter(Barter.status == TRADE_STATUS_FILTERS[status])
        trades = query.order_by(Barter.id.desc()).all()
        return [serialize_barter(trade, user_id, db) for trade in trades]

    @staticmethod
    def list_pending(db: Session, user_id: int) -> List[dict]:
        """Proposals waiting on this user's answer"""
        pending = db.query(Barter).filter(
            Barter.accepter_id == user_id,
            Barter.status == "proposed"
        ).order_by(Barter.id.desc()).all()
        return [serialize_barter(barter, user_id, db) for barter in pending]

    @staticmethod
    def suggestions(db: Session, user: User) -> List[dict]:
        wanted = set(user.skills_wanted or [])
        if not wanted:
            return []

        # JSON arrays are matched in Python so this works on every backend
        candidates = db.query(User).filter(User.id != user.id).all()
        return [
            user_summary(candidate)
            for candidate in candidates
            if wanted.intersection(candidate.skills_offered or [])
        ]
