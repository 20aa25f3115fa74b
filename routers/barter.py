"""
barter.py
Routers for barters: propose, accept, complete, cancel, and the trade listings
"""
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from db import get_db
from auth import get_current_user
from models import User
from schemas import BarterProposalRequest, BarterCompleteRequest
from services.barter_service import BarterService, serialize_barter
from services.push_notifications import PushNotificationService

router = APIRouter()


@router.post("/api/barter/barter")
def propose_barter(
    payload: BarterProposalRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    barter = BarterService.propose(
        db,
        current_user,
        offered_skill=payload.offered_skill,
        wanted_skill=payload.wanted_skill,
        friend_request_id=payload.friendRequestId,
        other_user_id=payload.userId,
    )
    PushNotificationService.barter_proposal(background_tasks, barter.accepter, current_user.name, barter.offered_skill, barter.id)
    return {"success": True, "message": "Barter proposed successfully", "barter": serialize_barter(barter)}


@router.put("/api/barter/barter/complete")
def complete_barter(payload: BarterCompleteRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    BarterService.complete(db, payload.barterId, current_user.id, payload.rating, payload.comment)
    return {"success": True, "message": "Barter completed successfully"}


@router.put("/api/barter/barter/{barter_id}/accept")
def accept_barter(
    barter_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    barter = BarterService.accept(db, barter_id, current_user)
    PushNotificationService.barter_accepted(background_tasks, barter.requester, current_user.name, barter.id)
    return {"success": True, "message": "Barter accepted. You can now message each other."}


@router.put("/api/barter/barter/{barter_id}/cancel")
def cancel_barter(barter_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    BarterService.cancel(db, barter_id, current_user.id)
    return {"success": True, "message": "Barter cancelled successfully"}


@router.get("/api/barter/barter/{barter_id}")
def get_barter(barter_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "barter": BarterService.get_for_viewer(db, barter_id, current_user.id)}


@router.get("/api/barter/trades")
def list_trades(
    status: Optional[str] = Query(None, description="ongoing, completed or pending"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return {"success": True, "trades": BarterService.list_trades(db, current_user.id, status)}


@router.get("/api/barter/barters/pending")
def list_pending_barters(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "barters": BarterService.list_pending(db, current_user.id)}


@router.get("/api/barter/suggestions")
def skill_suggestions(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "suggestions": BarterService.suggestions(db, current_user)}
