"""
friends.py
Routers for friend requests: send, accept, decline, list
"""
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session
from db import get_db
from auth import get_current_user
from models import User
from schemas import FriendRequestCreate
from services.friend_service import FriendService
from services.push_notifications import PushNotificationService

router = APIRouter()


@router.post("/api/barter/friend-request")
def send_friend_request(payload: FriendRequestCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    friend_request = FriendService.send_request(db, current_user, payload.toUserId)
    return {"success": True, "message": "Friend request sent successfully", "friendRequest": friend_request}


@router.put("/api/barter/friend-request/{request_id}/accept")
def accept_friend_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    fr = FriendService.accept_request(db, request_id, current_user)
    PushNotificationService.friend_request_accepted(background_tasks, fr.requester, current_user.name)
    return {"success": True, "message": "Friend request accepted"}


@router.put("/api/barter/friend-request/{request_id}/decline")
def decline_friend_request(request_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return FriendService.decline_request(db, request_id, current_user.id)


@router.get("/api/barter/friend-requests/pending")
def list_pending_requests(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "requests": FriendService.list_pending(db, current_user.id)}


@router.get("/api/barter/friend-requests")
def list_all_requests(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, **FriendService.list_all(db, current_user.id)}


@router.get("/api/barter/friends")
def list_friends(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "friends": FriendService.list_friends(db, current_user.id)}
