"""
chat.py
Messaging between users with an accepted barter
"""
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session
from db import get_db
from auth import get_current_user
from models import User
from schemas import GetOrCreateChatRequest, SendMessageRequest
from services.chat_service import ChatService, serialize_message, other_participant_id
from services.push_notifications import PushNotificationService

router = APIRouter()


@router.post("/api/chat/get-or-create")
def get_or_create_chat(payload: GetOrCreateChatRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    chat = ChatService.get_or_create(db, current_user.id, payload.otherUserId)
    return {"success": True, "chatId": chat.id}


@router.post("/api/chat/send")
def send_message(
    payload: SendMessageRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    message = ChatService.send_message(db, payload.chatId, current_user, payload.content, payload.type)
    recipient = db.query(User).filter(User.id == other_participant_id(message.chat, current_user.id)).first()
    PushNotificationService.new_message(background_tasks, recipient, current_user, message.chat_id, message.content)
    return {"success": True, "message": serialize_message(message)}


@router.put("/api/chat/seen/{chat_id}")
def mark_seen(chat_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    marked = ChatService.mark_seen(db, chat_id, current_user.id)
    return {"success": True, "marked": marked}


@router.get("/api/chat/list")
def list_chats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "chats": ChatService.list_chats(db, current_user.id)}


@router.get("/api/chat/{chat_id}")
def get_chat(chat_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return {"success": True, "chat": ChatService.get_messages(db, chat_id, current_user.id)}
