"""
chat_service.py
Chats between users with an accepted barter. Messages are stored and served over HTTP.
"""
from typing import List
from datetime import datetime
from fastapi import HTTPException
from sqlalchemy.orm import Session
from models import Barter, Chat, ChatMessage, User
from services.barter_service import BarterService
from services.friend_service import user_summary

MESSAGE_TYPES = ("text", "image", "voice")


def participants_key(user_a: int, user_b: int):
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def other_participant_id(chat: Chat, user_id: int) -> int:
    return chat.user_high_id if chat.user_low_id == user_id else chat.user_low_id


def serialize_message(message: ChatMessage) -> dict:
    return {
        "id": message.id,
        "chatId": message.chat_id,
        "sender": user_summary(message.sender) if message.sender else message.sender_id,
        "type": message.type,
        "content": message.content,
        "seenBy": list(message.seen_by or []),
        "createdAt": message.created_at,
    }


class ChatService:
    @staticmethod
    def get_participant_chat(db: Session, chat_id: int, user_id: int) -> Chat:
        chat = db.query(Chat).filter(Chat.id == chat_id).first()
        if not chat:
            raise HTTPException(status_code=404, detail="Chat not found")
        if user_id not in (chat.user_low_id, chat.user_high_id):
            raise HTTPException(status_code=403, detail="Not a participant of this chat")
        return chat

    @staticmethod
    def get_or_create(db: Session, user_id: int, other_user_id: int) -> Chat:
        other = db.query(User).filter(User.id == other_user_id).first()
        if not other:
            raise HTTPException(status_code=404, detail="User not found")
        if not BarterService.has_accepted_barter(db, user_id, other_user_id):
            raise HTTPException(status_code=403, detail="Messaging only allowed between users with active barters")

        low, high = participants_key(user_id, other_user_id)
        chat = db.query(Chat).filter(Chat.user_low_id == low, Chat.user_high_id == high).first()
        if not chat:
            chat = Chat(user_low_id=low, user_high_id=high, updated_at=datetime.utcnow())
            db.add(chat)
            db.commit()
            db.refresh(chat)
        return chat

    @staticmethod
    def send_message(db: Session, chat_id: int, sender: User, content: str, message_type: str = "text") -> ChatMessage:
        if message_type not in MESSAGE_TYPES:
            raise HTTPException(status_code=400, detail="Invalid message type")
        if not content or not content.strip():
            raise HTTPException(status_code=400, detail="Message content is required")

        chat = ChatService.get_participant_chat(db, chat_id, sender.id)
        if not BarterService.has_accepted_barter(db, sender.id, other_participant_id(chat, sender.id)):
            raise HTTPException(status_code=403, detail="Messaging only allowed during active barters")

        message = ChatMessage(
            chat_id=chat.id,
            sender_id=sender.id,
            type=message_type,
            content=content,
            seen_by=[sender.id],
        )
        db.add(message)
        chat.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(message)
        return message

    @staticmethod
    def mark_seen(db: Session, chat_id: int, user_id: int) -> int:
        chat = ChatService.get_participant_chat(db, chat_id, user_id)
        marked = 0
        for message in chat.messages:
            seen_by = list(message.seen_by or [])
            if user_id not in seen_by:
                # Reassign so SQLAlchemy notices the JSON change
                message.seen_by = seen_by + [user_id]
                marked += 1
        db.commit()
        return marked

    @staticmethod
    def get_messages(db: Session, chat_id: int, user_id: int) -> dict:
        chat = ChatService.get_participant_chat(db, chat_id, user_id)
        other = db.query(User).filter(User.id == other_participant_id(chat, user_id)).first()
        return {
            "id": chat.id,
            "otherUser": user_summary(other),
            "messages": [serialize_message(message) for message in chat.messages],
            "updatedAt": chat.updated_at,
        }

    @staticmethod
    def list_chats(db: Session, user_id: int) -> List[dict]:
        """Chats with partners the user currently has an accepted barter with, newest first"""
        active = db.query(Barter).filter(
            (Barter.requester_id == user_id) | (Barter.accepter_id == user_id),
            Barter.status == "accepted"
        ).all()
        partner_ids = {b.accepter_id if b.requester_id == user_id else b.requester_id for b in active}
        if not partner_ids:
            return []

        chats = db.query(Chat).filter(
            (Chat.user_low_id == user_id) | (Chat.user_high_id == user_id)
        ).order_by(Chat.updated_at.desc(), Chat.id.desc()).all()

        chat_list = []
        for chat in chats:
            other_id = other_participant_id(chat, user_id)
            if other_id not in partner_ids:
                continue
            other = db.query(User).filter(User.id == other_id).first()
            messages = chat.messages
            chat_list.append({
                "chatId": chat.id,
                "otherUser": user_summary(other),
                "lastMessage": serialize_message(messages[-1]) if messages else None,
                "unreadCount": sum(1 for m in messages if user_id not in (m.seen_by or [])),
                "updatedAt": chat.updated_at,
            })
        return chat_list
