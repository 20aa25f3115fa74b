"""
delete_account.py
Endpoint to delete user account
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from models import User, FriendRequest, Barter, Chat, ChatMessage, UserBlock, Report, AuditLog
from db import get_db
from auth import get_current_user
from config import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.delete("/api/user/delete-account")
def delete_account(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Delete user account and all associated data"""
    user_id = current_user.id
    try:
        # Chats and their messages
        chat_ids = [
            chat_id for (chat_id,) in db.query(Chat.id).filter(
                (Chat.user_low_id == user_id) | (Chat.user_high_id == user_id)
            ).all()
        ]
        if chat_ids:
            db.query(ChatMessage).filter(ChatMessage.chat_id.in_(chat_ids)).delete(synchronize_session=False)
            db.query(Chat).filter(Chat.id.in_(chat_ids)).delete(synchronize_session=False)

        # Barters before the friend requests they reference
        db.query(Barter).filter(
            (Barter.requester_id == user_id) | (Barter.accepter_id == user_id)
        ).delete(synchronize_session=False)
        db.query(FriendRequest).filter(
            (FriendRequest.requester_id == user_id) | (FriendRequest.addressee_id == user_id)
        ).delete(synchronize_session=False)

        db.query(UserBlock).filter(
            (UserBlock.blocker_id == user_id) | (UserBlock.blocked_id == user_id)
        ).delete(synchronize_session=False)
        db.query(Report).filter(
            (Report.reporter_id == user_id) | (Report.reported_user_id == user_id)
        ).delete(synchronize_session=False)
        db.query(AuditLog).filter(AuditLog.user_id == user_id).delete(synchronize_session=False)

        # Refresh tokens, verification codes and the credit ledger go with the user
        db.delete(current_user)
        db.commit()

        logger.info(f"Deleted account {user_id}")
        return {"success": True, "message": "Account deleted successfully"}

    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting account {user_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while deleting the user account"
        )
