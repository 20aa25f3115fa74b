"""
profile.py
Profile endpoints: completing and editing a profile, viewing profiles, password change and user search
"""

from typing import List, Optional, Union
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from models import User, UserBlock
from schemas import CompleteProfileRequest, EditProfileRequest, ChangePasswordRequest, UserResponse, PublicUserResponse
from db import get_db
from auth import get_current_user, verify_password, hash_password, revoke_all_refresh_tokens
from config import get_logger
from services.barter_service import average_rating
from services.friend_service import user_summary

logger = get_logger(__name__)

router = APIRouter()


def parse_skills(value: Optional[Union[str, List[str]]]) -> List[str]:
    """Skills arrive as a list or a comma separated string"""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [skill.strip() for skill in value if skill and skill.strip()]


@router.post("/api/auth/complete-profile")
def complete_profile(
    profile: CompleteProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    current_user.skills_offered = parse_skills(profile.skills)
    current_user.skills_wanted = parse_skills(profile.serviceSeeking)
    db.commit()
    db.refresh(current_user)
    return {"message": "Profile completed successfully", "user": UserResponse.model_validate(current_user)}


@router.get("/api/auth/profile")
@router.get("/api/user/profile")
def get_profile(current_user: User = Depends(get_current_user)):
    return {"user": UserResponse.model_validate(current_user)}


@router.get("/api/user/profile/{user_id}")
def get_user_profile(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Public profile of another user with their average rating"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    data = PublicUserResponse.model_validate(user).model_dump()
    data["rating"] = average_rating(db, user.id)
    return {"success": True, "user": data}


@router.put("/api/user/edit-profile")
def edit_profile(
    updates: EditProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if updates.phone and updates.phone != current_user.phone:
        taken = db.query(User).filter(User.phone == updates.phone, User.id != current_user.id).first()
        if taken:
            raise HTTPException(status_code=400, detail="Phone number already in use")
        current_user.phone = updates.phone
    if updates.name is not None:
        if not updates.name.strip():
            raise HTTPException(status_code=400, detail="Name cannot be empty")
        current_user.name = updates.name.strip()
    if updates.skills is not None:
        current_user.skills_offered = parse_skills(updates.skills)
    if updates.serviceSeeking is not None:
        current_user.skills_wanted = parse_skills(updates.serviceSeeking)
    if updates.profileImageUrl is not None:
        current_user.profile_image_url = updates.profileImageUrl or None

    db.commit()
    db.refresh(current_user)
    return {"success": True, "message": "Profile updated successfully", "user": UserResponse.model_validate(current_user)}


@router.put("/api/user/change-password")
def change_password(
    passwords: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not verify_password(passwords.oldPassword, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Old password is incorrect")
    if len(passwords.newPassword) < 6:
        raise HTTPException(status_code=400, detail="New password must be at least 6 characters")

    current_user.hashed_password = hash_password(passwords.newPassword)
    db.commit()
    return {"success": True, "message": "Password changed successfully"}


@router.post("/api/user/logout")
def logout(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    revoke_all_refresh_tokens(current_user.id, db)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/api/user/search")
def search_users(
    q: str = Query("", description="Name or skill"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Match users by name or offered skill, skipping the caller and anyone blocked either way"""
    term = q.strip().lower()
    if not term:
        return {"success": True, "users": []}

    blocked = db.query(UserBlock).filter(
        (UserBlock.blocker_id == current_user.id) | (UserBlock.blocked_id == current_user.id)
    ).all()
    hidden = {current_user.id}
    hidden.update(b.blocked_id if b.blocker_id == current_user.id else b.blocker_id for b in blocked)

    candidates = db.query(User).filter(User.id.notin_(hidden), User.is_verified == True).all()
    users = [
        user_summary(user, average_rating(db, user.id))
        for user in candidates
        if term in user.name.lower() or any(term in skill.lower() for skill in (user.skills_offered or []))
    ]
    return {"success": True, "users": users}
