"""
models.py
This defines all database models used in the barter app
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from db import Base


# *** USER MODELS ***

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, unique=True, nullable=True)
    hashed_password = Column(String, nullable=True)
    is_verified = Column(Boolean, default=False)
    referral_code = Column(String, unique=True, nullable=True)

    # Profile
    profile_image_url = Column(String, nullable=True)
    skills_offered = Column(JSON, default=list)
    skills_wanted = Column(JSON, default=list)

    # Credits balance, every change is mirrored by a CreditTransaction row
    credits = Column(Integer, default=0, nullable=False)

    # Subscription
    subscription_plan = Column(String, nullable=True)  # basic, standard, premium
    subscription_status = Column(String, nullable=True)  # active, canceled, past_due, unpaid, incomplete
    subscription_platform = Column(String, nullable=True)  # ios, android, stripe
    subscription_product_id = Column(String, nullable=True)
    stripe_customer_id = Column(String, unique=True, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True)
    revenuecat_id = Column(String, nullable=True, index=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False)

    # Push notifications
    expo_push_token = Column(String, nullable=True)
    notify_email = Column(Boolean, default=True)
    notify_push = Column(Boolean, default=True)
    notify_subscription_reminders = Column(Boolean, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    verification_codes = relationship("VerificationCode", back_populates="user", cascade="all, delete-orphan")
    credit_transactions = relationship("CreditTransaction", back_populates="user", cascade="all, delete-orphan")


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="refresh_tokens")


class VerificationCode(Base):
    """One-time codes sent by email for registration and password resets"""
    __tablename__ = "verification_codes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    purpose = Column(String, nullable=False)  # register, reset_password
    code = Column(String, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="verification_codes")


class UserBlock(Base):
    __tablename__ = "user_blocks"
    __table_args__ = (UniqueConstraint("blocker_id", "blocked_id", name="uq_user_block"),)

    id = Column(Integer, primary_key=True, index=True)
    blocker_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    blocked_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())


class Report(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    reporter_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reported_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reason = Column(String, nullable=False)  # spam, harassment, inappropriate_content, scam, other
    description = Column(String(500), nullable=True)
    status = Column(String, default="pending")  # pending, reviewed, resolved, dismissed
    created_at = Column(DateTime, server_default=func.now())


# *** SOCIAL MODELS ***

class FriendRequest(Base):
    __tablename__ = "friend_requests"

    id = Column(Integer, primary_key=True, index=True)
    requester_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    addressee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, default="pending")  # pending, accepted
    barter_proposed = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    requester = relationship("User", foreign_keys=[requester_id])
    addressee = relationship("User", foreign_keys=[addressee_id])


class Barter(Base):
    __tablename__ = "barters"

    id = Column(Integer, primary_key=True, index=True)
    requester_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    accepter_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # One barter per friendship
    friend_request_id = Column(Integer, ForeignKey("friend_requests.id", ondelete="CASCADE"), unique=True, nullable=False)
    offered_skill = Column(String, nullable=False)
    wanted_skill = Column(String, nullable=False)
    status = Column(String, default="proposed")  # proposed, accepted, completed, cancelled

    # Reviews left by each side about the exchange
    requester_rating = Column(Integer, nullable=True)
    requester_comment = Column(Text, nullable=True)
    accepter_rating = Column(Integer, nullable=True)
    accepter_comment = Column(Text, nullable=True)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    requester = relationship("User", foreign_keys=[requester_id])
    accepter = relationship("User", foreign_keys=[accepter_id])
    friend_request = relationship("FriendRequest")


class Chat(Base):
    __tablename__ = "chats"
    __table_args__ = (UniqueConstraint("user_low_id", "user_high_id", name="uq_chat_participants"),)

    id = Column(Integer, primary_key=True, index=True)
    # Participants stored ordered by id so a pair maps to exactly one chat
    user_low_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_high_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    user_low = relationship("User", foreign_keys=[user_low_id])
    user_high = relationship("User", foreign_keys=[user_high_id])
    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        order_by="ChatMessage.id",
        cascade="all, delete-orphan"
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, default="text")  # text, image, voice
    content = Column(Text, nullable=False)
    seen_by = Column(JSON, default=list)  # user ids
    created_at = Column(DateTime, server_default=func.now())

    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User")


# *** CREDITS AND BILLING MODELS ***

class CreditTransaction(Base):
    """
    Ledger of every credit balance change.
    idempotency_key is unique: a payment reported by several channels
    (webhook, client verify, receipt verify) resolves to the same key and
    can only be granted once.
    """
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # positive = grant, negative = spend
    balance_after = Column(Integer, nullable=False)
    source = Column(String, nullable=False)  # stripe, revenuecat, app_store, play_store, friend_request, barter, admin...
    idempotency_key = Column(String, unique=True, nullable=True, index=True)
    reference = Column(String, nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="credit_transactions")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    method = Column(String, nullable=False)
    status = Column(String, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    device_fingerprint = Column(String, nullable=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, server_default=func.now())
