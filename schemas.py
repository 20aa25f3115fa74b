from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Union
from datetime import datetime
from enum import Enum


# *** ENUMS ***
class ReportReason(str, Enum):
    spam = "spam"
    harassment = "harassment"
    inappropriate_content = "inappropriate_content"
    scam = "scam"
    other = "other"

class Platform(str, Enum):
    ios = "ios"
    android = "android"


# *** AUTH SCHEMAS ***
class RegisterRequest(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    password: str

class VerifyOtpRequest(BaseModel):
    userId: int
    otp: str

class LoginRequest(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    password: str

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class ForgotPasswordRequest(BaseModel):
    email: str

class ResetPasswordRequest(BaseModel):
    email: str
    otp: str
    newPassword: str

class CompleteProfileRequest(BaseModel):
    # comma separated string or a list
    skills: Union[str, List[str]] = []
    serviceSeeking: Union[str, List[str]] = []

class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone: Optional[str] = None
    is_verified: bool
    profile_image_url: Optional[str] = None
    skills_offered: List[str] = []
    skills_wanted: List[str] = []
    credits: int
    subscription_plan: Optional[str] = None
    subscription_status: Optional[str] = None
    created_at: Optional[datetime] = None

class PublicUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    profile_image_url: Optional[str] = None
    skills_offered: List[str] = []
    skills_wanted: List[str] = []

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


# *** USER SCHEMAS ***
class EditProfileRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    skills: Optional[Union[str, List[str]]] = None
    serviceSeeking: Optional[Union[str, List[str]]] = None
    profileImageUrl: Optional[str] = None

class ChangePasswordRequest(BaseModel):
    oldPassword: str
    newPassword: str

class PushTokenRequest(BaseModel):
    token: str

class NotificationPreferencesRequest(BaseModel):
    email: Optional[bool] = None
    push: Optional[bool] = None
    subscriptionReminders: Optional[bool] = None

class ReportRequest(BaseModel):
    reportedUserId: int
    reason: str
    description: Optional[str] = None

class AddCreditsRequest(BaseModel):
    userId: int
    amount: int
    reason: Optional[str] = None

class CreditTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: int
    balance_after: int
    source: str
    reference: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


# *** BARTER SCHEMAS ***
class FriendRequestCreate(BaseModel):
    toUserId: int

class BarterProposalRequest(BaseModel):
    friendRequestId: Optional[int] = None
    userId: Optional[int] = None
    offered_skill: str
    wanted_skill: str

class BarterCompleteRequest(BaseModel):
    barterId: int
    rating: int
    comment: Optional[str] = None


# *** CHAT SCHEMAS ***
class GetOrCreateChatRequest(BaseModel):
    otherUserId: int

class SendMessageRequest(BaseModel):
    chatId: int
    content: str
    type: str = "text"


# *** SUBSCRIPTION SCHEMAS ***
class CheckoutSessionRequest(BaseModel):
    plan: str

class VerifyNativeRequest(BaseModel):
    platform: Platform
    productId: str
    transactionId: str
    receiptData: str

class VerifyRevenueCatRequest(BaseModel):
    revenueCatUserId: str
    transactionId: str
    productId: str
    platform: Platform

class PurchaseVerificationResponse(BaseModel):
    success: bool
    credits: int
    creditsAdded: int = 0
    message: str

class UseCreditsRequest(BaseModel):
    amount: Optional[int] = None


# *** CRON SCHEMAS ***
class TestNotificationRequest(BaseModel):
    userId: Optional[int] = None
    days: int = Field(default=3, ge=0)
