"""Pydantic schemas for API request/response serialization."""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from usermgmt.models.notification import NotificationChannel, NotificationPriority


class MessageResponse(BaseModel):
    message: str


# ---- Auth ----
class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=255)

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    user: Optional[Dict[str, Any]] = None

class RefreshRequest(BaseModel):
    refresh_token: str

class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)

class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)

class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=10)
    new_password: str = Field(..., min_length=8, max_length=128)

class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=10)


# ---- User ----
class UserOut(BaseModel):
    id: int
    email: str
    full_name: str
    role: Optional[str] = None
    is_active: bool = True
    email_verified: bool = False
    last_login_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class UserCreateRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=255)
    role: str = "user"
    is_active: bool = True
    email_verified: bool = False

class UserUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None

class RoleChangeRequest(BaseModel):
    role: str = Field(..., min_length=1)

class StatusChangeRequest(BaseModel):
    is_active: bool

class BulkUserRequest(BaseModel):
    user_ids: List[int] = Field(..., min_length=1, max_length=100)
    action: Literal["activate", "deactivate", "delete"]


# ---- Profile ----
class ProfileUpsert(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=2000)
    avatar_url: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=30)
    date_of_birth: Optional[date] = None
    website: Optional[str] = Field(None, max_length=500)
    company: Optional[str] = Field(None, max_length=255)
    job_title: Optional[str] = Field(None, max_length=255)
    location: Optional[str] = Field(None, max_length=255)
    address: Optional[Dict[str, Any]] = None
    preferences: Optional[Dict[str, Any]] = None
    social_links: Optional[Dict[str, str]] = None
    is_public: Optional[bool] = None
    show_email: Optional[bool] = None
    show_phone: Optional[bool] = None


# ---- Notification ----
class NotificationCreate(BaseModel):
    user_id: int
    type_id: int
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    channel: NotificationChannel = NotificationChannel.in_app
    priority: NotificationPriority = NotificationPriority.normal
    scheduled_for: Optional[datetime] = None
    max_retries: int = Field(3, ge=0, le=10)
    metadata: Optional[Dict[str, Any]] = None

class NotificationTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    default_channel: NotificationChannel = NotificationChannel.in_app

class PreferenceUpdate(BaseModel):
    type_id: int
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None


# ---- Logs ----
class LogCleanupRequest(BaseModel):
    days: int = Field(..., ge=1, le=3650)


# ---- Roles ----
class PermissionOut(BaseModel):
    id: int
    name: str
    resource: str
    action: str
    description: Optional[str] = None

    class Config:
        from_attributes = True

class PermissionCheckResponse(BaseModel):
    permission: str
    allowed: bool
