"""User and authentication schemas"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """User role enumeration"""
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class InstructorStatus(str, Enum):
    """Instructor approval state"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    """Local account registration"""
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=1024)
    full_name: str = Field("", max_length=255)


class LoginRequest(CamelModel):
    """Password login"""
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=1024)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., max_length=1024)
    new_password: str = Field(..., max_length=1024)


class ForgotPasswordRequest(CamelModel):
    email: str = Field(..., max_length=255)


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=256)
    new_password: str = Field(..., max_length=1024)


class VerifyEmailRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=256)


class InstructorStatusUpdate(CamelModel):
    status: InstructorStatus


class ProfileUpdateRequest(CamelModel):
    """Self-service profile edit; email, role and password are not editable here"""
    full_name: str = Field(..., min_length=1, max_length=255)


class RoleUpdate(CamelModel):
    role: UserRole


class UserResponse(CamelModel):
    """User response schema"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    email: str
    full_name: str
    role: str
    instructor_status: Optional[str] = None
    provider: str
    email_verified: bool
    is_active: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class AuthPayload(CamelModel):
    """Access token response; the refresh token travels only as a cookie"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    warnings: List[str] = Field(default_factory=list)


class MessagePayload(CamelModel):
    message: str
