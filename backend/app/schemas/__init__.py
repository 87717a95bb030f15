"""Pydantic schemas for API validation"""

from app.schemas.user import (
    UserRole,
    InstructorStatus,
    RegisterRequest,
    LoginRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    InstructorStatusUpdate,
    ProfileUpdateRequest,
    RoleUpdate,
    UserResponse,
    AuthPayload,
    MessagePayload,
)
from app.schemas.response import APIResponse, ErrorResponse
from app.schemas.audit import AuditEventResponse

__all__ = [
    "UserRole", "InstructorStatus",
    "RegisterRequest", "LoginRequest", "ChangePasswordRequest", "ForgotPasswordRequest",
    "ResetPasswordRequest", "VerifyEmailRequest", "InstructorStatusUpdate",
    "ProfileUpdateRequest", "RoleUpdate",
    "UserResponse", "AuthPayload", "MessagePayload",
    "AuditEventResponse",
    "APIResponse", "ErrorResponse"
]
