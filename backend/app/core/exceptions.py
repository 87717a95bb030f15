"""Custom exception classes for the application"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Stable machine-readable error codes returned in the response envelope"""

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_EMAIL = "INVALID_EMAIL"
    PASSWORD_TOO_WEAK = "PASSWORD_TOO_WEAK"

    # Authentication
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    REFRESH_TOKEN_EXPIRED = "REFRESH_TOKEN_EXPIRED"
    REFRESH_TOKEN_INVALID = "REFRESH_TOKEN_INVALID"
    UNAUTHORIZED = "UNAUTHORIZED"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    INVALID_RESET_TOKEN = "INVALID_RESET_TOKEN"
    INVALID_VERIFICATION_TOKEN = "INVALID_VERIFICATION_TOKEN"

    # Authorization
    FORBIDDEN = "FORBIDDEN"

    # Resources
    NOT_FOUND = "NOT_FOUND"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"

    # Rate limiting
    RATE_LIMITED = "RATE_LIMITED"

    # OAuth
    GOOGLE_AUTH_FAILED = "GOOGLE_AUTH_FAILED"
    OAUTH_CANCELLED = "OAUTH_CANCELLED"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, status_code=401, code=code, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Invalid email or password (never says which)"""
    def __init__(self):
        super().__init__("Invalid email or password", code=ErrorCode.INVALID_CREDENTIALS)


class TokenExpiredError(AuthenticationError):
    """Access token signature is valid but expired"""
    def __init__(self):
        super().__init__("Access token has expired", code=ErrorCode.TOKEN_EXPIRED)


class TokenInvalidError(AuthenticationError):
    """Token is malformed, tampered with or of the wrong kind"""
    def __init__(self):
        super().__init__("Invalid or malformed token", code=ErrorCode.INVALID_TOKEN)


class RefreshTokenExpiredError(AuthenticationError):
    """Refresh token signature is valid but expired"""
    def __init__(self):
        super().__init__(
            "Refresh token has expired. Please log in again",
            code=ErrorCode.REFRESH_TOKEN_EXPIRED
        )


class RefreshTokenInvalidError(AuthenticationError):
    """Refresh token is unknown, revoked or already rotated"""
    def __init__(self):
        super().__init__(
            "Refresh token is invalid or expired",
            code=ErrorCode.REFRESH_TOKEN_INVALID
        )


class AccountDisabledError(AuthenticationError):
    """Account has been deactivated"""
    def __init__(self):
        super().__init__("User account is disabled", code=ErrorCode.ACCOUNT_DISABLED)


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403, code=ErrorCode.FORBIDDEN)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404, code=ErrorCode.NOT_FOUND)


class EmailAlreadyExistsError(BaseAPIException):
    """An account with the email already exists"""
    def __init__(self):
        super().__init__(
            "An account with this email already exists",
            status_code=409,
            code=ErrorCode.EMAIL_ALREADY_EXISTS
        )


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR
    ):
        super().__init__(message, status_code=422, code=code, details=details)


class InvalidEmailError(ValidationError):
    """Email failed format or plausibility checks"""
    def __init__(self, violations: List[str]):
        super().__init__(
            "Please provide a valid email address",
            details={"requirements": violations},
            code=ErrorCode.INVALID_EMAIL
        )


class WeakPasswordError(ValidationError):
    """Password violates one or more policy rules"""
    def __init__(self, violations: List[str]):
        super().__init__(
            "Password does not meet security requirements",
            details={"requirements": violations},
            code=ErrorCode.PASSWORD_TOO_WEAK
        )


class InvalidResetTokenError(BaseAPIException):
    """Password reset token is unknown, used or expired"""
    def __init__(self):
        super().__init__(
            "Password reset link is invalid or has expired",
            status_code=400,
            code=ErrorCode.INVALID_RESET_TOKEN
        )


class InvalidVerificationTokenError(BaseAPIException):
    """Email verification token is unknown, used or expired"""
    def __init__(self):
        super().__init__(
            "Verification link is invalid or has expired",
            status_code=400,
            code=ErrorCode.INVALID_VERIFICATION_TOKEN
        )


# OAuth Errors
class OAuthError(BaseAPIException):
    """External identity provider login failed"""
    def __init__(
        self,
        message: str = "Google authentication failed",
        code: ErrorCode = ErrorCode.GOOGLE_AUTH_FAILED
    ):
        super().__init__(message, status_code=400, code=code)


class OAuthNotConfiguredError(BaseAPIException):
    """OAuth client credentials are missing"""
    def __init__(self):
        super().__init__(
            "Google sign-in is not configured",
            status_code=503,
            code=ErrorCode.SERVICE_UNAVAILABLE
        )


# System Errors
class InternalServiceError(BaseAPIException):
    """Unexpected storage or signing failure"""
    def __init__(self, message: str = "An internal error occurred. Please try again later."):
        super().__init__(message, status_code=500, code=ErrorCode.INTERNAL_ERROR)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Too many attempts. Please try again later"):
        super().__init__(message, status_code=429, code=ErrorCode.RATE_LIMITED)
