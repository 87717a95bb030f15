"""API dependencies - authentication and authorization"""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import (
    AccountDisabledError,
    AuthenticationError,
    AuthorizationError,
    BaseAPIException,
)
from app.core.security import verify_access_token
from app.models.user import User
from app.schemas.user import InstructorStatus, UserRole
from app.services.user_service import user_service

# HTTP Bearer token scheme; missing headers are reported by get_current_user
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, attached to request.state.principal"""
    id: int
    email: str
    role: str
    provider: str


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the bearer access token

    The token is verified before any storage lookup, so malformed or
    expired tokens never reach the database.

    Args:
        request: Incoming request (receives the principal)
        credentials: HTTP Bearer credentials
        db: Database session

    Returns:
        Current user

    Raises:
        AuthenticationError: Missing token, unknown user
        TokenExpiredError: Access token expired
        TokenInvalidError: Access token malformed or tampered with
        AccountDisabledError: User is deactivated
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")

    claims = verify_access_token(credentials.credentials)

    user = user_service.get_user_by_id(db, claims.user_id)
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AccountDisabledError()

    request.state.principal = Principal(
        id=user.id,
        email=user.email,
        role=user.role,
        provider=user.provider,
    )
    return user


def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get current admin user (authorization check)

    Raises:
        AuthorizationError: If user is not admin
    """
    if current_user.role != UserRole.ADMIN.value:
        raise AuthorizationError("Admin access required")
    return current_user


def get_approved_instructor(
    current_user: User = Depends(get_current_user)
) -> User:
    """Admins, or instructors whose application was approved"""
    if current_user.role == UserRole.ADMIN.value:
        return current_user
    if (
        current_user.role == UserRole.INSTRUCTOR.value
        and current_user.instructor_status == InstructorStatus.APPROVED.value
    ):
        return current_user
    raise AuthorizationError("Approved instructor access required")


def require_roles(*roles: UserRole) -> Callable[..., User]:
    """Build a dependency that admits only the given roles"""
    allowed = {role.value for role in roles}

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise AuthorizationError()
        return current_user

    return dependency


def get_optional_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """
    Get current user if authenticated, None otherwise

    Returns:
        Current user or None
    """
    if not credentials:
        return None

    try:
        return get_current_user(request, credentials, db)
    except BaseAPIException:
        return None
