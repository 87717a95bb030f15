"""User service - principal lookup and account persistence"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.exceptions import EmailAlreadyExistsError, OAuthError, ResourceNotFoundError, ValidationError
from app.core.security import utcnow
from app.models.user import User
from app.schemas.user import InstructorStatus, UserRole
from app.services.credential_validator import normalize_email
from app.services.one_time_token_service import one_time_token_service
from app.services.token_service import token_service
import logging

logger = logging.getLogger(__name__)


class UserService:
    """Service for user management"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email (normalized before lookup)"""
        return db.query(User).filter(User.email == normalize_email(email)).first()

    @staticmethod
    def get_user_by_provider(db: Session, provider: str, provider_id: str) -> Optional[User]:
        """Get user by external provider subject"""
        return (
            db.query(User)
            .filter(User.provider == provider, User.provider_id == provider_id)
            .first()
        )

    @staticmethod
    def create_user(
        db: Session,
        *,
        email: str,
        password_hash: Optional[str],
        full_name: str = "",
        role: UserRole = UserRole.STUDENT,
        provider: str = "local",
        provider_id: Optional[str] = None,
        email_verified: bool = False,
    ) -> User:
        """
        Insert a user (flushed, not committed)

        The unique constraint on email is the real duplicate guard; a
        violation surfaces as EmailAlreadyExistsError.
        """
        user = User(
            email=normalize_email(email),
            password_hash=password_hash,
            full_name=full_name.strip(),
            role=role.value,
            instructor_status=InstructorStatus.PENDING.value if role == UserRole.INSTRUCTOR else None,
            provider=provider,
            provider_id=provider_id,
            email_verified_at=utcnow() if email_verified else None,
        )
        db.add(user)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info("Duplicate email rejected by unique constraint")
            raise EmailAlreadyExistsError()

        logger.info(f"Created user: id={user.id} (role: {user.role}, provider: {user.provider})")
        return user

    @staticmethod
    def link_provider(db: Session, user: User, provider: str, provider_id: str) -> User:
        user.provider = provider
        user.provider_id = provider_id
        if user.email_verified_at is None:
            user.email_verified_at = utcnow()
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.warning(f"{provider} identity is already linked to another user")
            raise OAuthError("This Google account is already linked to another user")
        logger.info(f"Linked {provider} identity to user id={user.id}")
        return user

    @staticmethod
    def update_password(db: Session, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        db.flush()

    @staticmethod
    def mark_email_verified(db: Session, user: User) -> None:
        if user.email_verified_at is None:
            user.email_verified_at = utcnow()
            db.flush()

    @staticmethod
    def record_login(db: Session, user: User) -> None:
        user.last_login = utcnow()
        db.flush()

    @staticmethod
    def get_all_users(db: Session, role: Optional[str] = None) -> List[User]:
        """
        Get all users, optionally filtered by role

        Args:
            db: Database session
            role: Optional role filter

        Returns:
            List of users
        """
        query = db.query(User)

        if role:
            query = query.filter(User.role == role)

        return query.order_by(User.id.asc()).all()

    @staticmethod
    def set_instructor_status(db: Session, user_id: int, status: InstructorStatus) -> User:
        user = UserService.get_user_by_id(db, user_id)
        if not user or user.role != UserRole.INSTRUCTOR.value:
            raise ResourceNotFoundError("Instructor")
        user.instructor_status = status.value
        db.commit()
        db.refresh(user)
        logger.info(f"Instructor id={user.id} status set to {status.value}")
        return user

    @staticmethod
    def update_profile(db: Session, user: User, full_name: str) -> User:
        """Change the display name only"""
        full_name = full_name.strip()
        if not full_name:
            raise ValidationError("Full name cannot be empty")
        user.full_name = full_name
        db.commit()
        db.refresh(user)
        logger.info(f"Updated profile of user id={user.id}")
        return user

    @staticmethod
    def set_role(db: Session, user_id: int, role: UserRole) -> User:
        """
        Change a user's role

        Becoming an instructor starts a pending application that an admin
        approves through set_instructor_status; leaving the role clears it.
        """
        user = UserService.get_user_by_id(db, user_id)
        if not user:
            raise ResourceNotFoundError("User")

        if role == UserRole.INSTRUCTOR:
            if user.role != UserRole.INSTRUCTOR.value:
                user.instructor_status = InstructorStatus.PENDING.value
        else:
            user.instructor_status = None
        user.role = role.value
        db.commit()
        db.refresh(user)
        logger.info(f"User id={user.id} role set to {role.value}")
        return user

    @staticmethod
    def delete_user(db: Session, user_id: int) -> None:
        """
        Delete user after revoking every token they own

        Args:
            db: Database session
            user_id: User ID
        """
        user = UserService.get_user_by_id(db, user_id)

        if not user:
            raise ResourceNotFoundError("User")

        token_service.revoke_all_for_user(db, user.id)
        one_time_token_service.revoke_all_for_user(db, user.id)
        db.delete(user)
        db.commit()

        logger.info(f"Deleted user id={user_id}")


# Singleton instance
user_service = UserService()
