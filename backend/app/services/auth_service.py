"""Auth session service - register, login, refresh, logout and password flows.

Every public operation converts unexpected storage or signing failures into
InternalServiceError; BaseAPIException subclasses pass through untouched so
the API layer can render them with their stable error code.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.exceptions import (
    AccountDisabledError,
    BaseAPIException,
    EmailAlreadyExistsError,
    ErrorCode,
    InternalServiceError,
    InvalidCredentialsError,
    InvalidEmailError,
    InvalidResetTokenError,
    InvalidVerificationTokenError,
    OAuthError,
    RefreshTokenInvalidError,
    TokenInvalidError,
    ValidationError,
)
from app.core.security import dummy_verify, hash_password, verify_password, verify_refresh_token
from app.models.security import OneTimeToken
from app.models.user import User
from app.services.audit_service import audit_service
from app.services.credential_validator import credential_validator, normalize_email
from app.services.email_service import email_service
from app.services.one_time_token_service import one_time_token_service
from app.services.token_service import Provenance, TokenPair, token_service
from app.services.user_service import user_service

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = (
    "If an account exists for that email, a password reset link has been sent."
)
VERIFICATION_EMAIL_WARNING = (
    "Your account was created, but we could not send the verification email. "
    "You can request a new one from your profile."
)

F = TypeVar("F", bound=Callable)


@dataclass(frozen=True)
class LocalCredential:
    email: str
    password: str


@dataclass(frozen=True)
class ExternalCredential:
    """Identity already verified by an external provider."""
    provider: str
    subject_id: str
    email: str
    full_name: str = ""


Credential = Union[LocalCredential, ExternalCredential]


@dataclass
class AuthSession:
    """Result of a successful login, registration, rotation or password change."""
    user: User
    tokens: TokenPair
    warnings: List[str] = field(default_factory=list)


def _guarded(operation: str) -> Callable[[F], F]:
    """Roll back and translate unexpected failures of an auth operation."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self, db: Session, *args, **kwargs):
            try:
                return func(self, db, *args, **kwargs)
            except BaseAPIException:
                db.rollback()
                raise
            except Exception:
                db.rollback()
                logger.exception("Auth operation '%s' failed", operation)
                raise InternalServiceError()

        return wrapper  # type: ignore[return-value]

    return decorator


class AuthService:
    """Orchestrates credentials, token codec and token store."""

    @_guarded("register")
    def register(
        self,
        db: Session,
        *,
        email: str,
        password: str,
        full_name: str = "",
        provenance: Optional[Provenance] = None,
    ) -> AuthSession:
        """
        Create a local account and start its first session

        The account and its tokens are committed before the verification
        email is attempted; a dispatch failure only adds a warning.
        """
        email = normalize_email(email)
        email_errors = credential_validator.validate_email(email)
        if email_errors:
            raise InvalidEmailError(email_errors)
        credential_validator.ensure_strong_password(password)

        if user_service.get_user_by_email(db, email):
            raise EmailAlreadyExistsError()

        user = user_service.create_user(
            db,
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
        )
        tokens = token_service.issue_token_pair(db, user, provenance)
        audit_service.log_event(
            db,
            user_id=user.id,
            action="register",
            target_type="user",
            target_id=str(user.id),
            ip_address=provenance.ip_address if provenance else None,
        )
        db.commit()
        db.refresh(user)
        logger.info("Registered user id=%s", user.id)

        warnings: List[str] = []
        if not self._send_verification(db, user):
            warnings.append(VERIFICATION_EMAIL_WARNING)
        return AuthSession(user=user, tokens=tokens, warnings=warnings)

    def authenticate(self, db: Session, credential: Credential) -> User:
        """Resolve a principal from either credential kind."""
        if isinstance(credential, LocalCredential):
            return self._authenticate_local(db, credential)
        if isinstance(credential, ExternalCredential):
            return self._authenticate_external(db, credential)
        raise TypeError(f"Unsupported credential: {type(credential).__name__}")

    @_guarded("login")
    def login(
        self,
        db: Session,
        *,
        email: str,
        password: str,
        provenance: Optional[Provenance] = None,
    ) -> AuthSession:
        user = self.authenticate(db, LocalCredential(email=email, password=password))
        return self._start_session(db, user, provenance, action="login")

    @_guarded("login_with_provider")
    def login_with_provider(
        self,
        db: Session,
        credential: ExternalCredential,
        provenance: Optional[Provenance] = None,
    ) -> AuthSession:
        user = self.authenticate(db, credential)
        return self._start_session(db, user, provenance, action=f"login_{credential.provider}")

    @_guarded("refresh")
    def refresh(
        self,
        db: Session,
        refresh_token: Optional[str],
        provenance: Optional[Provenance] = None,
    ) -> AuthSession:
        """
        Rotate a refresh token: the presented token is revoked and a new pair
        issued. Reusing a rotated, revoked or unknown token fails.
        """
        if not refresh_token:
            raise RefreshTokenInvalidError()
        try:
            claims = verify_refresh_token(refresh_token)
        except TokenInvalidError:
            raise RefreshTokenInvalidError()

        user = user_service.get_user_by_id(db, claims.user_id)
        if user is None:
            token_service.revoke(db, claims.jti)
            db.commit()
            logger.info("Refresh rejected: user id=%s no longer exists", claims.user_id)
            raise RefreshTokenInvalidError()

        tokens = token_service.rotate(db, claims.jti, user, provenance)
        if tokens is None:
            logger.info("Refresh rejected: token for user id=%s is not active", user.id)
            raise RefreshTokenInvalidError()

        if not user.is_active:
            # keep the presented token revoked, discard the new one
            db.rollback()
            token_service.revoke(db, claims.jti)
            db.commit()
            raise AccountDisabledError()

        db.commit()
        db.refresh(user)
        return AuthSession(user=user, tokens=tokens)

    def logout(self, db: Session, refresh_token: Optional[str], *, user_id: Optional[int] = None) -> None:
        """Revoke the presented refresh token if it verifies. Never raises."""
        if not refresh_token:
            return
        try:
            claims = verify_refresh_token(refresh_token)
            token_service.revoke(db, claims.jti)
            audit_service.log_event(
                db,
                user_id=claims.user_id,
                action="logout",
                target_type="user",
                target_id=str(claims.user_id),
            )
            db.commit()
        except BaseAPIException as exc:
            logger.info("Logout with unusable refresh token (user id=%s): %s", user_id, exc.code.value)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to revoke refresh token on logout")

    @_guarded("change_password")
    def change_password(
        self,
        db: Session,
        user: User,
        *,
        current_password: str,
        new_password: str,
        provenance: Optional[Provenance] = None,
    ) -> AuthSession:
        """
        Replace the password and force every session of the user to log in
        again. The calling device receives a fresh pair.
        """
        if not verify_password(current_password, user.password_hash):
            raise ValidationError(
                "Current password is incorrect",
                code=ErrorCode.INVALID_CREDENTIALS,
            )
        credential_validator.ensure_strong_password(new_password)

        user_service.update_password(db, user, hash_password(new_password))
        revoked = token_service.revoke_all_for_user(db, user.id)
        tokens = token_service.issue_token_pair(db, user, provenance)
        audit_service.log_event(
            db,
            user_id=user.id,
            action="password_change",
            target_type="user",
            target_id=str(user.id),
            ip_address=provenance.ip_address if provenance else None,
            metadata={"revoked_sessions": revoked},
        )
        db.commit()
        db.refresh(user)
        logger.info("Password changed for user id=%s; %s sessions revoked", user.id, revoked)
        return AuthSession(user=user, tokens=tokens)

    @_guarded("forgot_password")
    def forgot_password(self, db: Session, email: str) -> str:
        """Same message whether or not the email belongs to an account."""
        user = user_service.get_user_by_email(db, email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return FORGOT_PASSWORD_MESSAGE

        token = one_time_token_service.issue(
            db,
            user_id=user.id,
            purpose=OneTimeToken.PASSWORD_RESET,
            ttl=timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
        )
        db.commit()
        if not email_service.send_password_reset_email(user.email, user.full_name, token):
            logger.warning("Password reset email could not be sent for user id=%s", user.id)
        return FORGOT_PASSWORD_MESSAGE

    @_guarded("reset_password")
    def reset_password(self, db: Session, *, token: str, new_password: str) -> None:
        """Consume a reset token once, set the password, revoke every session."""
        credential_validator.ensure_strong_password(new_password)

        user_id = one_time_token_service.consume(db, token, OneTimeToken.PASSWORD_RESET)
        if user_id is None:
            raise InvalidResetTokenError()
        user = user_service.get_user_by_id(db, user_id)
        if user is None or not user.is_active:
            raise InvalidResetTokenError()

        user_service.update_password(db, user, hash_password(new_password))
        revoked = token_service.revoke_all_for_user(db, user.id)
        audit_service.log_event(
            db,
            user_id=user.id,
            action="password_reset",
            target_type="user",
            target_id=str(user.id),
            metadata={"revoked_sessions": revoked},
        )
        db.commit()
        logger.info("Password reset for user id=%s; %s sessions revoked", user.id, revoked)

    @_guarded("verify_email")
    def verify_email(self, db: Session, token: str) -> User:
        user_id = one_time_token_service.consume(db, token, OneTimeToken.EMAIL_VERIFICATION)
        if user_id is None:
            raise InvalidVerificationTokenError()
        user = user_service.get_user_by_id(db, user_id)
        if user is None:
            raise InvalidVerificationTokenError()

        user_service.mark_email_verified(db, user)
        audit_service.log_event(
            db,
            user_id=user.id,
            action="email_verified",
            target_type="user",
            target_id=str(user.id),
        )
        db.commit()
        db.refresh(user)
        return user

    @_guarded("resend_verification")
    def resend_verification(self, db: Session, user: User) -> bool:
        """
        Send a fresh verification link, superseding older ones

        Returns:
            bool: False if the account is already verified
        """
        if user.email_verified:
            return False
        if not self._send_verification(db, user):
            raise InternalServiceError("Verification email could not be sent. Please try again later.")
        return True

    @_guarded("delete_account")
    def delete_account(self, db: Session, user_id: int, *, actor_id: Optional[int] = None) -> None:
        """Revoke every token of the user, then delete the account."""
        audit_service.log_event(
            db,
            user_id=actor_id,
            action="delete_user",
            target_type="user",
            target_id=str(user_id),
        )
        user_service.delete_user(db, user_id)

    def _authenticate_local(self, db: Session, credential: LocalCredential) -> User:
        user = user_service.get_user_by_email(db, credential.email)
        if user is None or not user.password_hash:
            dummy_verify(credential.password)
            logger.info("Login failed: no account with a local password")
            raise InvalidCredentialsError()

        if not verify_password(credential.password, user.password_hash):
            logger.info("Login failed: wrong password for user id=%s", user.id)
            raise InvalidCredentialsError()

        if not user.is_active:
            raise AccountDisabledError()
        return user

    def _authenticate_external(self, db: Session, credential: ExternalCredential) -> User:
        user = user_service.get_user_by_provider(db, credential.provider, credential.subject_id)
        if user is None:
            user = user_service.get_user_by_email(db, credential.email)
            if user is not None:
                if user.provider == credential.provider and user.provider_id not in (None, credential.subject_id):
                    logger.warning(
                        "Refusing to relink user id=%s to a different %s identity", user.id, credential.provider
                    )
                    raise OAuthError("This email is already linked to a different Google account")
                user_service.link_provider(db, user, credential.provider, credential.subject_id)
            else:
                try:
                    user = user_service.create_user(
                        db,
                        email=credential.email,
                        password_hash=None,
                        full_name=credential.full_name,
                        provider=credential.provider,
                        provider_id=credential.subject_id,
                        email_verified=True,
                    )
                except EmailAlreadyExistsError:
                    # a concurrent first login inserted the row
                    user = user_service.get_user_by_provider(db, credential.provider, credential.subject_id)
                    if user is None:
                        raise OAuthError()

        if not user.is_active:
            raise AccountDisabledError()
        return user

    def _start_session(
        self,
        db: Session,
        user: User,
        provenance: Optional[Provenance],
        *,
        action: str,
    ) -> AuthSession:
        user_service.record_login(db, user)
        tokens = token_service.issue_token_pair(db, user, provenance)
        audit_service.log_event(
            db,
            user_id=user.id,
            action=action,
            target_type="user",
            target_id=str(user.id),
            ip_address=provenance.ip_address if provenance else None,
        )
        db.commit()
        db.refresh(user)
        return AuthSession(user=user, tokens=tokens)

    def _send_verification(self, db: Session, user: User) -> bool:
        """Issue a verification token and email it; False on any failure."""
        try:
            token = one_time_token_service.issue(
                db,
                user_id=user.id,
                purpose=OneTimeToken.EMAIL_VERIFICATION,
                ttl=timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not store verification token for user id=%s", user.id)
            return False

        sent = email_service.send_verification_email(user.email, user.full_name, token)
        if not sent:
            logger.warning("Verification email could not be sent for user id=%s", user.id)
        return sent


auth_service = AuthService()
