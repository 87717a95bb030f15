"""Refresh token persistence, rotation and revocation service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.config import settings
from app.core.security import create_access_token, create_refresh_token, utcnow
from app.models.security import RefreshToken
from app.models.user import User
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Provenance:
    """Where a refresh token was issued from (informational only)."""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_jti: str
    refresh_expires_at: datetime
    expires_in: int


class TokenService:
    """Single source of truth for whether a refresh token is still usable."""

    @staticmethod
    def create(
        db: Session,
        *,
        jti: str,
        user_id: int,
        expires_at: datetime,
        provenance: Optional[Provenance] = None,
    ) -> RefreshToken:
        """Insert a new record; a duplicate jti fails on the unique constraint."""
        provenance = provenance or Provenance()
        record = RefreshToken(
            jti=jti,
            user_id=user_id,
            expires_at=expires_at,
            revoked=False,
            user_agent=(provenance.user_agent or "")[:512] or None,
            ip_address=provenance.ip_address,
        )
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def find_active(db: Session, jti: str) -> Optional[RefreshToken]:
        """Return the record only while it is neither revoked nor expired."""
        return (
            db.query(RefreshToken)
            .filter(
                RefreshToken.jti == jti,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > utcnow(),
            )
            .first()
        )

    @staticmethod
    def consume(db: Session, jti: str, user_id: Optional[int] = None) -> bool:
        """
        Atomically mark an active token as revoked

        A single conditional UPDATE, so of several concurrent callers
        presenting the same jti at most one sees a matched row.

        Returns:
            bool: True if this call revoked a previously active token
        """
        now = utcnow()
        conditions = [
            RefreshToken.jti == jti,
            RefreshToken.revoked == False,  # noqa: E712
            RefreshToken.expires_at > now,
        ]
        if user_id is not None:
            conditions.append(RefreshToken.user_id == user_id)
        result = db.execute(
            update(RefreshToken)
            .where(*conditions)
            .values(revoked=True, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def rotate(
        db: Session,
        jti: str,
        user: User,
        provenance: Optional[Provenance] = None,
    ) -> Optional[TokenPair]:
        """
        Single-use rotation: consume the presented jti, then mint a new pair

        Returns:
            The new pair, or None if the jti was not active (no commit)
        """
        if not TokenService.consume(db, jti, user_id=user.id):
            return None
        pair = TokenService.issue_token_pair(db, user, provenance)
        db.execute(
            update(RefreshToken)
            .where(RefreshToken.jti == jti)
            .values(replaced_by_jti=pair.refresh_jti)
            .execution_options(synchronize_session=False)
        )
        return pair

    @staticmethod
    def revoke(db: Session, jti: str) -> None:
        """Idempotent: unknown or already revoked tokens are left as they are."""
        db.execute(
            update(RefreshToken)
            .where(RefreshToken.jti == jti, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def revoke_all_for_user(db: Session, user_id: int) -> int:
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True, revoked_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def cleanup_expired(db: Session) -> int:
        """Delete rows that are revoked or past expiry. No behavioural effect."""
        count = (
            db.query(RefreshToken)
            .filter(or_(RefreshToken.revoked == True, RefreshToken.expires_at <= utcnow()))  # noqa: E712
            .delete(synchronize_session=False)
        )
        db.commit()
        return count

    @staticmethod
    def issue_token_pair(
        db: Session,
        user: User,
        provenance: Optional[Provenance] = None,
    ) -> TokenPair:
        """Mint an access/refresh pair and persist the refresh record (no commit)."""
        access_token = create_access_token(user.id, user.email, user.role)
        refresh_token, jti, expires_at = create_refresh_token(user.id)
        TokenService.create(
            db,
            jti=jti,
            user_id=user.id,
            expires_at=expires_at,
            provenance=provenance,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_jti=jti,
            refresh_expires_at=expires_at,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )


token_service = TokenService()
