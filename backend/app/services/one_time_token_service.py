"""Durable single-use tokens for password reset and email verification."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.core.security import generate_secure_token, utcnow
from app.models.security import OneTimeToken


class OneTimeTokenService:
    """Issue and consume single-use tokens keyed by an unguessable string."""

    @staticmethod
    def issue(db: Session, *, user_id: int, purpose: str, ttl: timedelta) -> str:
        """Store a new token, superseding earlier ones of the same purpose (no commit)."""
        db.execute(
            delete(OneTimeToken)
            .where(OneTimeToken.user_id == user_id, OneTimeToken.purpose == purpose)
            .execution_options(synchronize_session=False)
        )
        token = generate_secure_token()
        db.add(
            OneTimeToken(
                token=token,
                user_id=user_id,
                purpose=purpose,
                expires_at=utcnow() + ttl,
            )
        )
        db.flush()
        return token

    @staticmethod
    def peek(db: Session, token: str, purpose: str) -> Optional[OneTimeToken]:
        if not token:
            return None
        return (
            db.query(OneTimeToken)
            .filter(
                OneTimeToken.token == token,
                OneTimeToken.purpose == purpose,
                OneTimeToken.expires_at > utcnow(),
            )
            .first()
        )

    @staticmethod
    def consume(db: Session, token: str, purpose: str) -> Optional[int]:
        """
        Use a token exactly once (no commit)

        Returns:
            The owning user id, or None if the token is unknown, expired or
            was consumed by a concurrent request.
        """
        record = OneTimeTokenService.peek(db, token, purpose)
        if record is None:
            return None
        user_id = record.user_id
        result = db.execute(
            delete(OneTimeToken)
            .where(OneTimeToken.id == record.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        db.expunge(record)
        return user_id

    @staticmethod
    def revoke_all_for_user(db: Session, user_id: int) -> int:
        result = db.execute(
            delete(OneTimeToken)
            .where(OneTimeToken.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def cleanup_expired(db: Session) -> int:
        result = db.execute(
            delete(OneTimeToken)
            .where(OneTimeToken.expires_at <= utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount


one_time_token_service = OneTimeTokenService()
