"""Security utilities - password hashing and JWT access/refresh tokens"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
import logging
import secrets

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import settings
from app.core.exceptions import RefreshTokenExpiredError, TokenExpiredError, TokenInvalidError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

# Spent on logins for unknown or password-less accounts so they cost the
# same as a wrong password.
_DUMMY_HASH = bcrypt.hashpw(b"timing-equalizer", bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS))


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how token expiry columns are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _from_timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _password_bytes(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes; newer releases raise past that
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        _password_bytes(password),
        bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    ).decode('utf-8')


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a password against its hash

    A missing or malformed hash never raises; it simply does not match.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(
            _password_bytes(plain_password),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def dummy_verify(plain_password: str) -> None:
    """Run one bcrypt check against a throwaway hash."""
    bcrypt.checkpw(_password_bytes(plain_password), _DUMMY_HASH)


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of an access token"""
    user_id: int
    email: str
    role: str
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    """Verified claims of a refresh token"""
    user_id: int
    jti: str
    expires_at: datetime


def _encode(claims: Dict[str, Any], secret: str, expires_at: datetime) -> str:
    to_encode = claims.copy()
    to_encode.update({
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": utcnow(),
        "exp": expires_at,
    })
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


def _decode(token: str, secret: str, expected_type: str) -> Dict[str, Any]:
    """Decode and verify signature, expiry, issuer, audience and token type.

    Raises ExpiredSignatureError for an otherwise valid but expired token and
    TokenInvalidError for everything else.
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except ExpiredSignatureError:
        raise
    except JWTError:
        raise TokenInvalidError()

    if payload.get("typ") != expected_type:
        raise TokenInvalidError()
    try:
        payload["sub"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenInvalidError()
    return payload


def create_access_token(
    user_id: int,
    email: str,
    role: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a short-lived access token

    Args:
        user_id: Principal id (stored as ``sub``)
        email: Principal email
        role: Principal role
        expires_delta: Override for the configured lifetime

    Returns:
        str: Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "typ": ACCESS_TOKEN_TYPE,
    }
    return _encode(claims, settings.JWT_ACCESS_SECRET, utcnow() + expires_delta)


def create_refresh_token(
    user_id: int,
    expires_delta: Optional[timedelta] = None
) -> Tuple[str, str, datetime]:
    """
    Create a long-lived refresh token signed with the refresh secret

    Returns:
        Tuple of (encoded token, jti, expiry timestamp)
    """
    if expires_delta is None:
        expires_delta = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    jti = secrets.token_urlsafe(32)
    # JWT exp has second resolution
    expires_at = (utcnow() + expires_delta).replace(microsecond=0)
    claims = {
        "sub": str(user_id),
        "jti": jti,
        "typ": REFRESH_TOKEN_TYPE,
    }
    token = _encode(claims, settings.JWT_REFRESH_SECRET, expires_at)
    return token, jti, expires_at


def verify_access_token(token: str) -> AccessClaims:
    """
    Verify an access token without touching storage

    Raises:
        TokenExpiredError: Signature valid but token expired
        TokenInvalidError: Malformed, tampered, wrong type/issuer/audience
    """
    try:
        payload = _decode(token, settings.JWT_ACCESS_SECRET, ACCESS_TOKEN_TYPE)
    except ExpiredSignatureError:
        raise TokenExpiredError()

    return AccessClaims(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        role=payload.get("role", ""),
        expires_at=_from_timestamp(payload["exp"]),
    )


def verify_refresh_token(token: str) -> RefreshClaims:
    """
    Verify a refresh token's signature and expiry

    The caller must still check the jti against the token store.

    Raises:
        RefreshTokenExpiredError: Signature valid but token expired
        TokenInvalidError: Malformed, tampered, wrong type/issuer/audience
    """
    try:
        payload = _decode(token, settings.JWT_REFRESH_SECRET, REFRESH_TOKEN_TYPE)
    except ExpiredSignatureError:
        raise RefreshTokenExpiredError()

    jti = payload.get("jti")
    if not jti:
        raise TokenInvalidError()

    return RefreshClaims(
        user_id=payload["sub"],
        jti=jti,
        expires_at=_from_timestamp(payload["exp"]),
    )


def generate_secure_token() -> str:
    """
    Generate an unguessable token for one-time links and OAuth state

    Returns:
        str: Random URL-safe token
    """
    return secrets.token_urlsafe(32)
