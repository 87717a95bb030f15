"""Authentication routes"""

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_optional_current_user
from app.config import settings
from app.core.database import get_db
from app.core.exceptions import BaseAPIException, ErrorCode, OAuthError, RateLimitExceededError
from app.core.security import generate_secure_token
from app.models.user import User
from app.schemas.response import APIResponse
from app.schemas.user import (
    AuthPayload,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessagePayload,
    ProfileUpdateRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyEmailRequest,
)
from app.services.auth_service import AuthSession, ExternalCredential, auth_service
from app.services.credential_validator import normalize_email
from app.services.oauth_service import google_oauth_client
from app.services.rate_limiter import rate_limiter
from app.services.token_service import Provenance, TokenPair
from app.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _provenance(request: Request) -> Provenance:
    return Provenance(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def _set_refresh_cookie(response: Response, tokens: TokenPair) -> None:
    """Refresh token is never readable by scripts and only sent to auth routes."""
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=tokens.refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path=settings.REFRESH_COOKIE_PATH,
        domain=settings.cookie_domain,
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        domain=settings.cookie_domain,
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )


def _auth_payload(session: AuthSession) -> APIResponse[AuthPayload]:
    return APIResponse(
        data=AuthPayload(
            access_token=session.tokens.access_token,
            expires_in=session.tokens.expires_in,
            user=UserResponse.model_validate(session.user),
            warnings=session.warnings,
        )
    )


@router.post(
    "/register",
    response_model=APIResponse[AuthPayload],
    status_code=status.HTTP_201_CREATED,
)
def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Create a local account and log it in

    Returns the access token in the body and sets the refresh cookie.
    A failed verification email is reported in ``warnings``.
    """
    rate_limiter.check(
        f"register:hour:{_client_ip(request)}", settings.REGISTER_RATE_LIMIT_PER_HOUR, 3600
    )

    session = auth_service.register(
        db,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        provenance=_provenance(request),
    )
    _set_refresh_cookie(response, session.tokens)
    return _auth_payload(session)


@router.post("/login", response_model=APIResponse[AuthPayload])
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate with email and password

    Args:
        body: Email and password
        db: Database session

    Returns:
        Access token and user info; refresh token as cookie
    """
    client_ip = _client_ip(request)
    user_key = normalize_email(body.email)
    if not rate_limiter.allow(
        f"login:min:{client_ip}:{user_key}", settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60
    ):
        raise RateLimitExceededError("Too many login attempts. Please wait a minute.")
    if not rate_limiter.allow(
        f"login:hour:{client_ip}:{user_key}", settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600
    ):
        raise RateLimitExceededError("Too many login attempts. Please try again later.")

    session = auth_service.login(
        db,
        email=body.email,
        password=body.password,
        provenance=_provenance(request),
    )
    _set_refresh_cookie(response, session.tokens)
    return _auth_payload(session)


@router.post("/refresh", response_model=APIResponse[AuthPayload])
def refresh_token(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """
    Rotate the refresh cookie and return a new access token

    The presented refresh token is single-use.
    """
    client_ip = _client_ip(request)
    if not rate_limiter.allow(f"refresh:min:{client_ip}", settings.RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many refresh attempts. Slow down.")
    if not rate_limiter.allow(f"refresh:hour:{client_ip}", settings.RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many refresh attempts. Try later.")

    session = auth_service.refresh(
        db,
        request.cookies.get(settings.REFRESH_COOKIE_NAME),
        provenance=_provenance(request),
    )
    _set_refresh_cookie(response, session.tokens)
    return _auth_payload(session)


@router.post("/logout", response_model=APIResponse[MessagePayload])
def logout(
    request: Request,
    response: Response,
    current_user: Optional[User] = Depends(get_optional_current_user),
    db: Session = Depends(get_db)
):
    """
    Revoke the current refresh token and clear its cookie

    Always succeeds, even when the token is already invalid.
    """
    auth_service.logout(
        db,
        request.cookies.get(settings.REFRESH_COOKIE_NAME),
        user_id=current_user.id if current_user else None,
    )
    _clear_refresh_cookie(response)
    return APIResponse(data=MessagePayload(message="Logged out successfully"))


@router.get("/me", response_model=APIResponse[UserResponse])
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information"""
    return APIResponse(data=UserResponse.model_validate(current_user))


@router.put("/profile", response_model=APIResponse[UserResponse])
def update_profile(
    body: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update the caller's display name"""
    user = user_service.update_profile(db, current_user, body.full_name)
    return APIResponse(data=UserResponse.model_validate(user))


@router.put("/change-password", response_model=APIResponse[AuthPayload])
def change_password(
    body: ChangePasswordRequest,
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Change password; every other session of the user is logged out

    The calling device receives a fresh token pair.
    """
    session = auth_service.change_password(
        db,
        current_user,
        current_password=body.current_password,
        new_password=body.new_password,
        provenance=_provenance(request),
    )
    _set_refresh_cookie(response, session.tokens)
    return _auth_payload(session)


@router.post("/forgot-password", response_model=APIResponse[MessagePayload])
def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """Request a reset link. The response never reveals whether the email exists."""
    rate_limiter.check(
        f"forgot:hour:{_client_ip(request)}", settings.PASSWORD_RESET_RATE_LIMIT_PER_HOUR, 3600
    )
    message = auth_service.forgot_password(db, body.email)
    return APIResponse(data=MessagePayload(message=message))


@router.post("/reset-password", response_model=APIResponse[MessagePayload])
def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """Set a new password from a reset link; all sessions are revoked."""
    rate_limiter.check(
        f"reset:hour:{_client_ip(request)}", settings.PASSWORD_RESET_RATE_LIMIT_PER_HOUR, 3600
    )
    auth_service.reset_password(db, token=body.token, new_password=body.new_password)
    _clear_refresh_cookie(response)
    return APIResponse(
        data=MessagePayload(message="Password has been reset. Please log in with your new password.")
    )


@router.post("/verify-email", response_model=APIResponse[UserResponse])
def verify_email(
    body: VerifyEmailRequest,
    db: Session = Depends(get_db)
):
    user = auth_service.verify_email(db, body.token)
    return APIResponse(data=UserResponse.model_validate(user))


@router.post("/resend-verification", response_model=APIResponse[MessagePayload])
def resend_verification(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not auth_service.resend_verification(db, current_user):
        return APIResponse(data=MessagePayload(message="Email is already verified"))
    return APIResponse(data=MessagePayload(message="Verification email sent"))


@router.get("/google")
def google_login():
    """Redirect to Google's consent screen with a state cookie"""
    state = generate_secure_token()
    url = google_oauth_client.authorization_url(state)

    redirect = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    redirect.set_cookie(
        key=settings.OAUTH_STATE_COOKIE_NAME,
        value=state,
        max_age=settings.OAUTH_STATE_MAX_AGE_SECONDS,
        path=settings.REFRESH_COOKIE_PATH,
        domain=settings.cookie_domain,
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )
    return redirect


@router.get("/google/callback")
def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """
    Finish Google sign-in

    Success redirects to the frontend with the access token in the URL
    fragment and the refresh token as cookie; failures redirect to the
    login page with an error code.
    """
    try:
        if error:
            if error == "access_denied":
                raise OAuthError("Google sign-in was cancelled", code=ErrorCode.OAUTH_CANCELLED)
            raise OAuthError()

        expected_state = request.cookies.get(settings.OAUTH_STATE_COOKIE_NAME)
        if not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
            raise OAuthError("Invalid OAuth state")

        identity = google_oauth_client.exchange_code(code)
        session = auth_service.login_with_provider(
            db,
            ExternalCredential(
                provider=identity.provider,
                subject_id=identity.subject_id,
                email=identity.email,
                full_name=identity.full_name,
            ),
            provenance=_provenance(request),
        )
    except BaseAPIException as exc:
        logger.warning("Google sign-in failed: %s", exc.code.value)
        redirect = RedirectResponse(
            f"{settings.FRONTEND_URL}/login?{urlencode({'error': exc.code.value})}",
            status_code=status.HTTP_302_FOUND,
        )
        redirect.delete_cookie(settings.OAUTH_STATE_COOKIE_NAME, path=settings.REFRESH_COOKIE_PATH, domain=settings.cookie_domain)
        return redirect

    fragment = urlencode({"accessToken": session.tokens.access_token})
    redirect = RedirectResponse(
        f"{settings.FRONTEND_URL}/auth/callback#{fragment}",
        status_code=status.HTTP_302_FOUND,
    )
    redirect.delete_cookie(settings.OAUTH_STATE_COOKIE_NAME, path=settings.REFRESH_COOKIE_PATH, domain=settings.cookie_domain)
    _set_refresh_cookie(redirect, session.tokens)
    return redirect
