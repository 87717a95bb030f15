"""Google OAuth 2.0 authorization-code client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode
import logging

import httpx

from app.config import settings
from app.core.exceptions import OAuthError, OAuthNotConfiguredError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


@dataclass(frozen=True)
class ExternalIdentity:
    """Identity asserted by an external provider after a successful exchange."""
    provider: str
    subject_id: str
    email: str
    full_name: str = ""


class GoogleOAuthClient:
    """Builds the consent URL and exchanges callback codes for an identity."""

    provider = "google"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        if not self.is_configured:
            raise OAuthNotConfiguredError()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> ExternalIdentity:
        """
        Exchange an authorization code for the user's Google identity

        Raises:
            OAuthNotConfiguredError: Client credentials missing
            OAuthError: Transport failure, rejected code or unverified email
        """
        if not self.is_configured:
            raise OAuthNotConfiguredError()

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                token_response = client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                access_token = token_response.json().get("access_token")
                if not access_token:
                    raise OAuthError()

                userinfo_response = client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("Google OAuth rejected request: status=%s", exc.response.status_code)
            raise OAuthError()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Google OAuth exchange failed: %s", exc)
            raise OAuthError()

        subject_id = userinfo.get("sub") or userinfo.get("id")
        email = userinfo.get("email")
        verified = userinfo.get("email_verified", userinfo.get("verified_email", False))
        if not subject_id or not email:
            logger.warning("Google userinfo missing subject or email")
            raise OAuthError()
        if not verified:
            logger.warning("Google account email is not verified")
            raise OAuthError("Your Google account email is not verified")

        return ExternalIdentity(
            provider=self.provider,
            subject_id=str(subject_id),
            email=email,
            full_name=userinfo.get("name") or "",
        )


google_oauth_client = GoogleOAuthClient(
    settings.GOOGLE_CLIENT_ID,
    settings.GOOGLE_CLIENT_SECRET,
    settings.OAUTH_CALLBACK_URL,
)
