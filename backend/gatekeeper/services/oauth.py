"""Google OAuth 2.0 authorization-code client."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.exceptions import OAuthError
from gatekeeper.services.users import ProviderTokens

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPES = ("openid", "profile", "email")


@dataclass(slots=True)
class OAuthProfile:
    """Verified identity handed back by the provider."""

    email: str
    subject: str
    image: str | None
    tokens: ProviderTokens
    email_verified: bool = False


class GoogleOAuthClient:
    provider = "google"

    def __init__(self, settings: Settings | None = None, timeout: float = 10) -> None:
        self._settings = settings or get_settings()
        self._timeout = timeout

    def _require_config(self) -> tuple[str, str]:
        client_id = self._settings.google_client_id
        client_secret = self._settings.google_client_secret
        if not client_id or not client_secret:
            raise OAuthError("Google sign-in is not configured")
        return client_id, client_secret

    def authorization_url(self, state: str) -> str:
        client_id, _ = self._require_config()
        params = {
            "client_id": client_id,
            "redirect_uri": self._settings.google_redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "state": state,
            "access_type": "offline",
            "include_granted_scopes": "true",
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthProfile:
        client_id, client_secret = self._require_config()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                token_response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "redirect_uri": self._settings.google_redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
                if token_response.status_code >= 400:
                    logger.warning("Google token exchange failed: %s %s", token_response.status_code, token_response.text)
                    raise OAuthError(f"Token exchange failed with status {token_response.status_code}")
                token_data = token_response.json()

                access_token = token_data.get("access_token")
                if not access_token:
                    raise OAuthError("Token response did not include an access token")

                userinfo_response = await client.get(
                    GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
                )
                if userinfo_response.status_code >= 400:
                    raise OAuthError(f"Profile request failed with status {userinfo_response.status_code}")
                userinfo = userinfo_response.json()
        except httpx.HTTPError as exc:
            raise OAuthError(f"Could not reach Google: {exc}") from exc

        email = userinfo.get("email")
        subject = userinfo.get("sub")
        if not email or not subject:
            raise OAuthError("Google profile is missing email or subject")
        if userinfo.get("email_verified") is False:
            raise OAuthError("Google account email is not verified")

        expires_in = token_data.get("expires_in")
        expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in is not None else None
        )
        return OAuthProfile(
            email=email,
            subject=str(subject),
            image=userinfo.get("picture"),
            tokens=ProviderTokens(
                access_token=access_token,
                refresh_token=token_data.get("refresh_token"),
                expires_at=expires_at,
            ),
            email_verified=userinfo.get("email_verified") is True,
        )
