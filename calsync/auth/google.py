"""Google OAuth endpoints: authorization URL, code exchange, refresh, userinfo."""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from calsync.config import get_settings
from calsync.errors import OAuthErrorCode

logger = logging.getLogger(__name__)

# Google OAuth endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

CALENDAR_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class OAuthRequestError(Exception):
    """Token endpoint or userinfo request failed."""

    def __init__(self, message: str, status: Optional[int] = None, error: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.error = error

    @property
    def code(self) -> OAuthErrorCode:
        """Map the provider's OAuth ``error`` field onto our taxonomy."""
        if self.status is None:
            return OAuthErrorCode.NETWORK_ERROR
        try:
            return OAuthErrorCode(self.error)
        except ValueError:
            return OAuthErrorCode.TOKEN_EXCHANGE_FAILED


def get_oauth_client_credentials() -> tuple[str, str]:
    """Client id/secret from configuration."""
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        raise ValueError("Google OAuth client is not configured")
    return settings.google_client_id, settings.google_client_secret


def build_auth_url(
    client_id: str,
    redirect_uri: str,
    state: str,
    scopes: Optional[list[str]] = None,
    login_hint: Optional[str] = None,
    prompt: str = "consent",
) -> str:
    """Build Google OAuth authorization URL requesting offline access."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes or CALENDAR_SCOPES),
        "access_type": "offline",
        "include_granted_scopes": "true",
        "state": state,
        "prompt": prompt,
    }

    if login_hint:
        params["login_hint"] = login_hint

    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def _error_from_response(response: httpx.Response, what: str) -> OAuthRequestError:
    error = None
    try:
        error = response.json().get("error")
    except ValueError:
        pass
    return OAuthRequestError(
        f"{what} failed: HTTP {response.status_code} {response.text}",
        status=response.status_code,
        error=error,
    )


async def _post_token_endpoint(data: dict, what: str) -> dict:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(GOOGLE_TOKEN_URL, data=data)
    except httpx.HTTPError as e:
        logger.error(f"{what} request error: {e}")
        raise OAuthRequestError(f"{what} failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"{what} failed: {response.text}")
        raise _error_from_response(response, what)

    return response.json()


async def exchange_code_for_tokens(code: str, redirect_uri: str) -> dict:
    """Exchange authorization code for tokens."""
    client_id, client_secret = get_oauth_client_credentials()
    return await _post_token_endpoint(
        {
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
        "Token exchange",
    )


async def refresh_access_token(refresh_token: str) -> dict:
    """Refresh an access token."""
    client_id, client_secret = get_oauth_client_credentials()
    return await _post_token_endpoint(
        {
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "refresh_token",
        },
        "Token refresh",
    )


async def get_user_info(access_token: str) -> dict:
    """Get the Google account's email and id."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
    except httpx.HTTPError as e:
        raise OAuthRequestError(f"User info request failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"Failed to get user info: {response.text}")
        raise _error_from_response(response, "User info request")

    return response.json()
