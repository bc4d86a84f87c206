"""One-shot OAuth handshake that establishes a calendar connection.

``awaiting_code -> exchanging -> connected | failed``

The ``state`` parameter carries ``{user_id, redirect_url}`` through Google's
redirect as URL-safe base64 JSON. It is signed with the session secret and
expires, so a callback can only bind tokens to the user who started the flow.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from enum import Enum
from typing import Optional

import aiosqlite
from pydantic import BaseModel

from calsync import connections as connection_store
from calsync.auth.google import (
    OAuthRequestError,
    build_auth_url,
    exchange_code_for_tokens,
    get_oauth_client_credentials,
    get_user_info,
)
from calsync.config import get_oauth_redirect_uri, get_session_secret, get_settings
from calsync.errors import OAuthErrorCode

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 10 * 60

# Codes the callback page may report; anything else is folded into these.
CALLBACK_ERROR_CODES = {
    OAuthErrorCode.ACCESS_DENIED,
    OAuthErrorCode.INVALID_SCOPE,
    OAuthErrorCode.INVALID_CLIENT,
    OAuthErrorCode.TOKEN_EXCHANGE_FAILED,
    OAuthErrorCode.MISSING_PARAMS,
    OAuthErrorCode.INVALID_STATE,
}


class HandshakeState(str, Enum):
    AWAITING_CODE = "awaiting_code"
    EXCHANGING = "exchanging"
    CONNECTED = "connected"
    FAILED = "failed"


class InvalidStateError(ValueError):
    """The callback's state parameter is malformed, forged or expired."""


class StateData(BaseModel):
    user_id: int
    redirect_url: Optional[str] = None
    issued_at: int


class HandshakeOutcome(BaseModel):
    state: HandshakeState
    error: Optional[OAuthErrorCode] = None
    connection_id: Optional[int] = None
    redirect_url: Optional[str] = None

    @property
    def message(self) -> dict:
        """What the popup posts to its opener window."""
        if self.state == HandshakeState.CONNECTED:
            return {"type": "calendar-success"}
        return {"type": "calendar-error", "error": self.error.value if self.error else None}


def _sign(payload: bytes) -> str:
    return hmac.new(get_session_secret().encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _is_allowed_redirect(redirect_url: Optional[str]) -> bool:
    if not redirect_url:
        return True
    if redirect_url.startswith("/") and not redirect_url.startswith("//"):
        return True
    return redirect_url.startswith(get_settings().public_url.rstrip("/") + "/")


def encode_state(user_id: int, redirect_url: Optional[str] = None, issued_at: Optional[int] = None) -> str:
    """Opaque state token for the authorization redirect."""
    if not _is_allowed_redirect(redirect_url):
        raise ValueError(f"Redirect URL not allowed: {redirect_url}")

    data = {
        "user_id": user_id,
        "redirect_url": redirect_url,
        "issued_at": issued_at if issued_at is not None else int(time.time()),
    }
    body = json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")
    envelope = {"data": data, "sig": _sign(body)}
    return base64.urlsafe_b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")


def decode_state(state: str) -> StateData:
    """Decode and validate a state token, raising :class:`InvalidStateError`."""
    try:
        envelope = json.loads(base64.urlsafe_b64decode(state.encode("ascii")))
        data = envelope["data"]
        signature = envelope["sig"]
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
        raise InvalidStateError("Malformed state") from e

    body = json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")
    if not isinstance(signature, str) or not hmac.compare_digest(signature, _sign(body)):
        raise InvalidStateError("State signature mismatch")

    try:
        parsed = StateData.model_validate(data)
    except ValueError as e:
        raise InvalidStateError("State payload invalid") from e

    if time.time() - parsed.issued_at > STATE_TTL_SECONDS:
        raise InvalidStateError("State expired")
    if not _is_allowed_redirect(parsed.redirect_url):
        raise InvalidStateError("Redirect URL not allowed")

    return parsed


def build_connect_url(user_id: int, redirect_url: Optional[str] = None) -> str:
    """Authorization URL that starts a handshake for ``user_id``."""
    client_id, _ = get_oauth_client_credentials()
    return build_auth_url(
        client_id=client_id,
        redirect_uri=get_oauth_redirect_uri(),
        state=encode_state(user_id, redirect_url),
        prompt="consent",
    )


def map_provider_error(error: str) -> OAuthErrorCode:
    """Map Google's ``error`` query parameter onto the callback taxonomy."""
    try:
        code = OAuthErrorCode(error)
    except ValueError:
        return OAuthErrorCode.ACCESS_DENIED
    return code if code in CALLBACK_ERROR_CODES else OAuthErrorCode.ACCESS_DENIED


class OAuthHandshake:
    """Drives a single callback through the handshake state machine."""

    def __init__(self):
        self.state = HandshakeState.AWAITING_CODE
        self.redirect_url: Optional[str] = None

    def _fail(self, code: OAuthErrorCode) -> HandshakeOutcome:
        self.state = HandshakeState.FAILED
        if code not in CALLBACK_ERROR_CODES:
            code = OAuthErrorCode.TOKEN_EXCHANGE_FAILED
        return HandshakeOutcome(state=self.state, error=code, redirect_url=self.redirect_url)

    async def complete(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> HandshakeOutcome:
        """Validate the callback, exchange the code and upsert the connection."""
        if self.state != HandshakeState.AWAITING_CODE:
            raise RuntimeError(f"Handshake already {self.state.value}")

        if error:
            logger.warning(f"OAuth provider returned error: {error}")
            return self._fail(map_provider_error(error))

        if not code or not state:
            logger.warning("OAuth callback missing code or state")
            return self._fail(OAuthErrorCode.MISSING_PARAMS)

        try:
            state_data = decode_state(state)
        except InvalidStateError as e:
            logger.warning(f"Rejected OAuth state: {e}")
            return self._fail(OAuthErrorCode.INVALID_STATE)

        self.redirect_url = state_data.redirect_url
        self.state = HandshakeState.EXCHANGING

        try:
            tokens = await exchange_code_for_tokens(code, get_oauth_redirect_uri())
        except OAuthRequestError as e:
            return self._fail(e.code)
        except ValueError as e:
            logger.error(f"OAuth client misconfigured: {e}")
            return self._fail(OAuthErrorCode.INVALID_CLIENT)

        access_token = tokens.get("access_token")
        if not access_token:
            return self._fail(OAuthErrorCode.TOKEN_EXCHANGE_FAILED)

        provider_email = None
        provider_account_id = None
        try:
            user_info = await get_user_info(access_token)
            provider_email = user_info.get("email")
            provider_account_id = user_info.get("id")
        except OAuthRequestError as e:
            logger.warning(f"Could not fetch Google account info: {e}")

        try:
            connection = await connection_store.upsert_connection(
                user_id=state_data.user_id,
                provider="google",
                provider_email=provider_email,
                provider_account_id=provider_account_id,
                access_token=access_token,
                refresh_token=tokens.get("refresh_token"),
                expires_in=tokens.get("expires_in"),
            )
        except aiosqlite.IntegrityError as e:
            logger.warning(f"State refers to unknown user {state_data.user_id}: {e}")
            return self._fail(OAuthErrorCode.INVALID_STATE)

        self.state = HandshakeState.CONNECTED
        logger.info(f"Google Calendar connected for user {state_data.user_id} ({provider_email})")
        return HandshakeOutcome(
            state=self.state,
            connection_id=connection.id,
            redirect_url=self.redirect_url,
        )
