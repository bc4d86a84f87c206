"""Tests for the OAuth connect handshake."""

from __future__ import annotations

import base64
import json
import time
from urllib.parse import parse_qs, urlparse

import pytest

from calsync import connections as connection_store
from calsync.auth.google import OAuthRequestError
from calsync.auth.handshake import (
    HandshakeState,
    InvalidStateError,
    OAuthHandshake,
    build_connect_url,
    decode_state,
    encode_state,
)
from calsync.database import get_database
from calsync.errors import OAuthErrorCode


async def _insert_user(email: str = "host@example.com") -> int:
    db = await get_database()
    cursor = await db.execute(
        "INSERT INTO users (email, display_name) VALUES (?, ?) RETURNING id",
        (email, "Host"),
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["id"]


@pytest.fixture
def google_ok(monkeypatch):
    """Token exchange and userinfo succeed."""
    exchanged = []

    async def fake_exchange(code, redirect_uri):
        exchanged.append((code, redirect_uri))
        return {"access_token": f"access-{len(exchanged)}", "refresh_token": "refresh", "expires_in": 3600}

    async def fake_user_info(_access_token):
        return {"id": "google-acct-1", "email": "host@gmail.com"}

    monkeypatch.setattr("calsync.auth.handshake.exchange_code_for_tokens", fake_exchange)
    monkeypatch.setattr("calsync.auth.handshake.get_user_info", fake_user_info)
    return exchanged


def test_state_round_trip():
    state = encode_state(7, "/settings/calendar")

    decoded = decode_state(state)

    assert decoded.user_id == 7
    assert decoded.redirect_url == "/settings/calendar"


@pytest.mark.parametrize(
    "state",
    ["not-base64!!", base64.urlsafe_b64encode(b"[1, 2]").decode(), base64.urlsafe_b64encode(b"{}").decode()],
)
def test_malformed_state_is_rejected(state):
    with pytest.raises(InvalidStateError):
        decode_state(state)


def test_tampered_state_is_rejected():
    envelope = json.loads(base64.urlsafe_b64decode(encode_state(7)))
    envelope["data"]["user_id"] = 8
    forged = base64.urlsafe_b64encode(json.dumps(envelope).encode()).decode()

    with pytest.raises(InvalidStateError):
        decode_state(forged)


def test_expired_state_is_rejected():
    state = encode_state(7, issued_at=int(time.time()) - 3600)

    with pytest.raises(InvalidStateError):
        decode_state(state)


def test_foreign_redirect_url_is_refused():
    with pytest.raises(ValueError):
        encode_state(7, "https://evil.example.com/steal")
    with pytest.raises(ValueError):
        encode_state(7, "//evil.example.com/steal")

    assert decode_state(encode_state(7, "http://localhost:3000/app")).redirect_url == "http://localhost:3000/app"


def test_connect_url_requests_offline_calendar_access():
    url = build_connect_url(7, "/app")

    query = parse_qs(urlparse(url).query)
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["redirect_uri"] == ["http://localhost:3000/auth/google/callback"]
    assert "https://www.googleapis.com/auth/calendar.events" in query["scope"][0]
    assert decode_state(query["state"][0]).user_id == 7


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("provider_error", "expected"),
    [
        ("access_denied", OAuthErrorCode.ACCESS_DENIED),
        ("invalid_scope", OAuthErrorCode.INVALID_SCOPE),
        ("invalid_client", OAuthErrorCode.INVALID_CLIENT),
        ("server_error", OAuthErrorCode.ACCESS_DENIED),
    ],
)
async def test_provider_error_is_mapped(provider_error, expected):
    outcome = await OAuthHandshake().complete(code=None, state=None, error=provider_error)

    assert outcome.state == HandshakeState.FAILED
    assert outcome.error == expected
    assert outcome.message == {"type": "calendar-error", "error": expected.value}


@pytest.mark.asyncio
async def test_missing_code_or_state():
    outcome = await OAuthHandshake().complete(code="abc", state=None)

    assert outcome.error == OAuthErrorCode.MISSING_PARAMS


@pytest.mark.asyncio
async def test_undecodable_state(google_ok):
    outcome = await OAuthHandshake().complete(code="abc", state="garbage")

    assert outcome.error == OAuthErrorCode.INVALID_STATE
    assert google_ok == []


@pytest.mark.asyncio
async def test_successful_handshake_creates_connection(test_db, google_ok):
    user_id = await _insert_user()
    handshake = OAuthHandshake()

    outcome = await handshake.complete(code="auth-code", state=encode_state(user_id, "/app"))

    assert outcome.state == HandshakeState.CONNECTED
    assert handshake.state == HandshakeState.CONNECTED
    assert outcome.message == {"type": "calendar-success"}
    assert outcome.redirect_url == "/app"
    assert google_ok == [("auth-code", "http://localhost:3000/auth/google/callback")]

    connection = await connection_store.get_connection(outcome.connection_id, user_id=user_id)
    assert connection.provider_email == "host@gmail.com"
    assert connection.provider_account_id == "google-acct-1"
    assert connection.access_token == "access-1"
    assert connection.refresh_token == "refresh"
    assert connection.has_fresh_token()


@pytest.mark.asyncio
async def test_reconnect_updates_the_existing_connection(test_db, google_ok):
    user_id = await _insert_user()

    first = await OAuthHandshake().complete(code="one", state=encode_state(user_id))
    second = await OAuthHandshake().complete(code="two", state=encode_state(user_id))

    assert first.connection_id == second.connection_id
    connections = await connection_store.list_connections_for_user(user_id)
    assert len(connections) == 1
    assert connections[0].access_token == "access-2"


@pytest.mark.asyncio
async def test_exchange_failure_codes(test_db, monkeypatch):
    user_id = await _insert_user()

    async def rejected(_code, _redirect_uri):
        raise OAuthRequestError("Token exchange failed", status=400, error="invalid_grant")

    monkeypatch.setattr("calsync.auth.handshake.exchange_code_for_tokens", rejected)
    outcome = await OAuthHandshake().complete(code="abc", state=encode_state(user_id))
    assert outcome.error == OAuthErrorCode.TOKEN_EXCHANGE_FAILED

    async def bad_client(_code, _redirect_uri):
        raise OAuthRequestError("Token exchange failed", status=401, error="invalid_client")

    monkeypatch.setattr("calsync.auth.handshake.exchange_code_for_tokens", bad_client)
    outcome = await OAuthHandshake().complete(code="abc", state=encode_state(user_id))
    assert outcome.error == OAuthErrorCode.INVALID_CLIENT

    async def offline(_code, _redirect_uri):
        raise OAuthRequestError("Token exchange failed: connection reset")

    monkeypatch.setattr("calsync.auth.handshake.exchange_code_for_tokens", offline)
    outcome = await OAuthHandshake().complete(code="abc", state=encode_state(user_id))
    assert outcome.error == OAuthErrorCode.TOKEN_EXCHANGE_FAILED

    assert await connection_store.list_connections_for_user(user_id) == []


@pytest.mark.asyncio
async def test_userinfo_failure_still_connects(test_db, google_ok, monkeypatch):
    user_id = await _insert_user()

    async def broken_user_info(_access_token):
        raise OAuthRequestError("User info request failed", status=500)

    monkeypatch.setattr("calsync.auth.handshake.get_user_info", broken_user_info)

    outcome = await OAuthHandshake().complete(code="abc", state=encode_state(user_id))

    assert outcome.state == HandshakeState.CONNECTED
    connection = await connection_store.get_connection(outcome.connection_id)
    assert connection.provider_email is None


@pytest.mark.asyncio
async def test_state_for_unknown_user_is_invalid(test_db, google_ok):
    outcome = await OAuthHandshake().complete(code="abc", state=encode_state(999))

    assert outcome.error == OAuthErrorCode.INVALID_STATE


@pytest.mark.asyncio
async def test_handshake_is_single_use(test_db, google_ok):
    handshake = OAuthHandshake()
    await handshake.complete(code=None, state=None, error="access_denied")

    with pytest.raises(RuntimeError):
        await handshake.complete(code="abc", state="def")
