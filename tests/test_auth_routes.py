"""Tests for the connect/callback routes and session handling."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from calsync.auth.handshake import decode_state, encode_state
from calsync.auth.session import (
    SESSION_COOKIE_NAME,
    User,
    create_or_update_user,
    create_session_token,
    get_current_user,
    verify_session_token,
)


def _request(path: str, cookies: dict | None = None) -> Request:
    headers = []
    if cookies:
        cookie = "; ".join(f"{key}={value}" for key, value in cookies.items())
        headers.append((b"cookie", cookie.encode()))
    return Request({"type": "http", "method": "GET", "path": path, "headers": headers})


@pytest.mark.asyncio
async def test_connect_returns_authorization_url():
    from calsync.auth.routes import connect_calendar

    response = await connect_calendar(redirect_url="/app/settings", user=User(id=3, email="host@example.com"))

    query = parse_qs(urlparse(response["url"]).query)
    assert decode_state(query["state"][0]).user_id == 3


@pytest.mark.asyncio
async def test_connect_refuses_foreign_redirect():
    from calsync.auth.routes import connect_calendar

    with pytest.raises(HTTPException) as exc_info:
        await connect_calendar(redirect_url="https://evil.example.com", user=User(id=3, email="host@example.com"))

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_callback_error_page_posts_error_to_opener():
    from calsync.auth.routes import oauth_callback

    response = await oauth_callback(_request("/auth/google/callback"), code=None, state=None, error="access_denied")

    body = response.body.decode()
    assert response.status_code == 200
    assert "calendar-error" in body
    assert "access_denied" in body
    assert "window.opener.postMessage" in body


@pytest.mark.asyncio
async def test_callback_success_starts_initial_sync(test_db, monkeypatch):
    from calsync.auth import routes

    user = await create_or_update_user("host@example.com", "Host")

    async def fake_exchange(_code, _redirect_uri):
        return {"access_token": "access", "refresh_token": "refresh", "expires_in": 3600}

    async def fake_user_info(_access_token):
        return {"id": "acct", "email": "host@gmail.com"}

    synced = []

    async def fake_sync(user_id, connection_id=None):
        synced.append((user_id, connection_id))
        return []

    scheduled = []
    monkeypatch.setattr("calsync.auth.handshake.exchange_code_for_tokens", fake_exchange)
    monkeypatch.setattr("calsync.auth.handshake.get_user_info", fake_user_info)
    monkeypatch.setattr(routes, "sync_user_connections", fake_sync)
    monkeypatch.setattr(routes, "create_background_task", lambda coro, name: scheduled.append((coro, name)))

    response = await routes.oauth_callback(
        _request("/auth/google/callback"), code="code", state=encode_state(user.id), error=None
    )

    assert "calendar-success" in response.body.decode()
    coro, name = scheduled[0]
    assert name.startswith("initial_sync_")
    await coro
    assert synced and synced[0][0] == user.id


def test_session_token_round_trip():
    token = create_session_token(5, "host@example.com")

    session = verify_session_token(token)

    assert session.user_id == 5
    assert verify_session_token(token + "x") is None


@pytest.mark.asyncio
async def test_current_user_from_cookie_or_bearer(test_db):
    user = await create_or_update_user("host@example.com", "Host")
    token = create_session_token(user.id, user.email)

    from_cookie = await get_current_user(_request("/api", {SESSION_COOKIE_NAME: token}))
    assert from_cookie.id == user.id

    bearer = Request({
        "type": "http", "method": "GET", "path": "/api",
        "headers": [(b"authorization", f"Bearer {token}".encode())],
    })
    assert (await get_current_user(bearer)).email == "host@example.com"

    with pytest.raises(HTTPException) as exc_info:
        await get_current_user(_request("/api"))
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_create_or_update_user_is_keyed_by_email(test_db):
    first = await create_or_update_user("host@example.com", "Host")
    second = await create_or_update_user("host@example.com", None)
    renamed = await create_or_update_user("host@example.com", "Host Person")

    assert first.id == second.id == renamed.id
    assert second.display_name == "Host"
    assert renamed.display_name == "Host Person"
