"""Tests for Google OAuth endpoint calls."""

from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from calsync.auth.google import (
    GOOGLE_TOKEN_URL,
    OAuthRequestError,
    exchange_code_for_tokens,
    get_user_info,
    refresh_access_token,
)
from calsync.errors import OAuthErrorCode


class FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeClient:
    def __init__(self, response: FakeResponse | Exception):
        self.response = response
        self.calls: list[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_args):
        return None

    async def _respond(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def post(self, *args, **kwargs):
        return await self._respond(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return await self._respond(*args, **kwargs)


def _install(monkeypatch, response) -> FakeClient:
    client = FakeClient(response)
    monkeypatch.setattr("calsync.auth.google.httpx.AsyncClient", lambda: client)
    return client


@pytest.mark.asyncio
async def test_exchange_posts_authorization_code(monkeypatch):
    client = _install(monkeypatch, FakeResponse(200, {"access_token": "a", "refresh_token": "r", "expires_in": 3599}))

    tokens = await exchange_code_for_tokens("code-1", "http://localhost:3000/auth/google/callback")

    assert tokens["refresh_token"] == "r"
    (url,), kwargs = client.calls[0]
    assert url == GOOGLE_TOKEN_URL
    assert kwargs["data"]["grant_type"] == "authorization_code"
    assert kwargs["data"]["client_id"] == "client.apps.googleusercontent.com"
    assert kwargs["data"]["code"] == "code-1"


@pytest.mark.asyncio
async def test_rejected_refresh_carries_provider_error_code(monkeypatch):
    _install(monkeypatch, FakeResponse(400, {"error": "invalid_grant"}, text='{"error": "invalid_grant"}'))

    with pytest.raises(OAuthRequestError) as exc_info:
        await refresh_access_token("revoked")

    assert exc_info.value.status == 400
    assert exc_info.value.code == OAuthErrorCode.INVALID_GRANT


@pytest.mark.asyncio
async def test_unknown_error_and_non_json_body(monkeypatch):
    _install(monkeypatch, FakeResponse(502, None, text="<html>bad gateway</html>"))

    with pytest.raises(OAuthRequestError) as exc_info:
        await exchange_code_for_tokens("code", "http://localhost:3000/auth/google/callback")

    assert exc_info.value.code == OAuthErrorCode.TOKEN_EXCHANGE_FAILED


@pytest.mark.asyncio
async def test_transport_failure_is_a_network_error(monkeypatch):
    _install(monkeypatch, httpx.ConnectError("connection refused"))

    with pytest.raises(OAuthRequestError) as exc_info:
        await refresh_access_token("refresh")

    assert exc_info.value.status is None
    assert exc_info.value.code == OAuthErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_user_info_sends_bearer_token(monkeypatch):
    client = _install(monkeypatch, FakeResponse(200, {"id": "1", "email": "host@gmail.com"}))

    info = await get_user_info("access-token")

    assert info["email"] == "host@gmail.com"
    _, kwargs = client.calls[0]
    assert kwargs["headers"] == {"Authorization": "Bearer access-token"}


@pytest.mark.asyncio
async def test_unconfigured_client_raises_value_error(monkeypatch):
    monkeypatch.setattr(
        "calsync.auth.google.get_settings",
        lambda: SimpleNamespace(google_client_id="", google_client_secret=""),
    )

    with pytest.raises(ValueError):
        await refresh_access_token("refresh")
