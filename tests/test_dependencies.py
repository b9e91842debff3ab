"""
tests/test_dependencies.py -- Tests for the security context resolver.

Covers:
  - load_principal on a bare Request: success, missing header, bad token
  - GET /api/v1/auth/me (resolver path) and GET /api/v1/account/identity
    (gate path) accept and reject exactly the same tokens

Fixtures used (from conftest.py):
  - api_client: (client, token, uid)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from api.main import app, settings
from auth.dependencies import load_principal
from auth.tokens import SCOPE_TWO_FACTOR_PENDING, TokenCodec
from auth.verifier import TokenVerifier

SECRET = "d" * 48


def _request(verifier: TokenVerifier, authorization: str | None) -> Request:
    headers = [(b"authorization", authorization.encode())] if authorization is not None else []
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": headers,
        "app": SimpleNamespace(state=SimpleNamespace(token_verifier=verifier)),
    }
    return Request(scope)


# ---------------------------------------------------------------------------
# load_principal
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_load_principal_valid_token(clock) -> None:
    codec = TokenCodec(SECRET, clock=clock)
    principal = await load_principal(_request(TokenVerifier(codec), f"Bearer {codec.issue('user-9')}"))
    assert principal is not None
    assert principal.subject == "user-9"
    assert principal.authorities == ()


@pytest.mark.asyncio
@pytest.mark.parametrize("authorization", [None, "", "Basic abc", "Bearer not-a-token"])
async def test_load_principal_degrades_to_none(clock, authorization) -> None:
    codec = TokenCodec(SECRET, clock=clock)
    assert await load_principal(_request(TokenVerifier(codec), authorization)) is None


@pytest.mark.asyncio
async def test_load_principal_expired_token(clock) -> None:
    codec = TokenCodec(SECRET, lifetime_seconds=60, clock=clock)
    token = codec.issue("user-9")
    clock.advance(seconds=61)
    assert await load_principal(_request(TokenVerifier(codec), f"Bearer {token}")) is None


# ---------------------------------------------------------------------------
# Resolver and gate agree
# ---------------------------------------------------------------------------


def _token_cases(uid: str) -> dict[str, tuple[str | None, bool]]:
    """name -> (Authorization header, should authenticate)."""
    live = app.state.token_codec.issue(uid)
    past = datetime.now(timezone.utc) - timedelta(hours=3)
    expired = TokenCodec(settings.secret_key, lifetime_seconds=3600, clock=lambda: past).issue(uid)
    foreign = TokenCodec("x" * 48).issue(uid)
    challenge = app.state.token_codec.issue(uid, claims={"scope": SCOPE_TWO_FACTOR_PENDING})
    return {
        "valid": (f"Bearer {live}", True),
        "expired": (f"Bearer {expired}", False),
        "foreign_signature": (f"Bearer {foreign}", False),
        "two_factor_challenge": (f"Bearer {challenge}", False),
        "garbage": ("Bearer garbage", False),
        "wrong_scheme": (f"Token {live}", False),
        "missing": (None, False),
    }


@pytest.mark.parametrize(
    "case",
    ["valid", "expired", "foreign_signature", "two_factor_challenge", "garbage", "wrong_scheme", "missing"],
)
def test_resolver_and_gate_agree(api_client: tuple[TestClient, str, str], case: str) -> None:
    client, _token, uid = api_client
    header, should_authenticate = _token_cases(uid)[case]
    headers = {"Authorization": header} if header is not None else {}

    via_resolver = client.get("/api/v1/auth/me", headers=headers)
    via_gate = client.get("/api/v1/account/identity", headers=headers)

    expected = 200 if should_authenticate else 401
    assert via_resolver.status_code == expected, via_resolver.text
    assert via_gate.status_code == expected, via_gate.text
    if should_authenticate:
        assert via_resolver.json()["user_id"] == uid
        assert via_gate.json() == {"subject": uid, "authorities": []}


def test_unauthenticated_response_shape(api_client: tuple[TestClient, str, str]) -> None:
    client, _token, _uid = api_client
    resp = client.get("/api/v1/account/identity")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"
    assert resp.headers["WWW-Authenticate"] == "Bearer"
