"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - issue / validate_and_extract round trip and determinism
  - expiry: checked by validate_and_extract and is_valid, ignored by extract_subject
  - error classification: malformed vs invalid signature vs expired
  - password hashing and timing-equalized authenticate_user
  - backup code hashing normalization
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import ExpiredToken, InvalidToken, MalformedToken
from auth.store import AuthStore
from auth.tokens import (
    TokenCodec,
    authenticate_user,
    hash_password,
    hash_secret_code,
    verify_password,
)

SECRET = "k" * 48
OTHER_SECRET = "z" * 48


@pytest.fixture
def codec(clock) -> TokenCodec:
    return TokenCodec(SECRET, lifetime_seconds=3600, clock=clock)


# ---------------------------------------------------------------------------
# Issue and validate
# ---------------------------------------------------------------------------


class TestIssue:
    def test_round_trip_returns_subject(self, codec: TokenCodec) -> None:
        token = codec.issue("user-1")
        assert codec.validate_and_extract(token) == "user-1"
        assert codec.extract_subject(token) == "user-1"
        assert codec.is_valid(token, "user-1")

    def test_expiry_is_issue_time_plus_lifetime(self, codec: TokenCodec, clock) -> None:
        claims = jwt.get_unverified_claims(codec.issue("user-1"))
        assert claims["exp"] - claims["iat"] == 3600
        assert claims["iat"] == int(clock().timestamp())

    def test_same_inputs_same_token(self, clock) -> None:
        first = TokenCodec(SECRET, clock=clock).issue("user-1")
        second = TokenCodec(SECRET, clock=clock).issue("user-1")
        assert first == second

    def test_extra_claims_cannot_override_subject(self, codec: TokenCodec) -> None:
        token = codec.issue("user-1", claims={"sub": "admin", "scope": "read"})
        claims = jwt.get_unverified_claims(token)
        assert claims["sub"] == "user-1"
        assert claims["scope"] == "read"

    def test_wrong_expected_subject_is_invalid(self, codec: TokenCodec) -> None:
        assert not codec.is_valid(codec.issue("user-1"), "user-2")

    def test_lifetime_override_applies_to_one_token(self, codec: TokenCodec, clock) -> None:
        short = codec.issue("user-1", claims={"scope": "2fa_pending"}, lifetime_seconds=300)
        claims = codec.validate_claims(short)
        assert claims["exp"] - claims["iat"] == 300
        assert claims["scope"] == "2fa_pending"

        normal = codec.issue("user-1")
        clock.advance(seconds=300)
        with pytest.raises(ExpiredToken):
            codec.validate_claims(short)
        assert codec.validate_and_extract(normal) == "user-1"


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpiry:
    def test_valid_one_second_before_expiry(self, codec: TokenCodec, clock) -> None:
        token = codec.issue("user-1")
        clock.advance(seconds=3599)
        assert codec.validate_and_extract(token) == "user-1"

    def test_expired_at_exact_expiry(self, codec: TokenCodec, clock) -> None:
        token = codec.issue("user-1")
        clock.advance(seconds=3600)
        with pytest.raises(ExpiredToken):
            codec.validate_and_extract(token)
        assert not codec.is_valid(token, "user-1")

    def test_extract_subject_ignores_expiry(self, codec: TokenCodec, clock) -> None:
        token = codec.issue("user-1")
        clock.advance(days=30)
        assert codec.extract_subject(token) == "user-1"


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c", "Bearer xyz"])
    def test_garbage_is_malformed(self, codec: TokenCodec, garbage: str) -> None:
        with pytest.raises(MalformedToken):
            codec.validate_and_extract(garbage)
        with pytest.raises(MalformedToken):
            codec.extract_subject(garbage)
        assert not codec.is_valid(garbage, "user-1")

    def test_foreign_key_is_invalid_signature(self, codec: TokenCodec, clock) -> None:
        foreign = TokenCodec(OTHER_SECRET, clock=clock).issue("user-1")
        with pytest.raises(InvalidToken):
            codec.validate_and_extract(foreign)

    def test_foreign_key_fails_extract_subject_as_malformed(self, codec: TokenCodec, clock) -> None:
        foreign = TokenCodec(OTHER_SECRET, clock=clock).issue("user-1")
        with pytest.raises(MalformedToken):
            codec.extract_subject(foreign)

    def test_swapped_payload_is_invalid_signature(self, codec: TokenCodec) -> None:
        header, _, signature = codec.issue("user-1").split(".")
        _, forged_payload, _ = codec.issue("admin").split(".")
        # Same clock, so only sub differs between the two payloads.
        with pytest.raises(InvalidToken):
            codec.validate_and_extract(f"{header}.{forged_payload}.{signature}")

    def test_missing_subject_is_malformed(self, codec: TokenCodec, clock) -> None:
        exp = int((clock() + timedelta(hours=1)).timestamp())
        token = jwt.encode({"exp": exp}, SECRET, algorithm="HS256")
        with pytest.raises(MalformedToken):
            codec.validate_and_extract(token)

    def test_missing_expiry_is_malformed(self, codec: TokenCodec) -> None:
        token = jwt.encode({"sub": "user-1"}, SECRET, algorithm="HS256")
        with pytest.raises(MalformedToken):
            codec.validate_and_extract(token)
        # Structure and signature are fine, so the subject is still readable.
        assert codec.extract_subject(token) == "user-1"


# ---------------------------------------------------------------------------
# Passwords and codes
# ---------------------------------------------------------------------------


def test_password_hash_verifies() -> None:
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong-pass", hashed)


def test_verify_password_rejects_corrupt_hash() -> None:
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_secret_code_hash_is_case_and_space_insensitive() -> None:
    assert hash_secret_code(" ab12cd34 ", SECRET) == hash_secret_code("AB12CD34", SECRET)
    assert hash_secret_code("AB12CD34", SECRET) != hash_secret_code("AB12CD34", OTHER_SECRET)


@pytest.mark.asyncio
async def test_authenticate_user_by_email_and_contact(store: AuthStore, user_id: str) -> None:
    by_email = await authenticate_user(store, "alice@example.com", "alicepass123")
    by_contact = await authenticate_user(store, "+237690000001", "alicepass123")
    assert by_email is not None and by_email.id == user_id
    assert by_contact is not None and by_contact.id == user_id


@pytest.mark.asyncio
async def test_authenticate_user_failures_return_none(store: AuthStore, user_id: str) -> None:
    assert await authenticate_user(store, "alice@example.com", "wrong-password") is None
    assert await authenticate_user(store, "nobody@example.com", "alicepass123") is None
