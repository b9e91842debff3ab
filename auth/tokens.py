"""
auth/tokens.py -- Bearer token codec, password hashing and code hashing.

Security design decisions:
  JWT: python-jose with HS256. Session tokens carry only the subject (user
       id), iat and exp. Nothing is stored server-side -- a token is valid
       purely on signature and expiry.

       A password login on an account with two-factor enabled gets a short
       lived token with scope=2fa_pending instead. It proves the password step
       and is accepted only by POST /auth/2fa/verify; TokenVerifier refuses
       any scoped token as a session.

       Expiry is checked against the injected clock rather than by jose, so
       every verification is a deterministic function of (token, key, now).
       The trust gate and the security context resolver both verify the same
       token independently and must agree.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an identifier exists [C1].

  Backup codes: HMAC-SHA256(SECRET_KEY, code). Deterministic so the store can
       delete a code with one indexed conditional DELETE, and useless to an
       attacker who reads the DB without also knowing SECRET_KEY.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import ExpiredToken, InvalidToken, MalformedToken, TokenError
from core.clock import Clock, system_clock

if TYPE_CHECKING:
    from auth.models import Credential
    from auth.store import AuthStore
    from core.config import Settings

logger = logging.getLogger("feedbackauth.auth")

_ALGORITHM = "HS256"

SCOPE_TWO_FACTOR_PENDING = "2fa_pending"

# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Creates and verifies signed, time-bounded bearer tokens.

    Holds no mutable state after construction, so one instance is shared by
    every request.

    Usage:
        codec = TokenCodec(secret_key, lifetime_seconds=3600)
        token = codec.issue(user_id)
        codec.validate_and_extract(token)  # -> user_id
    """

    def __init__(
        self,
        secret_key: str,
        lifetime_seconds: int = 3600,
        clock: Clock = system_clock,
        algorithm: str = _ALGORITHM,
    ) -> None:
        self._secret_key = secret_key
        self._lifetime = timedelta(seconds=lifetime_seconds)
        self._clock = clock
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = system_clock) -> TokenCodec:
        return cls(settings.secret_key, lifetime_seconds=settings.token_expire_seconds, clock=clock)

    @property
    def lifetime_seconds(self) -> int:
        return int(self._lifetime.total_seconds())

    def issue(
        self,
        subject: str,
        claims: dict[str, Any] | None = None,
        lifetime_seconds: int | None = None,
    ) -> str:
        """Encode a signed token for subject that expires one lifetime from now.

        Extra claims may be embedded but never override sub, iat or exp.
        lifetime_seconds overrides the codec lifetime for this token only.
        """
        now = self._clock()
        lifetime = self._lifetime if lifetime_seconds is None else timedelta(seconds=lifetime_seconds)
        payload: dict[str, Any] = dict(claims or {})
        payload.update(
            {
                "sub": subject,
                "iat": int(now.timestamp()),
                "exp": int((now + lifetime).timestamp()),
            }
        )
        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        logger.debug("Issued token for subject %s (expires in %ds)", subject, int(lifetime.total_seconds()))
        return token

    def extract_subject(self, token: str) -> str:
        """Return the subject of a correctly signed token without checking expiry.

        Raises MalformedToken if the token cannot be parsed, the signature does
        not verify, or the subject claim is missing.
        """
        try:
            claims = self._decode(token)
        except InvalidToken as exc:
            raise MalformedToken(str(exc)) from exc
        return claims["sub"]

    def is_valid(self, token: str, expected_subject: str) -> bool:
        """True iff the signature verifies, the token is unexpired and sub matches."""
        try:
            return self.validate_and_extract(token) == expected_subject
        except TokenError:
            return False

    def validate_and_extract(self, token: str) -> str:
        """Fully verify a token and return its subject.

        Raises:
            MalformedToken: not a JWT, or claims are missing or mistyped.
            InvalidToken:   signature does not verify with our key.
            ExpiredToken:   now >= exp.
        """
        return self.validate_claims(token)["sub"]

    def validate_claims(self, token: str) -> dict[str, Any]:
        """validate_and_extract() that returns every claim, not only sub."""
        claims = self._decode(token)
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise MalformedToken("Token has no expiry.")
        if self._clock().timestamp() >= exp:
            raise ExpiredToken()
        return claims

    def _decode(self, token: str) -> dict[str, Any]:
        # Structure first, so a garbage string is reported as malformed rather
        # than as a signature failure.
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken() from exc

        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise MalformedToken(str(exc)) from exc
        except JWTError as exc:
            raise InvalidToken() from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise MalformedToken("Token has no subject.")
        return claims


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


_BCRYPT_MAX_BYTES = 72


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes. Newer bcrypt releases raise on
    longer input, so the encoded password is cut to that length here.
    """
    return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("feedbackauth_timing_dummy")


async def authenticate_user(store: AuthStore, identifier: str, password: str) -> Credential | None:
    """Authenticate an email-or-contact / password pair with timing equalization.

    Always runs bcrypt whether or not the account exists, so an attacker
    cannot enumerate identifiers from response times. bcrypt is CPU-bound and
    runs in a worker thread to keep the event loop free.

    Returns the Credential on success, None on any failure.
    """
    credential = await store.get_by_identifier(identifier)
    if credential is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        await asyncio.to_thread(verify_password, password, _DUMMY_HASH)
        return None
    if not await asyncio.to_thread(verify_password, password, credential.hashed_password):
        return None
    if not credential.is_active:
        return None
    return credential


# ---------------------------------------------------------------------------
# Backup code hashing
# ---------------------------------------------------------------------------


def hash_secret_code(raw_code: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, normalized code) as a hex string.

    Codes are compared case-insensitively, so they are upper-cased before
    hashing.
    """
    return hmac.new(
        secret_key.encode(),
        raw_code.strip().upper().encode(),
        hashlib.sha256,
    ).hexdigest()
