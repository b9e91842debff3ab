"""
auth/verifier.py -- Shared bearer token verification.

The trust gate (auth/gate.py) and the security context resolver
(auth/dependencies.py) both turn a bearer token into a Principal. They call
the same TokenVerifier so the two paths can never disagree about what a
valid token is.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import InvalidToken, InvalidTwoFactorChallenge, TokenError
from auth.models import Principal
from auth.tokens import SCOPE_TWO_FACTOR_PENDING, TokenCodec

logger = logging.getLogger("feedbackauth.auth")

_BEARER_PREFIX = "Bearer "


def bearer_token(header_value: str | None) -> str | None:
    """Return the token from an Authorization header value, or None.

    Only the exact "Bearer " scheme prefix is accepted. An empty token after
    the prefix counts as absent.
    """
    if not header_value or not header_value.startswith(_BEARER_PREFIX):
        return None
    token = header_value[len(_BEARER_PREFIX):].strip()
    return token or None


class TokenVerifier:
    """Resolves a bearer token into a Principal.

    verify() is a coroutine so callers on the request path always await it;
    the work itself is a signature check and never blocks on I/O.
    """

    def __init__(self, codec: TokenCodec) -> None:
        self._codec = codec

    @property
    def codec(self) -> TokenCodec:
        return self._codec

    async def verify(self, token: str) -> Principal:
        """Return the Principal for a session token.

        Raises MalformedToken, InvalidToken or ExpiredToken describing the
        first check that failed. A correctly signed token that carries a
        scope (a two-factor challenge) is not a session and raises
        InvalidToken.
        """
        subject = self._codec.extract_subject(token)
        if not self._codec.is_valid(token, subject):
            # Re-run the full check to surface the specific reason.
            self._codec.validate_and_extract(token)
        if self._codec.validate_claims(token).get("scope") is not None:
            raise InvalidToken("Token is not a session token.")
        return Principal(subject=subject)

    async def try_verify(self, token: str | None) -> Principal | None:
        """verify() that degrades to None instead of raising."""
        if not token:
            return None
        try:
            return await self.verify(token)
        except TokenError as exc:
            logger.debug("Bearer token rejected: %s", exc.code)
            return None

    async def verify_challenge(self, token: str) -> Principal:
        """Return the Principal for a two-factor challenge token.

        Only tokens issued by a successful password step (scope=2fa_pending)
        pass. Any other token, including a valid session token, raises
        InvalidTwoFactorChallenge.
        """
        try:
            claims = self._codec.validate_claims(token)
        except TokenError as exc:
            logger.debug("Two-factor challenge rejected: %s", exc.code)
            raise InvalidTwoFactorChallenge() from exc
        if claims.get("scope") != SCOPE_TWO_FACTOR_PENDING:
            raise InvalidTwoFactorChallenge()
        return Principal(subject=claims["sub"])
