"""
auth/gate.py -- Request trust gate (pure ASGI middleware).

Runs once per HTTP request, before routing:
  1. Path under a public prefix  -> pass through untouched.
  2. No "Authorization: Bearer"  -> pass through.
  3. Token fails verification    -> pass through (logged by TokenVerifier).
  4. Token verifies              -> attach a Principal for the rest of the
                                    request, then pass through.

The gate never rejects a request. Protected routes enforce authentication
with the dependencies in auth/dependencies.py.

The Principal is attached two ways:
  scope["state"]["principal"]  -- read as request.state.principal
  a ContextVar                 -- read with current_principal() from code
                                  that has no Request object
Both are scoped to the one request.

Written as raw ASGI rather than BaseHTTPMiddleware so the principal is set in
the same context the downstream app runs in.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextvars import ContextVar

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from auth.models import Principal
from auth.verifier import TokenVerifier, bearer_token
from core.config import get_settings

logger = logging.getLogger("feedbackauth.gate")

_current_principal: ContextVar[Principal | None] = ContextVar("feedbackauth_principal", default=None)


def current_principal() -> Principal | None:
    """Return the Principal attached by the gate for the running request, if any."""
    return _current_principal.get()


class BearerTokenGate:
    """Attach the bearer token's Principal to each request that carries a valid one.

    Usage:
        app.add_middleware(BearerTokenGate)
        app.add_middleware(BearerTokenGate, public_prefixes=["/public/"], verifier=verifier)

    When verifier is omitted, app.state.token_verifier is used, which the
    application lifespan creates at startup.
    """

    def __init__(
        self,
        app: ASGIApp,
        public_prefixes: Sequence[str] | None = None,
        verifier: TokenVerifier | None = None,
    ) -> None:
        self.app = app
        if public_prefixes is None:
            public_prefixes = get_settings().public_path_prefixes
        self._public_prefixes = tuple(public_prefixes)
        self._verifier = verifier

    def is_public(self, path: str) -> bool:
        return path.startswith(self._public_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.is_public(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        token = bearer_token(Headers(scope=scope).get("authorization"))
        if token is None:
            await self.app(scope, receive, send)
            return

        principal = await self._resolve_verifier(scope).try_verify(token)
        if principal is None:
            await self.app(scope, receive, send)
            return

        scope.setdefault("state", {})["principal"] = principal
        reset = _current_principal.set(principal)
        try:
            await self.app(scope, receive, send)
        finally:
            _current_principal.reset(reset)

    def _resolve_verifier(self, scope: Scope) -> TokenVerifier:
        if self._verifier is not None:
            return self._verifier
        return scope["app"].state.token_verifier
