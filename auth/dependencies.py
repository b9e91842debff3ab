"""
auth/dependencies.py -- Security context resolver and FastAPI Depends() helpers.

Two independent ways to learn who the caller is:

  load_principal(request)
      Reads the Authorization header itself and awaits the shared
      TokenVerifier. Soft: returns None on any token failure, never raises.
      get_current_principal() and get_current_user() build on it.

  require_principal(request)
      Reads the Principal the trust gate (auth/gate.py) attached to
      request.state. Raises 401 if the gate attached none.

Both paths go through the same TokenVerifier, so they agree on every token.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import Credential, Principal
from auth.verifier import TokenVerifier, bearer_token

_UNAUTHORIZED_DETAIL = {"code": "unauthorized", "message": "Authentication required."}


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=_UNAUTHORIZED_DETAIL,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def load_principal(request: Request) -> Principal | None:
    """Resolve the request's bearer token into a Principal.

    Returns None when the header is missing, not a Bearer credential, or the
    token fails verification. Never raises for token problems.
    """
    verifier: TokenVerifier = request.app.state.token_verifier
    token = bearer_token(request.headers.get("Authorization"))
    return await verifier.try_verify(token)


async def get_current_principal(request: Request) -> Principal:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = await load_principal(request)
    if principal is None:
        raise _unauthorized()
    return principal


async def get_current_user(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> Credential:
    """Require a valid bearer token whose subject is an existing, active account."""
    credential = await request.app.state.auth_store.get_by_id(principal.subject)
    if credential is None or not credential.is_active:
        raise _unauthorized()
    return credential


def require_principal(request: Request) -> Principal:
    """Require the Principal attached by the trust gate. Raises HTTP 401 if absent."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise _unauthorized()
    return principal
