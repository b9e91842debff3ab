"""
api/routes/v1/auth.py -- Authentication and credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create account; returns bearer token
  POST /api/v1/auth/login                   -- password login; token or 2FA challenge
  GET  /api/v1/auth/me                      -- current account info (requires auth)
  POST /api/v1/auth/logout                  -- stateless; client discards its token
  POST /api/v1/auth/password-reset/request  -- issue a reset token (generic answer)
  POST /api/v1/auth/password-reset/confirm  -- consume a reset token, set password
  POST /api/v1/auth/2fa/enable              -- enroll TOTP + backup codes (requires auth)
  POST /api/v1/auth/2fa/disable             -- remove second factor (requires auth)
  POST /api/v1/auth/2fa/verify              -- complete login: challenge token + TOTP or backup code

Every path here sits under the public prefix /api/v1/auth/, so the trust gate
never attaches a Principal for them. Authenticated routes resolve the caller
themselves through get_current_user (auth/dependencies.py).

Security:
  [H2] login, password-reset/request and 2fa/verify are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a secret.
  [M8] password-reset/request answers identically for known and unknown
       identifiers, so it cannot be used to enumerate accounts.
  [H3] 2fa/verify accepts only the challenge token a successful password
       login returned. The identity comes from that token, so a leaked code
       alone never signs anyone in.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    MeResponse,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    TokenResponse,
    TwoFactorSetupResponse,
    TwoFactorVerifyRequest,
)
from auth.dependencies import get_current_user
from auth.errors import InvalidCredentials, InvalidTwoFactorChallenge, UserAlreadyExists
from auth.models import Credential
from auth.password_reset import PasswordResetManager
from auth.store import AuthStore
from auth.tokens import SCOPE_TWO_FACTOR_PENDING, TokenCodec, authenticate_user, hash_password
from auth.two_factor import TwoFactorManager
from auth.verifier import TokenVerifier

logger = logging.getLogger("feedbackauth.api.auth")

_RESET_REQUESTED_MESSAGE = "If an account exists for this identifier, a password reset link has been sent."

# Auth policy:
# - POST /api/v1/auth/register:                public
# - POST /api/v1/auth/login:                   public, rate-limited
# - GET  /api/v1/auth/me:                      requires auth (get_current_user)
# - POST /api/v1/auth/logout:                  public -- nothing to revoke server-side
# - POST /api/v1/auth/password-reset/request:  public, rate-limited
# - POST /api/v1/auth/password-reset/confirm:  public -- the reset token is the credential
# - POST /api/v1/auth/2fa/enable:              requires auth (get_current_user)
# - POST /api/v1/auth/2fa/disable:             requires auth (get_current_user)
# - POST /api/v1/auth/2fa/verify:              challenge token from login, rate-limited
router = APIRouter()


def _token_response(request: Request, user_id: str) -> TokenResponse:
    codec: TokenCodec = request.app.state.token_codec
    return TokenResponse(
        user_id=user_id,
        access_token=codec.issue(user_id),
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=codec.lifetime_seconds,
    )


# ---------------------------------------------------------------------------
# Account and session
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=TokenResponse, status_code=201)
async def register(request: Request, response: Response, body: RegisterRequest) -> TokenResponse:
    """Create an account identified by email, contact, or both."""
    store: AuthStore = request.app.state.auth_store
    hashed = await asyncio.to_thread(hash_password, body.password)
    try:
        user_id = await store.create_credential(
            Credential(email=body.email or None, contact=body.contact or None, hashed_password=hashed)
        )
    except IntegrityError as exc:
        raise UserAlreadyExists() from exc

    logger.info("Registered user %s", user_id)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _token_response(request, user_id)


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
async def login(request: Request, response: Response, body: LoginRequest) -> TokenResponse:
    """Authenticate with email-or-contact and password.

    Uses authenticate_user() which includes timing equalization [C1].
    Wrong identifier and wrong password produce the same "bad_credentials"
    error.

    Accounts with two-factor enabled get two_factor_required=True, no
    access token and a challenge token [H3]; POST /auth/2fa/verify
    completes the login.
    """
    store: AuthStore = request.app.state.auth_store
    credential = await authenticate_user(store, body.identifier, body.password)
    if credential is None:
        raise InvalidCredentials()

    response.headers["Cache-Control"] = "no-store"  # [M5]
    if credential.two_factor_enabled:
        logger.info("Login for user %s awaiting second factor", credential.id)
        codec: TokenCodec = request.app.state.token_codec
        challenge = codec.issue(
            credential.id,
            claims={"scope": SCOPE_TWO_FACTOR_PENDING},
            lifetime_seconds=request.app.state.two_factor_challenge_seconds,
        )
        return TokenResponse(user_id=credential.id, two_factor_required=True, challenge_token=challenge)

    logger.info("User %s logged in", credential.id)
    return _token_response(request, credential.id)


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: Credential = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated account."""
    return MeResponse.from_credential(current_user)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Tokens are stateless; the client ends the session by discarding its token."""
    return MessageResponse(message="Logged out successfully.")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/password-reset/request", response_model=MessageResponse)
async def request_password_reset(request: Request, body: PasswordResetRequest) -> MessageResponse:
    """Issue a reset token for the account and hand it to the notifier [M8]."""
    manager: PasswordResetManager = request.app.state.password_reset
    await manager.request_reset_for_identifier(body.identifier)
    return MessageResponse(message=_RESET_REQUESTED_MESSAGE)


@router.post("/auth/password-reset/confirm", response_model=MessageResponse)
async def confirm_password_reset(request: Request, body: PasswordResetConfirm) -> MessageResponse:
    """Set a new password with a reset token.

    Unknown, already used and expired tokens each produce their own error
    code (reset_token_not_found, reset_token_used, reset_token_expired).
    """
    manager: PasswordResetManager = request.app.state.password_reset
    await manager.consume_token(body.token, body.new_password)
    return MessageResponse(message="Password has been reset successfully.")


# ---------------------------------------------------------------------------
# Two-factor authentication
# ---------------------------------------------------------------------------


@router.post("/auth/2fa/enable", response_model=TwoFactorSetupResponse)
async def enable_two_factor(
    request: Request,
    response: Response,
    current_user: Credential = Depends(get_current_user),
) -> TwoFactorSetupResponse:
    """Enroll a new TOTP secret and backup codes, replacing any previous enrollment.

    The secret and backup codes are returned ONCE and never retrievable again.
    """
    manager: TwoFactorManager = request.app.state.two_factor
    enrollment = await manager.enroll(current_user.id)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TwoFactorSetupResponse.from_enrollment(enrollment)


@router.post("/auth/2fa/disable", response_model=MessageResponse)
async def disable_two_factor(
    request: Request,
    current_user: Credential = Depends(get_current_user),
) -> MessageResponse:
    manager: TwoFactorManager = request.app.state.two_factor
    await manager.disable(current_user.id)
    return MessageResponse(message="Two-factor authentication disabled.")


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/2fa/verify", response_model=TokenResponse)
async def verify_two_factor(
    request: Request,
    response: Response,
    body: TwoFactorVerifyRequest,
) -> TokenResponse:
    """Complete a login with the current TOTP or one unused backup code.

    The account is the subject of the challenge token login returned [H3].
    An expired or session-scoped token is rejected before any code is
    checked, so no backup code is spent on it.
    """
    store: AuthStore = request.app.state.auth_store
    manager: TwoFactorManager = request.app.state.two_factor
    verifier: TokenVerifier = request.app.state.token_verifier

    principal = await verifier.verify_challenge(body.challenge_token)
    credential = await store.get_by_id(principal.subject)
    if credential is None or not credential.is_active:
        raise InvalidTwoFactorChallenge()

    method = await manager.verify_credential(credential, body.code)
    logger.info("User %s passed second factor via %s", credential.id, method)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _token_response(request, credential.id)
