"""
auth/errors.py -- Error taxonomy for token handling and credential flows.

Every error carries a machine-readable code, a client-safe message and the
HTTP status the API layer should use. api/main.py registers one exception
handler for AuthError and renders the standard error envelope from these
attributes, so route handlers can let manager errors propagate untouched.

Two families with different propagation rules:
  TokenError -- bearer token problems. The trust gate and the security
      context resolver swallow these and treat the request as anonymous.
  Everything else -- imperative flows (password reset, two-factor) surface
      these to the client as explicit failures.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication and credential errors."""

    code = "auth_error"
    message = "Authentication error."
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Bearer token errors
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "invalid_token"
    message = "Invalid or expired token."
    status_code = 401


class MalformedToken(TokenError):
    code = "malformed_token"
    message = "Token is malformed."


class InvalidToken(TokenError):
    code = "invalid_token"
    message = "Token signature or subject is invalid."


class ExpiredToken(TokenError):
    code = "expired_token"
    message = "Token has expired."


# ---------------------------------------------------------------------------
# Password reset errors
# ---------------------------------------------------------------------------


class TokenNotFound(AuthError):
    code = "reset_token_not_found"
    message = "Invalid or expired token."


class TokenAlreadyUsed(AuthError):
    code = "reset_token_used"
    message = "This reset token has already been used."


class TokenExpired(AuthError):
    code = "reset_token_expired"
    message = "Invalid or expired token."


# ---------------------------------------------------------------------------
# Two-factor errors
# ---------------------------------------------------------------------------


class InvalidTwoFactorCode(AuthError):
    code = "invalid_2fa_code"
    message = "Invalid 2FA code."


class TwoFactorNotEnabled(AuthError):
    code = "2fa_not_enabled"
    message = "Two-factor authentication is not enabled."


class InvalidTwoFactorChallenge(AuthError):
    code = "invalid_2fa_challenge"
    message = "Two-factor challenge is invalid or has expired. Log in again."
    status_code = 401


# ---------------------------------------------------------------------------
# Account errors
# ---------------------------------------------------------------------------


class UserNotFound(AuthError):
    code = "user_not_found"
    message = "User not found."
    status_code = 404


class InvalidCredentials(AuthError):
    code = "bad_credentials"
    message = "Invalid identifier or password."
    status_code = 401


class UserAlreadyExists(AuthError):
    code = "conflict"
    message = "User with this email or contact already exists."
    status_code = 409
