"""
API request and response models for the authentication REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from auth.models import Credential, TwoFactorEnrollment

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_PASSWORD_LENGTH = 8
# bcrypt ignores input beyond 72 bytes; refuse it rather than truncate silently.
MAX_PASSWORD_LENGTH = 72

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
CONTACT_PATTERN = r"^\+?[0-9 ()-]{6,20}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    At least one of email or contact must be provided.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    contact: Optional[str] = Field(default=None, max_length=50, pattern=CONTACT_PATTERN)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)

    @model_validator(mode="after")
    def require_identifier(self) -> "RegisterRequest":
        if not self.email and not self.contact:
            raise ValueError("Either email or contact must be provided.")
        return self


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. identifier is an email or contact."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=1, max_length=255)


class PasswordResetConfirm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)


class TwoFactorVerifyRequest(BaseModel):
    """Request body for POST /api/v1/auth/2fa/verify.

    challenge_token is the token POST /auth/login returned for an account
    with two-factor enabled. code is either the current 6-digit TOTP or one
    unused backup code.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    challenge_token: str = Field(min_length=1, max_length=2048)
    code: str = Field(min_length=1, max_length=32)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Response for register, login and 2FA verification.

    When the account has two-factor enabled, login returns
    two_factor_required=True, no access token and a short-lived
    challenge_token; the client completes sign-in by sending it with a code
    to POST /auth/2fa/verify.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    access_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    two_factor_required: bool = False
    challenge_token: Optional[str] = None


class MeResponse(BaseModel):
    """Identity information for the authenticated account."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str]
    contact: Optional[str]
    two_factor_enabled: bool
    created_at: str

    @classmethod
    def from_credential(cls, credential: Credential) -> "MeResponse":
        return cls(
            user_id=credential.id,
            email=credential.email,
            contact=credential.contact,
            two_factor_enabled=credential.two_factor_enabled,
            created_at=credential.created_at or "",
        )


class IdentityResponse(BaseModel):
    """Response for GET /api/v1/account/identity."""

    model_config = ConfigDict(frozen=True)

    subject: str
    authorities: list[str] = Field(default_factory=list)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class TwoFactorSetupResponse(BaseModel):
    """Response for POST /api/v1/auth/2fa/enable.

    backup_codes are shown exactly once; only their hashes are stored.
    """

    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str
    qr_code_url: str
    backup_codes: list[str]

    @classmethod
    def from_enrollment(cls, enrollment: TwoFactorEnrollment) -> "TwoFactorSetupResponse":
        return cls(
            secret=enrollment.secret,
            provisioning_uri=enrollment.provisioning_uri,
            qr_code_url=enrollment.qr_code_url,
            backup_codes=list(enrollment.backup_codes),
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", "degraded" otherwise.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
