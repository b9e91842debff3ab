"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond derived flags).
Stores and managers do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Credential:
    """The persisted credential record of one account.

    A user signs in with either email or contact; at least one is set.

    two_factor_secret is non-None exactly when two_factor_enabled is True.
    The backup-code pool lives in its own table (one row per code, HMAC
    hashed) so that a single code can be consumed with one conditional
    DELETE; it is not loaded onto this object.
    """

    hashed_password: str
    email: str | None = None
    contact: str | None = None
    id: str | None = None  # UUID string, assigned by AuthStore.create_credential()
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None
    created_at: str | None = None
    is_active: bool = True

    @property
    def identifier(self) -> str:
        """Email when present, else contact. Used as the TOTP account label."""
        return self.email or self.contact or self.id or ""


@dataclass
class ResetToken:
    """A single-use password reset token.

    State machine: CREATED -> USED (terminal) or CREATED -> EXPIRED (derived
    from expires_at at read time, never written). Rows are kept after use
    for audit purposes.
    """

    token: str
    user_id: str
    expires_at: datetime
    used: bool = False
    created_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class Principal:
    """The caller identity resolved for one request.

    authorities is empty: role and permission resolution belongs to the
    downstream authorization layer, not to token verification.
    """

    subject: str
    authorities: tuple[str, ...] = ()

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass
class TwoFactorEnrollment:
    """Result of enrolling a second factor.

    backup_codes are plaintext and returned exactly once; only their HMAC
    hashes are persisted.
    """

    secret: str
    provisioning_uri: str
    qr_code_url: str
    backup_codes: list[str] = field(default_factory=list)
