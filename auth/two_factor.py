"""
auth/two_factor.py -- TOTP second factor with single-use backup codes.

Enrollment creates a fresh TOTP secret (pyotp, SHA1, 6 digits, 30 s step) and
a pool of random backup codes. The plaintext codes are returned once; the
store keeps HMAC hashes only (auth.tokens.hash_secret_code).

Verification order: TOTP first, which changes nothing on success; then one
backup code, which is deleted by the same statement that checks it. Two
concurrent verifications presenting the same backup code cannot both succeed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import secrets
import string
from io import BytesIO

import pyotp
import qrcode

from auth.errors import InvalidTwoFactorCode, TwoFactorNotEnabled, UserNotFound
from auth.models import Credential, TwoFactorEnrollment
from auth.store import AuthStore
from auth.tokens import hash_secret_code
from core.clock import Clock, system_clock

logger = logging.getLogger("feedbackauth.two_factor")

_BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits
_TOTP_DIGITS = 6

METHOD_TOTP = "totp"
METHOD_BACKUP_CODE = "backup_code"


def _qr_data_url(text: str) -> str:
    """Render text as a PNG QR code and return it as a data: URL."""
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, "PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class TwoFactorManager:
    """Enrolls, verifies and removes the second factor of an account.

    Usage:
        manager = TwoFactorManager(store, secret_key)
        enrollment = await manager.enroll(user_id)
        await manager.verify(user_id, "123456")
    """

    def __init__(
        self,
        store: AuthStore,
        secret_key: str,
        issuer: str = "YowyobFeedback",
        backup_code_count: int = 10,
        backup_code_length: int = 8,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self._issuer = issuer
        self._backup_code_count = backup_code_count
        self._backup_code_length = backup_code_length
        self._clock = clock

    async def enroll(self, user_id: str) -> TwoFactorEnrollment:
        """Create a new secret and backup-code pool, replacing any previous one.

        Raises UserNotFound if user_id does not exist.
        """
        credential = await self._store.get_by_id(user_id)
        if credential is None:
            raise UserNotFound()

        secret = pyotp.random_base32(length=32)
        provisioning_uri = pyotp.TOTP(secret).provisioning_uri(
            name=credential.identifier, issuer_name=self._issuer
        )
        codes = self._generate_backup_codes()
        hashes = [hash_secret_code(code, self._secret_key) for code in codes]

        if not await self._store.enroll_two_factor(user_id, secret, hashes):
            raise UserNotFound()

        qr_code_url = await asyncio.to_thread(_qr_data_url, provisioning_uri)
        logger.info("Two-factor enabled for user %s (%d backup codes)", user_id, len(codes))
        return TwoFactorEnrollment(
            secret=secret,
            provisioning_uri=provisioning_uri,
            qr_code_url=qr_code_url,
            backup_codes=codes,
        )

    async def verify(self, user_id: str, code: str) -> str:
        """Check a TOTP or backup code for user_id.

        Returns METHOD_TOTP or METHOD_BACKUP_CODE to say which one matched.

        Raises:
            UserNotFound:         no such account.
            TwoFactorNotEnabled:  the account has no second factor.
            InvalidTwoFactorCode: neither the TOTP nor any remaining backup
                                  code matches.
        """
        credential = await self._store.get_by_id(user_id)
        if credential is None:
            raise UserNotFound()
        return await self.verify_credential(credential, code)

    async def verify_credential(self, credential: Credential, code: str) -> str:
        """verify() for a Credential the caller has already loaded."""
        if not credential.two_factor_enabled or not credential.two_factor_secret:
            raise TwoFactorNotEnabled()

        candidate = (code or "").strip()
        if not candidate:
            raise InvalidTwoFactorCode()

        if len(candidate) == _TOTP_DIGITS and candidate.isdigit():
            totp = pyotp.TOTP(credential.two_factor_secret)
            if totp.verify(candidate, for_time=self._clock(), valid_window=1):
                return METHOD_TOTP

        code_hash = hash_secret_code(candidate, self._secret_key)
        if await self._store.consume_backup_code(credential.id, code_hash):
            remaining = await self._store.count_backup_codes(credential.id)
            logger.info("Backup code used for user %s (%d remaining)", credential.id, remaining)
            return METHOD_BACKUP_CODE

        logger.info("Invalid two-factor code for user %s", credential.id)
        raise InvalidTwoFactorCode()

    async def disable(self, user_id: str) -> None:
        """Clear the secret and backup codes.

        Raises UserNotFound or TwoFactorNotEnabled.
        """
        if await self._store.disable_two_factor(user_id):
            logger.info("Two-factor disabled for user %s", user_id)
            return
        if await self._store.get_by_id(user_id) is None:
            raise UserNotFound()
        raise TwoFactorNotEnabled()

    def _generate_backup_codes(self) -> list[str]:
        codes: list[str] = []
        while len(codes) < self._backup_code_count:
            code = "".join(secrets.choice(_BACKUP_CODE_ALPHABET) for _ in range(self._backup_code_length))
            if code not in codes:
                codes.append(code)
        return codes
