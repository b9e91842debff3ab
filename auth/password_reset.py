"""
auth/password_reset.py -- Password reset token lifecycle.

A reset token is an opaque random string with a fixed expiry. It is handed to
a ResetNotifier for delivery and consumed at most once.

Consumption is decided by AuthStore.consume_reset_token(), a single
conditional UPDATE. Only when it matches nothing does the manager read the
row back to explain the failure, so the classification below never decides
who wins a race.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Protocol

from auth.errors import TokenAlreadyUsed, TokenExpired, TokenNotFound, UserNotFound
from auth.models import Credential, ResetToken
from auth.store import AuthStore
from auth.tokens import hash_password
from core.clock import Clock, system_clock

logger = logging.getLogger("feedbackauth.password_reset")

_TOKEN_BYTES = 32


class ResetNotifier(Protocol):
    """Delivers a freshly issued reset token to its owner."""

    async def send_reset(self, credential: Credential, reset_token: ResetToken) -> None: ...


class LoggingResetNotifier:
    """Default notifier: writes a log line instead of sending mail.

    Only the first characters of the token are logged.
    """

    async def send_reset(self, credential: Credential, reset_token: ResetToken) -> None:
        logger.info(
            "Password reset issued for %s (token %s..., expires %s)",
            credential.identifier,
            reset_token.token[:6],
            reset_token.expires_at.isoformat(),
        )


class PasswordResetManager:
    """Issues and consumes single-use password reset tokens.

    Usage:
        manager = PasswordResetManager(store, expire_hours=24)
        reset = await manager.request_reset(user_id)
        await manager.consume_token(reset.token, "new-password")
    """

    def __init__(
        self,
        store: AuthStore,
        clock: Clock = system_clock,
        expire_hours: int = 24,
        notifier: ResetNotifier | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._lifetime = timedelta(hours=expire_hours)
        self._notifier: ResetNotifier = notifier or LoggingResetNotifier()

    async def request_reset(self, user_id: str) -> ResetToken:
        """Create a reset token for user_id and hand it to the notifier.

        Any earlier unused token of the same user stops being consumable.

        Raises UserNotFound if user_id does not exist.
        """
        credential = await self._store.get_by_id(user_id)
        if credential is None:
            raise UserNotFound()

        now = self._clock()
        reset_token = ResetToken(
            token=secrets.token_urlsafe(_TOKEN_BYTES),
            user_id=user_id,
            expires_at=now + self._lifetime,
            used=False,
            created_at=now,
        )
        reset_token.id = await self._store.create_reset_token(reset_token)
        await self._notifier.send_reset(credential, reset_token)
        return reset_token

    async def request_reset_for_identifier(self, identifier: str) -> ResetToken | None:
        """request_reset() keyed by email or contact.

        Returns None for an unknown identifier so callers can answer the same
        way whether or not the account exists.
        """
        credential = await self._store.get_by_identifier(identifier)
        if credential is None:
            logger.info("Password reset requested for unknown identifier")
            return None
        return await self.request_reset(credential.id)

    async def consume_token(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token.

        Raises:
            TokenNotFound:    no such token.
            TokenAlreadyUsed: the token was consumed (or superseded) before.
            TokenExpired:     the token is past its expiry.
        """
        # Hash before touching the database so the write transaction stays short.
        hashed = await asyncio.to_thread(hash_password, new_password)
        now = self._clock()
        if await self._store.consume_reset_token(token, now, hashed):
            logger.info("Password reset token consumed")
            return

        record = await self._store.get_reset_token(token)
        if record is None:
            raise TokenNotFound()
        if record.used:
            raise TokenAlreadyUsed()
        raise TokenExpired()
