"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_credential / _row_to_reset_token are the mappers. Managers and route
code never touch SQL directly.

Async: the store runs on SQLAlchemy's asyncio extension (aiosqlite driver by
default), so a request waiting on the database suspends its task instead of
holding a worker thread.

Atomicity:
  Reset-token consumption and backup-code consumption are each ONE
  conditional write (UPDATE ... WHERE used = 0 / DELETE ... WHERE code_hash =)
  whose rowcount decides the winner. Concurrent attempts on the same token or
  code serialize on the database write lock; exactly one sees rowcount == 1.
  No in-process locks are involved. Each operation runs inside
  engine.begin(), so a cancelled request rolls back and leaves no partial
  state.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Backup codes are stored as HMAC hashes only (see auth.tokens.hash_secret_code).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from auth.models import Credential, ResetToken

logger = logging.getLogger("feedbackauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "app_user",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), unique=True),  # NULL when the user signed up by contact
    Column("contact", String(50), unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("two_fa_enabled", Integer, nullable=False, server_default="0"),
    Column("two_fa_secret", String(64)),  # NULL iff two_fa_enabled = 0
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_backup_codes = Table(
    "two_fa_backup_code",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("position", Integer, nullable=False),  # order of issue, display only
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    UniqueConstraint("user_id", "code_hash"),
)

_reset_tokens = Table(
    "password_reset_token",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("expiry_date", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed while a writer commits.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    # Fixed-width UTC text so that string comparison in SQL orders correctly.
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Credential, backup-code and ResetToken records.

    Usage:
        store = AuthStore("sqlite+aiosqlite:///auth.db")
        await store.initialize()
        user_id = await store.create_credential(Credential(email="a@b.c", hashed_password=hash_password("pw")))
        credential = await store.get_by_id(user_id)
        await store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            # Writers queue on the SQLite lock; give them room under load.
            connect_args["timeout"] = 30
        self.engine: AsyncEngine = create_async_engine(db_url, connect_args=connect_args)
        if is_sqlite and ":memory:" not in db_url:
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragmas)

    async def initialize(self) -> None:
        """Create tables that do not exist yet. Idempotent."""
        async with self.engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    async def close(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def create_credential(self, credential: Credential) -> str:
        """Insert a new account and return its generated UUID.

        Raises sqlalchemy.exc.IntegrityError if the email or contact is taken.
        """
        user_id = str(uuid.uuid4())
        async with self.engine.begin() as conn:
            await conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=credential.email,
                    contact=credential.contact,
                    hashed_password=credential.hashed_password,
                    two_fa_enabled=0,
                    two_fa_secret=None,
                    created_at=_now_iso(),
                    is_active=1 if credential.is_active else 0,
                )
            )
        return user_id

    async def get_by_id(self, user_id: str) -> Credential | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(_users.select().where(_users.c.id == user_id))).fetchone()
        return _row_to_credential(row) if row is not None else None

    async def get_by_identifier(self, identifier: str) -> Credential | None:
        """Look up an account by email or contact (exact match)."""
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    _users.select()
                    .where(or_(_users.c.email == identifier, _users.c.contact == identifier))
                    .limit(1)
                )
            ).fetchone()
        return _row_to_credential(row) if row is not None else None

    async def update_password(self, user_id: str, hashed_password: str) -> bool:
        """Replace the password hash. Returns False if user_id was not found."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    async def enroll_two_factor(self, user_id: str, secret: str, code_hashes: list[str]) -> bool:
        """Store a new TOTP secret and replace the whole backup-code pool.

        Secret, enabled flag and pool change in one transaction, so a
        concurrent verify sees either the old enrollment or the new one.
        Returns False if user_id was not found.
        """
        async with self.engine.begin() as conn:
            result = await conn.execute(
                _users.update().where(_users.c.id == user_id).values(two_fa_enabled=1, two_fa_secret=secret)
            )
            if result.rowcount == 0:
                return False
            await conn.execute(_backup_codes.delete().where(_backup_codes.c.user_id == user_id))
            if code_hashes:
                await conn.execute(
                    _backup_codes.insert(),
                    [
                        {"user_id": user_id, "position": position, "code_hash": code_hash}
                        for position, code_hash in enumerate(code_hashes)
                    ],
                )
        return True

    async def consume_backup_code(self, user_id: str, code_hash: str) -> bool:
        """Remove one backup code from the pool. True only for the caller that removed it."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                _backup_codes.delete().where(
                    (_backup_codes.c.user_id == user_id) & (_backup_codes.c.code_hash == code_hash)
                )
            )
        return result.rowcount == 1

    async def count_backup_codes(self, user_id: str) -> int:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(func.count()).select_from(_backup_codes).where(_backup_codes.c.user_id == user_id)
            )
        return result.scalar() or 0

    async def disable_two_factor(self, user_id: str) -> bool:
        """Clear secret and pool. Returns False if two-factor was not enabled."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.two_fa_enabled == 1))
                .values(two_fa_enabled=0, two_fa_secret=None)
            )
            if result.rowcount == 0:
                return False
            await conn.execute(_backup_codes.delete().where(_backup_codes.c.user_id == user_id))
        return True

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    async def create_reset_token(self, reset_token: ResetToken) -> int:
        """Insert a reset token and invalidate the user's outstanding ones.

        Older unused tokens are flagged used rather than deleted so the audit
        trail survives. Returns the new row ID.
        """
        async with self.engine.begin() as conn:
            await conn.execute(
                _reset_tokens.update()
                .where((_reset_tokens.c.user_id == reset_token.user_id) & (_reset_tokens.c.used == 0))
                .values(used=1)
            )
            result = await conn.execute(
                _reset_tokens.insert().values(
                    token=reset_token.token,
                    user_id=reset_token.user_id,
                    expiry_date=_iso(reset_token.expires_at),
                    used=0,
                    created_at=_iso(reset_token.created_at) if reset_token.created_at else _now_iso(),
                )
            )
        return result.inserted_primary_key[0]

    async def get_reset_token(self, token: str) -> ResetToken | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(_reset_tokens.select().where(_reset_tokens.c.token == token))).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    async def consume_reset_token(self, token: str, now: datetime, hashed_password: str) -> bool:
        """Mark a reset token used and set the owner's password, atomically.

        The conditional UPDATE is the check: it only matches an unused,
        unexpired row. When it matches, the password update runs in the same
        transaction. Returns False when nothing matched; the caller looks the
        token up to report why.
        """
        async with self.engine.begin() as conn:
            result = await conn.execute(
                _reset_tokens.update()
                .where(
                    (_reset_tokens.c.token == token)
                    & (_reset_tokens.c.used == 0)
                    & (_reset_tokens.c.expiry_date > _iso(now))
                )
                .values(used=1)
            )
            if result.rowcount != 1:
                return False
            user_id = (
                await conn.execute(select(_reset_tokens.c.user_id).where(_reset_tokens.c.token == token))
            ).scalar_one()
            await conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
        return True


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        email=row.email,
        contact=row.contact,
        hashed_password=row.hashed_password,
        two_factor_enabled=bool(row.two_fa_enabled),
        two_factor_secret=row.two_fa_secret,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_reset_token(row) -> ResetToken:
    return ResetToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=datetime.fromisoformat(row.expiry_date),
        used=bool(row.used),
        created_at=datetime.fromisoformat(row.created_at),
    )
