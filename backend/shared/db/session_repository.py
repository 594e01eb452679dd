"""SQLite-backed player session repository."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import structlog

from shared.dal.models import PlayerSession
from shared.dal.session_repository import SessionRepository
from shared.db.connection import from_db_time, to_db_time, utc_now
from shared.money import from_zatoshi, to_zatoshi

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from shared.db.connection import Database

logger = structlog.get_logger()

_AMOUNT_COLUMNS = ("balance", "total_deposited", "total_withdrawn", "total_wagered", "total_won")


def _row_to_session(row: sqlite3.Row) -> PlayerSession:
    data = dict(row)
    for column in _AMOUNT_COLUMNS:
        data[column] = from_zatoshi(data[column])
    for column in ("deposit_limit", "loss_limit"):
        if data[column] is not None:
            data[column] = from_zatoshi(data[column])
    for column in ("excluded_until", "created_at", "last_active_at"):
        data[column] = from_db_time(data[column])
    data["is_authenticated"] = bool(data["is_authenticated"])
    return PlayerSession.model_validate(data)


class SqliteSessionRepository(SessionRepository):
    """Sessions are created and read here; balance changes go through ``shared.ledger`` only."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_session(
        self,
        session_id: str,
        wallet_address: str,
        balance: Decimal | int = 0,
        created_at: datetime | None = None,
    ) -> PlayerSession:
        """Insert a new session. Raises ValueError if the id already exists."""
        now = to_db_time(created_at or utc_now())
        async with self._db.transaction() as tx:
            try:
                tx.execute(
                    "INSERT INTO sessions (id, wallet_address, balance, total_deposited, created_at, last_active_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (session_id, wallet_address, to_zatoshi(balance), to_zatoshi(balance), now, now),
                )
            except sqlite3.IntegrityError:
                raise ValueError(f"Session {session_id} already exists") from None
        session = await self.get_session(session_id)
        if session is None:  # pragma: no cover
            raise RuntimeError("session vanished after insert")
        return session

    async def get_session(self, session_id: str, tx: sqlite3.Connection | None = None) -> PlayerSession | None:
        conn = tx or self._db.connection
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return _row_to_session(row)

    async def set_limits(
        self,
        session_id: str,
        *,
        loss_limit: Decimal | None = None,
        deposit_limit: Decimal | None = None,
        session_limit_minutes: int | None = None,
    ) -> bool:
        """Replace the session's responsible-gaming limits. Returns False for an unknown session."""
        async with self._db.transaction() as tx:
            cursor = tx.execute(
                "UPDATE sessions SET loss_limit = ?, deposit_limit = ?, session_limit_minutes = ? WHERE id = ?",
                (
                    to_zatoshi(loss_limit) if loss_limit is not None else None,
                    to_zatoshi(deposit_limit) if deposit_limit is not None else None,
                    session_limit_minutes,
                    session_id,
                ),
            )
        return cursor.rowcount == 1

    async def exclude_until(self, session_id: str, until: datetime) -> bool:
        """Self-exclusion only ever extends; an earlier ``until`` leaves the stored value alone."""
        until_text = to_db_time(until)
        async with self._db.transaction() as tx:
            cursor = tx.execute(
                "UPDATE sessions SET excluded_until = ? "
                "WHERE id = ? AND (excluded_until IS NULL OR excluded_until < ?)",
                (until_text, session_id, until_text),
            )
        if cursor.rowcount == 0:
            logger.info("exclusion not extended", session_id=session_id)
        return cursor.rowcount == 1

    async def touch(self, session_id: str, tx: sqlite3.Connection | None = None) -> None:
        async with self._db.transaction(tx) as conn:
            conn.execute(
                "UPDATE sessions SET last_active_at = ? WHERE id = ?",
                (to_db_time(utc_now()), session_id),
            )
