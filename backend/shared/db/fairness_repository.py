"""SQLite-backed session fairness repository: seed pool plus per-session stream state."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import structlog

from shared.dal.fairness_repository import FairnessSeedRepository
from shared.dal.models import FairnessSeed, FairnessSeedStatus, SessionFairnessState
from shared.db.connection import from_db_time, to_db_time

if TYPE_CHECKING:
    from datetime import datetime

    from shared.db.connection import Database

logger = structlog.get_logger()


def _row_to_seed(row: sqlite3.Row) -> FairnessSeed:
    data = dict(row)
    for column in ("block_timestamp", "assigned_at", "revealed_at", "created_at"):
        data[column] = from_db_time(data[column])
    return FairnessSeed.model_validate(data)


def _row_to_state(row: sqlite3.Row) -> SessionFairnessState:
    data = dict(row)
    for column in ("created_at", "updated_at"):
        data[column] = from_db_time(data[column])
    return SessionFairnessState.model_validate(data)


class SqliteFairnessSeedRepository(FairnessSeedRepository):
    """Seeds move available -> assigned -> revealed. A session holds at most one assigned seed.

    Methods that take ``tx`` join the caller's transaction when one is given.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # --- seed pool ---

    async def insert_seed(self, seed: FairnessSeed) -> None:
        async with self._db.transaction() as tx:
            try:
                tx.execute(
                    "INSERT INTO fairness_seeds ("
                    "id, seed, seed_hash, tx_hash, block_height, block_timestamp, status, created_at"
                    ") VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        seed.id,
                        seed.seed,
                        seed.seed_hash,
                        seed.tx_hash,
                        seed.block_height,
                        to_db_time(seed.block_timestamp) if seed.block_timestamp else None,
                        seed.status,
                        to_db_time(seed.created_at),
                    ),
                )
            except sqlite3.IntegrityError:
                raise ValueError(f"Fairness seed for hash {seed.seed_hash} already exists") from None

    async def get_seed(self, seed_id: str, tx: sqlite3.Connection | None = None) -> FairnessSeed | None:
        conn = tx or self._db.connection
        row = conn.execute("SELECT * FROM fairness_seeds WHERE id = ?", (seed_id,)).fetchone()
        if row is None:
            return None
        return _row_to_seed(row)

    async def claim_oldest_available(self, now: datetime, tx: sqlite3.Connection | None = None) -> FairnessSeed | None:
        """Atomically move the oldest available seed to assigned and return it."""
        async with self._db.transaction(tx) as conn:
            rows = conn.execute(
                "UPDATE fairness_seeds SET status = ?, assigned_at = ? "
                "WHERE id = ("
                "  SELECT id FROM fairness_seeds WHERE status = ? ORDER BY created_at, rowid LIMIT 1"
                ") AND status = ? "
                "RETURNING *",
                (
                    FairnessSeedStatus.ASSIGNED,
                    to_db_time(now),
                    FairnessSeedStatus.AVAILABLE,
                    FairnessSeedStatus.AVAILABLE,
                ),
            ).fetchall()
        if not rows:
            return None
        return _row_to_seed(rows[0])

    async def mark_revealed(self, seed_id: str, now: datetime, tx: sqlite3.Connection | None = None) -> bool:
        async with self._db.transaction(tx) as conn:
            cursor = conn.execute(
                "UPDATE fairness_seeds SET status = ?, revealed_at = ? WHERE id = ? AND status = ?",
                (FairnessSeedStatus.REVEALED, to_db_time(now), seed_id, FairnessSeedStatus.ASSIGNED),
            )
        return cursor.rowcount == 1

    async def count_by_status(self) -> dict[FairnessSeedStatus, int]:
        counts = dict.fromkeys(FairnessSeedStatus, 0)
        rows = self._db.connection.execute("SELECT status, COUNT(*) FROM fairness_seeds GROUP BY status").fetchall()
        for status, count in rows:
            counts[FairnessSeedStatus(status)] = count
        return counts

    # --- session stream state ---

    async def get_state(self, session_id: str, tx: sqlite3.Connection | None = None) -> SessionFairnessState | None:
        conn = tx or self._db.connection
        row = conn.execute("SELECT * FROM session_fairness_states WHERE session_id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return _row_to_state(row)

    async def upsert_state(
        self,
        session_id: str,
        seed_id: str,
        client_seed: str,
        fairness_version: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> SessionFairnessState:
        """Point the session at a new seed with ``next_nonce`` reset to 0."""
        now_text = to_db_time(now)
        async with self._db.transaction(tx) as conn:
            rows = conn.execute(
                "INSERT INTO session_fairness_states "
                "(session_id, seed_id, client_seed, next_nonce, fairness_version, created_at, updated_at) "
                "VALUES (?, ?, ?, 0, ?, ?, ?) "
                "ON CONFLICT (session_id) DO UPDATE SET "
                "seed_id = excluded.seed_id, client_seed = excluded.client_seed, next_nonce = 0, "
                "fairness_version = excluded.fairness_version, updated_at = excluded.updated_at "
                "RETURNING *",
                (session_id, seed_id, client_seed, fairness_version, now_text, now_text),
            ).fetchall()
        return _row_to_state(rows[0])

    async def increment_nonce(
        self,
        session_id: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> SessionFairnessState | None:
        """Atomically bump ``next_nonce``; returns the post-increment state."""
        async with self._db.transaction(tx) as conn:
            rows = conn.execute(
                "UPDATE session_fairness_states SET next_nonce = next_nonce + 1, updated_at = ? "
                "WHERE session_id = ? RETURNING *",
                (to_db_time(now), session_id),
            ).fetchall()
        if not rows:
            return None
        return _row_to_state(rows[0])

    async def set_client_seed_if_unused(
        self,
        session_id: str,
        client_seed: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> bool:
        """Replace the client seed only while ``next_nonce`` is still 0."""
        async with self._db.transaction(tx) as conn:
            cursor = conn.execute(
                "UPDATE session_fairness_states SET client_seed = ?, updated_at = ? "
                "WHERE session_id = ? AND next_nonce = 0",
                (client_seed, to_db_time(now), session_id),
            )
        return cursor.rowcount == 1
