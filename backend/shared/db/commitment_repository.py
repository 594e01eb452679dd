"""SQLite-backed seed commitment repository (per-game commitment pool)."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import structlog

from shared.dal.commitment_repository import CommitmentRepository
from shared.dal.models import CommitmentStatus, SeedCommitment
from shared.db.connection import from_db_time, to_db_time

if TYPE_CHECKING:
    from datetime import datetime

    from shared.db.connection import Database

logger = structlog.get_logger()


def _row_to_commitment(row: sqlite3.Row) -> SeedCommitment:
    data = dict(row)
    for column in ("block_timestamp", "claimed_at", "used_at", "created_at", "expires_at"):
        data[column] = from_db_time(data[column])
    return SeedCommitment.model_validate(data)


class SqliteCommitmentRepository(CommitmentRepository):
    """Commitment rows move available -> claimed -> used, or back to available, or to expired.

    Every transition is a single conditional UPDATE; no transition reads a
    row and then writes it in a separate statement.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def insert_commitment(self, commitment: SeedCommitment) -> None:
        """Insert a freshly anchored commitment. Raises ValueError on a duplicate seed hash."""
        async with self._db.transaction() as tx:
            try:
                tx.execute(
                    "INSERT INTO seed_commitments ("
                    "id, server_seed, server_seed_hash, tx_hash, block_height, block_timestamp, "
                    "status, claimed_at, created_at, expires_at"
                    ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        commitment.id,
                        commitment.server_seed,
                        commitment.server_seed_hash,
                        commitment.tx_hash,
                        commitment.block_height,
                        to_db_time(commitment.block_timestamp) if commitment.block_timestamp else None,
                        commitment.status,
                        to_db_time(commitment.claimed_at) if commitment.claimed_at else None,
                        to_db_time(commitment.created_at),
                        to_db_time(commitment.expires_at),
                    ),
                )
            except sqlite3.IntegrityError:
                raise ValueError(f"Commitment for hash {commitment.server_seed_hash} already exists") from None

    async def get_commitment(self, commitment_id: str) -> SeedCommitment | None:
        row = self._db.connection.execute("SELECT * FROM seed_commitments WHERE id = ?", (commitment_id,)).fetchone()
        if row is None:
            return None
        return _row_to_commitment(row)

    async def get_by_tx_hash(self, tx_hash: str) -> SeedCommitment | None:
        row = self._db.connection.execute(
            "SELECT * FROM seed_commitments WHERE tx_hash = ? ORDER BY created_at LIMIT 1",
            (tx_hash,),
        ).fetchone()
        if row is None:
            return None
        return _row_to_commitment(row)

    async def claim_oldest_available(self, now: datetime) -> SeedCommitment | None:
        """Atomically claim the oldest unexpired available commitment (FIFO)."""
        now_text = to_db_time(now)
        async with self._db.transaction() as tx:
            rows = tx.execute(
                "UPDATE seed_commitments SET status = ?, claimed_at = ? "
                "WHERE id = ("
                "  SELECT id FROM seed_commitments WHERE status = ? AND expires_at > ? "
                "  ORDER BY created_at, rowid LIMIT 1"
                ") AND status = ? "
                "RETURNING *",
                (
                    CommitmentStatus.CLAIMED,
                    now_text,
                    CommitmentStatus.AVAILABLE,
                    now_text,
                    CommitmentStatus.AVAILABLE,
                ),
            ).fetchall()
        if not rows:
            return None
        return _row_to_commitment(rows[0])

    async def mark_used(
        self,
        commitment_id: str,
        game_id: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> bool:
        async with self._db.transaction(tx) as conn:
            cursor = conn.execute(
                "UPDATE seed_commitments SET status = ?, used_by_game_id = ?, used_at = ? WHERE id = ? AND status = ?",
                (CommitmentStatus.USED, game_id, to_db_time(now), commitment_id, CommitmentStatus.CLAIMED),
            )
        return cursor.rowcount == 1

    async def release_claimed(self, commitment_id: str, tx: sqlite3.Connection | None = None) -> bool:
        async with self._db.transaction(tx) as conn:
            cursor = conn.execute(
                "UPDATE seed_commitments SET status = ?, claimed_at = NULL WHERE id = ? AND status = ?",
                (CommitmentStatus.AVAILABLE, commitment_id, CommitmentStatus.CLAIMED),
            )
        return cursor.rowcount == 1

    async def reclaim_stale(self, cutoff: datetime) -> int:
        """Return claims older than ``cutoff`` that never reached a game back to the pool."""
        async with self._db.transaction() as tx:
            cursor = tx.execute(
                "UPDATE seed_commitments SET status = ?, claimed_at = NULL "
                "WHERE status = ? AND used_by_game_id IS NULL AND claimed_at < ?",
                (CommitmentStatus.AVAILABLE, CommitmentStatus.CLAIMED, to_db_time(cutoff)),
            )
        return cursor.rowcount

    async def expire_available(self, now: datetime) -> int:
        async with self._db.transaction() as tx:
            cursor = tx.execute(
                "UPDATE seed_commitments SET status = ? WHERE status = ? AND expires_at <= ?",
                (CommitmentStatus.EXPIRED, CommitmentStatus.AVAILABLE, to_db_time(now)),
            )
        return cursor.rowcount

    async def count_by_status(self, now: datetime) -> dict[CommitmentStatus, int]:
        """Counts per status; available rows past expiry count as expired even before cleanup runs."""
        counts = dict.fromkeys(CommitmentStatus, 0)
        rows = self._db.connection.execute(
            "SELECT CASE WHEN status = ? AND expires_at <= ? THEN ? ELSE status END AS effective, COUNT(*) "
            "FROM seed_commitments GROUP BY effective",
            (CommitmentStatus.AVAILABLE, to_db_time(now), CommitmentStatus.EXPIRED),
        ).fetchall()
        for status, count in rows:
            counts[CommitmentStatus(status)] += count
        return counts
