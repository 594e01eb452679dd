"""SQLite-backed blackjack game repository."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from shared.dal.game_repository import GameRepository
from shared.dal.models import GameRecord, GameStatus
from shared.db.connection import from_db_time, to_db_time, utc_now
from shared.money import from_zatoshi, to_zatoshi

if TYPE_CHECKING:
    import sqlite3
    from datetime import datetime
    from decimal import Decimal

    from shared.db.connection import Database

logger = structlog.get_logger()


def _row_to_game(row: sqlite3.Row) -> GameRecord:
    data = dict(row)
    for column in ("main_bet", "perfect_pairs_bet", "insurance_bet"):
        data[column] = from_zatoshi(data[column])
    if data["payout"] is not None:
        data["payout"] = from_zatoshi(data["payout"])
    for column in ("commitment_timestamp", "created_at", "completed_at"):
        data[column] = from_db_time(data[column])
    data["action_history"] = tuple(json.loads(data["action_history"]))
    data["verified_on_chain"] = bool(data["verified_on_chain"])
    return GameRecord.model_validate(data)


class SqliteGameRepository(GameRepository):
    """Game rows hold replay inputs and the final result only.

    All state transitions are conditional updates that report whether they
    applied, so callers can tell a lost race from success.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_game(self, tx: sqlite3.Connection, game: GameRecord) -> None:
        """Insert a game row inside the caller's transaction."""
        tx.execute(
            "INSERT INTO games ("
            "id, session_id, main_bet, perfect_pairs_bet, insurance_bet, action_history, "
            "server_seed, server_seed_hash, client_seed, nonce, fairness_version, fairness_mode, "
            "fairness_seed_id, commitment_id, commitment_tx_hash, commitment_block, commitment_timestamp, "
            "status, created_at"
            ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                game.id,
                game.session_id,
                to_zatoshi(game.main_bet),
                to_zatoshi(game.perfect_pairs_bet),
                to_zatoshi(game.insurance_bet),
                json.dumps(list(game.action_history)),
                game.server_seed,
                game.server_seed_hash,
                game.client_seed,
                game.nonce,
                game.fairness_version,
                game.fairness_mode,
                game.fairness_seed_id,
                game.commitment_id,
                game.commitment_tx_hash,
                game.commitment_block,
                to_db_time(game.commitment_timestamp) if game.commitment_timestamp else None,
                game.status,
                to_db_time(game.created_at),
            ),
        )

    async def get_game(self, game_id: str, tx: sqlite3.Connection | None = None) -> GameRecord | None:
        conn = tx or self._db.connection
        row = conn.execute("SELECT * FROM games WHERE id = ?", (game_id,)).fetchone()
        if row is None:
            return None
        return _row_to_game(row)

    async def get_session_games(self, session_id: str, limit: int = 50) -> list[GameRecord]:
        """Most recent games for a session, newest first."""
        rows = self._db.connection.execute(
            "SELECT * FROM games WHERE session_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (session_id, limit),
        ).fetchall()
        return [_row_to_game(row) for row in rows]

    async def get_last_nonce(self, session_id: str, tx: sqlite3.Connection | None = None) -> int | None:
        """Highest nonce used by a per-game-commitment round of this session."""
        conn = tx or self._db.connection
        row = conn.execute(
            "SELECT MAX(nonce) FROM games WHERE session_id = ? AND fairness_seed_id IS NULL",
            (session_id,),
        ).fetchone()
        return row[0]

    async def append_action(
        self,
        tx: sqlite3.Connection,
        game_id: str,
        action: str,
        expected_length: int,
    ) -> bool:
        """Append to the action history iff the game is active and the history is still ``expected_length`` long."""
        cursor = tx.execute(
            "UPDATE games SET action_history = json_insert(action_history, '$[#]', ?) "
            "WHERE id = ? AND status = ? AND json_array_length(action_history) = ?",
            (action, game_id, GameStatus.ACTIVE, expected_length),
        )
        return cursor.rowcount == 1

    async def set_insurance_bet(self, tx: sqlite3.Connection, game_id: str, amount: Decimal) -> bool:
        """Record insurance once, before any action has been taken."""
        cursor = tx.execute(
            "UPDATE games SET insurance_bet = ? "
            "WHERE id = ? AND status = ? AND insurance_bet = 0 AND json_array_length(action_history) = 0",
            (to_zatoshi(amount), game_id, GameStatus.ACTIVE),
        )
        return cursor.rowcount == 1

    async def complete_game(
        self,
        tx: sqlite3.Connection,
        game_id: str,
        outcome: str,
        payout: Decimal,
        completed_at: datetime | None = None,
    ) -> bool:
        """Transition active -> completed. Returns False when the game was already completed (or is unknown)."""
        cursor = tx.execute(
            "UPDATE games SET status = ?, outcome = ?, payout = ?, completed_at = ? WHERE id = ? AND status = ?",
            (
                GameStatus.COMPLETED,
                outcome,
                to_zatoshi(payout),
                to_db_time(completed_at or utc_now()),
                game_id,
                GameStatus.ACTIVE,
            ),
        )
        return cursor.rowcount == 1

    async def mark_verified_on_chain(self, game_id: str) -> bool:
        """Set the verified flag once; later calls are no-ops."""
        async with self._db.transaction() as tx:
            cursor = tx.execute(
                "UPDATE games SET verified_on_chain = 1 WHERE id = ? AND status = ? AND verified_on_chain = 0",
                (game_id, GameStatus.COMPLETED),
            )
        return cursor.rowcount == 1
