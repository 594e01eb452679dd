"""SQLite database connection, schema and transaction management."""

from __future__ import annotations

import asyncio
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600
_DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Amount columns hold integer zatoshi (1e-8 ZEC).
_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    wallet_address TEXT NOT NULL,
    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
    total_deposited INTEGER NOT NULL DEFAULT 0,
    total_withdrawn INTEGER NOT NULL DEFAULT 0,
    total_wagered INTEGER NOT NULL DEFAULT 0,
    total_won INTEGER NOT NULL DEFAULT 0,
    is_authenticated INTEGER NOT NULL DEFAULT 0,
    deposit_limit INTEGER,
    loss_limit INTEGER,
    session_limit_minutes INTEGER,
    excluded_until TEXT,
    created_at TEXT NOT NULL,
    last_active_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS seed_commitments (
    id TEXT PRIMARY KEY,
    server_seed TEXT NOT NULL,
    server_seed_hash TEXT NOT NULL UNIQUE,
    tx_hash TEXT NOT NULL,
    block_height INTEGER,
    block_timestamp TEXT,
    status TEXT NOT NULL DEFAULT 'available',
    used_by_game_id TEXT,
    claimed_at TEXT,
    used_at TEXT,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_seed_commitments_status_created
    ON seed_commitments (status, created_at);

CREATE TABLE IF NOT EXISTS fairness_seeds (
    id TEXT PRIMARY KEY,
    seed TEXT NOT NULL,
    seed_hash TEXT NOT NULL UNIQUE,
    tx_hash TEXT NOT NULL UNIQUE,
    block_height INTEGER,
    block_timestamp TEXT,
    status TEXT NOT NULL DEFAULT 'available',
    assigned_at TEXT,
    revealed_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_fairness_seeds_status_created
    ON fairness_seeds (status, created_at);

CREATE TABLE IF NOT EXISTS session_fairness_states (
    session_id TEXT PRIMARY KEY REFERENCES sessions (id),
    seed_id TEXT NOT NULL UNIQUE REFERENCES fairness_seeds (id),
    client_seed TEXT NOT NULL,
    next_nonce INTEGER NOT NULL DEFAULT 0 CHECK (next_nonce >= 0),
    fairness_version TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS games (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES sessions (id),
    main_bet INTEGER NOT NULL,
    perfect_pairs_bet INTEGER NOT NULL DEFAULT 0,
    insurance_bet INTEGER NOT NULL DEFAULT 0,
    action_history TEXT NOT NULL DEFAULT '[]',
    server_seed TEXT,
    server_seed_hash TEXT NOT NULL,
    client_seed TEXT NOT NULL,
    nonce INTEGER NOT NULL,
    fairness_version TEXT NOT NULL,
    fairness_mode TEXT NOT NULL,
    fairness_seed_id TEXT REFERENCES fairness_seeds (id),
    commitment_id TEXT REFERENCES seed_commitments (id),
    commitment_tx_hash TEXT,
    commitment_block INTEGER,
    commitment_timestamp TEXT,
    verified_on_chain INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    outcome TEXT,
    payout INTEGER,
    created_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_games_session ON games (session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_games_fairness_seed ON games (fairness_seed_id);
"""


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_db_time(value: datetime) -> str:
    """Fixed-width UTC text so stored timestamps compare correctly as strings."""
    return value.astimezone(UTC).strftime(_DB_TIME_FORMAT)


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, _DB_TIME_FORMAT).replace(tzinfo=UTC)


class Database:
    """SQLite database wrapper with schema management and serialized write transactions.

    The connection runs in autocommit mode; multi-statement writes go through
    ``transaction()``, which issues ``BEGIN IMMEDIATE`` so conditional updates
    inside it observe a stable snapshot.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._tx_lock = asyncio.Lock()

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the active connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    def connect(self) -> None:
        """Open the database, apply pragmas, create schema, and harden file permissions."""
        parent = Path(self._path).parent
        parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_SCHEMA_SQL)

        self._harden_permissions()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def transaction(self, tx: sqlite3.Connection | None = None) -> AsyncIterator[sqlite3.Connection]:
        """Run a block atomically, or join the caller's transaction when ``tx`` is given.

        Rolls back on any exception and re-raises it. Never nest a fresh
        ``transaction()`` inside another one: pass the handle down instead.
        """
        if tx is not None:
            yield tx
            return

        async with self._tx_lock:
            conn = self.connection
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _harden_permissions(self) -> None:
        """Set restrictive file permissions on POSIX systems (best effort).

        Hardens the main DB file and WAL/SHM sibling files created by WAL mode,
        since they also contain database content (unrevealed server seeds).
        """
        if os.name != "posix":  # pragma: no cover
            return
        for suffix in ("", "-wal", "-shm"):
            p = Path(self._path + suffix)
            if p.exists():
                try:
                    p.chmod(_DB_FILE_PERMISSIONS)
                except OSError:
                    logger.warning("could not set file permissions", permissions=oct(_DB_FILE_PERMISSIONS), path=str(p))
