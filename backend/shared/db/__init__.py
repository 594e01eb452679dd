"""SQLite database layer: connection management and repository implementations."""

from shared.db.commitment_repository import SqliteCommitmentRepository
from shared.db.connection import Database
from shared.db.fairness_repository import SqliteFairnessSeedRepository
from shared.db.game_repository import SqliteGameRepository
from shared.db.session_repository import SqliteSessionRepository

__all__ = [
    "Database",
    "SqliteCommitmentRepository",
    "SqliteFairnessSeedRepository",
    "SqliteGameRepository",
    "SqliteSessionRepository",
]
