"""Data access layer: repository interfaces and shared persistence models."""

from shared.dal.commitment_repository import CommitmentRepository
from shared.dal.fairness_repository import FairnessSeedRepository
from shared.dal.game_repository import GameRepository
from shared.dal.models import (
    CommitmentStatus,
    FairnessSeed,
    FairnessSeedStatus,
    GameRecord,
    GameStatus,
    PlayerSession,
    SeedCommitment,
    SessionFairnessState,
)
from shared.dal.session_repository import SessionRepository

__all__ = [
    "CommitmentRepository",
    "CommitmentStatus",
    "FairnessSeed",
    "FairnessSeedRepository",
    "FairnessSeedStatus",
    "GameRecord",
    "GameRepository",
    "GameStatus",
    "PlayerSession",
    "SeedCommitment",
    "SessionFairnessState",
    "SessionRepository",
]
