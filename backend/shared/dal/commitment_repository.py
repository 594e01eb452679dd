"""Abstract interface for the per-game seed commitment pool."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import sqlite3
    from datetime import datetime

    from shared.dal.models import CommitmentStatus, SeedCommitment


class CommitmentRepository(ABC):
    @abstractmethod
    async def insert_commitment(self, commitment: SeedCommitment) -> None: ...

    @abstractmethod
    async def get_commitment(self, commitment_id: str) -> SeedCommitment | None: ...

    @abstractmethod
    async def get_by_tx_hash(self, tx_hash: str) -> SeedCommitment | None: ...

    @abstractmethod
    async def claim_oldest_available(self, now: datetime) -> SeedCommitment | None: ...

    @abstractmethod
    async def mark_used(
        self,
        commitment_id: str,
        game_id: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> bool: ...

    @abstractmethod
    async def release_claimed(self, commitment_id: str, tx: sqlite3.Connection | None = None) -> bool: ...

    @abstractmethod
    async def reclaim_stale(self, cutoff: datetime) -> int: ...

    @abstractmethod
    async def expire_available(self, now: datetime) -> int: ...

    @abstractmethod
    async def count_by_status(self, now: datetime) -> dict[CommitmentStatus, int]: ...
