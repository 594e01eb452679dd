"""Abstract interface for the session fairness seed pool and per-session stream state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import sqlite3
    from datetime import datetime

    from shared.dal.models import FairnessSeed, FairnessSeedStatus, SessionFairnessState


class FairnessSeedRepository(ABC):
    """Methods that take ``tx`` join the caller's transaction when one is given."""

    @abstractmethod
    async def insert_seed(self, seed: FairnessSeed) -> None: ...

    @abstractmethod
    async def get_seed(self, seed_id: str, tx: sqlite3.Connection | None = None) -> FairnessSeed | None: ...

    @abstractmethod
    async def claim_oldest_available(
        self,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> FairnessSeed | None: ...

    @abstractmethod
    async def mark_revealed(self, seed_id: str, now: datetime, tx: sqlite3.Connection | None = None) -> bool: ...

    @abstractmethod
    async def count_by_status(self) -> dict[FairnessSeedStatus, int]: ...

    @abstractmethod
    async def get_state(self, session_id: str, tx: sqlite3.Connection | None = None) -> SessionFairnessState | None: ...

    @abstractmethod
    async def upsert_state(
        self,
        session_id: str,
        seed_id: str,
        client_seed: str,
        fairness_version: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> SessionFairnessState: ...

    @abstractmethod
    async def increment_nonce(
        self,
        session_id: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> SessionFairnessState | None: ...

    @abstractmethod
    async def set_client_seed_if_unused(
        self,
        session_id: str,
        client_seed: str,
        now: datetime,
        tx: sqlite3.Connection | None = None,
    ) -> bool: ...
