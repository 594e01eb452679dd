"""Abstract interface for player session persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import sqlite3
    from datetime import datetime
    from decimal import Decimal

    from shared.dal.models import PlayerSession


class SessionRepository(ABC):
    """Abstract interface for player session persistence. Balances are not written here."""

    @abstractmethod
    async def create_session(
        self,
        session_id: str,
        wallet_address: str,
        balance: Decimal | int = 0,
        created_at: datetime | None = None,
    ) -> PlayerSession: ...

    @abstractmethod
    async def get_session(self, session_id: str, tx: sqlite3.Connection | None = None) -> PlayerSession | None: ...

    @abstractmethod
    async def set_limits(
        self,
        session_id: str,
        *,
        loss_limit: Decimal | None = None,
        deposit_limit: Decimal | None = None,
        session_limit_minutes: int | None = None,
    ) -> bool: ...

    @abstractmethod
    async def exclude_until(self, session_id: str, until: datetime) -> bool: ...

    @abstractmethod
    async def touch(self, session_id: str, tx: sqlite3.Connection | None = None) -> None: ...
