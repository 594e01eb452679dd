"""Abstract interface for blackjack game persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import sqlite3
    from datetime import datetime
    from decimal import Decimal

    from shared.dal.models import GameRecord


class GameRepository(ABC):
    """Abstract interface for blackjack game persistence.

    Writes that take ``tx`` run inside the caller's transaction. Conditional
    writes return False when the row was not in the expected state.
    """

    @abstractmethod
    async def create_game(self, tx: sqlite3.Connection, game: GameRecord) -> None: ...

    @abstractmethod
    async def get_game(self, game_id: str, tx: sqlite3.Connection | None = None) -> GameRecord | None: ...

    @abstractmethod
    async def get_session_games(self, session_id: str, limit: int = 50) -> list[GameRecord]: ...

    @abstractmethod
    async def get_last_nonce(self, session_id: str, tx: sqlite3.Connection | None = None) -> int | None: ...

    @abstractmethod
    async def append_action(
        self,
        tx: sqlite3.Connection,
        game_id: str,
        action: str,
        expected_length: int,
    ) -> bool: ...

    @abstractmethod
    async def set_insurance_bet(self, tx: sqlite3.Connection, game_id: str, amount: Decimal) -> bool: ...

    @abstractmethod
    async def complete_game(
        self,
        tx: sqlite3.Connection,
        game_id: str,
        outcome: str,
        payout: Decimal,
        completed_at: datetime | None = None,
    ) -> bool: ...

    @abstractmethod
    async def mark_verified_on_chain(self, game_id: str) -> bool: ...
