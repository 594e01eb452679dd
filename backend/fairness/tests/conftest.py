from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from fairness.chain.mock import MockCommitmentService
from fairness.pool import CommitmentPoolManager
from fairness.session_stream import SessionFairnessStream
from fairness.settings import FairnessSettings
from game.logic.enums import FairnessMode
from shared.db.connection import Database
from shared.db.session_repository import SqliteSessionRepository

if TYPE_CHECKING:
    from pathlib import Path

SESSION_ID = "fair-session"


class FakeClock:
    """Monotonic seconds that only move when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db(tmp_path: Path):
    database = Database(tmp_path / "fairness.db")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def chain() -> MockCommitmentService:
    return MockCommitmentService()


@pytest.fixture
def settings() -> FairnessSettings:
    return FairnessSettings(
        demo_mode=True,
        pool_target_size=3,
        pool_min_healthy=1,
        pool_auto_refill_threshold=1,
        refill_max_per_run=2,
        session_pool_min=1,
        session_pool_target=3,
        mode=FairnessMode.SESSION_NONCE_V1,
    )


@pytest.fixture
async def pool(db, chain, settings):
    manager = CommitmentPoolManager(db, chain, settings)
    yield manager
    await manager.stop()


@pytest.fixture
async def stream(db, chain, settings):
    fairness_stream = SessionFairnessStream(db, chain, settings)
    yield fairness_stream
    await fairness_stream.stop()


@pytest.fixture
async def session(db):
    return await SqliteSessionRepository(db).create_session(SESSION_ID, "t1wallet", Decimal(5))
