"""
Pre-committed server seed pool for per-game fairness.

Each pooled commitment is a server seed whose hash was published on-chain
before any game could use it. Games claim the oldest available commitment;
a background refill keeps the pool topped up one commitment per cycle, since
the commitment node cannot fund a new transaction until the change output of
the previous one has matured.
"""

from __future__ import annotations

import asyncio
import sqlite3
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from fairness.exceptions import BlockchainUnavailableError, CommitmentUnavailableError, WitnessNotReadyError
from fairness.seeds import generate_server_seed, hash_server_seed
from shared.dal.models import CommitmentStatus, SeedCommitment
from shared.db.commitment_repository import SqliteCommitmentRepository
from shared.db.connection import utc_now

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from fairness.chain.base import CommitmentService
    from fairness.settings import FairnessSettings
    from shared.dal.commitment_repository import CommitmentRepository
    from shared.db.connection import Database

logger = structlog.get_logger()


class PoolStatus(BaseModel, frozen=True):
    available: int
    claimed: int
    used: int
    expired: int
    total: int
    is_healthy: bool
    blockchain_available: bool


class RefillResult(BaseModel, frozen=True):
    created: int = 0
    reclaimed: int = 0
    skipped: bool = False
    error: str | None = None


class CommitmentPoolManager:
    """Owns the lifecycle of pooled commitments: claim, use, release, reclaim, expire, refill."""

    def __init__(
        self,
        db: Database,
        chain: CommitmentService,
        settings: FairnessSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo: CommitmentRepository = SqliteCommitmentRepository(db)
        self._chain = chain
        self._settings = settings
        self._clock = clock
        self._refill_task: asyncio.Task[RefillResult] | None = None
        self._background_tasks: list[asyncio.Task[None]] = []
        self._triggered: set[asyncio.Task[RefillResult]] = set()

    @property
    def repository(self) -> CommitmentRepository:
        return self._repo

    async def _create_commitment(self, *, claimed: bool) -> SeedCommitment:
        server_seed = generate_server_seed()
        server_seed_hash = hash_server_seed(server_seed)
        receipt = await self._chain.create_commitment(server_seed_hash)
        now = self._clock()
        commitment = SeedCommitment(
            id=str(uuid.uuid4()),
            server_seed=server_seed,
            server_seed_hash=server_seed_hash,
            tx_hash=receipt.tx_hash,
            block_height=receipt.block_height,
            block_timestamp=receipt.block_timestamp,
            status=CommitmentStatus.CLAIMED if claimed else CommitmentStatus.AVAILABLE,
            claimed_at=now if claimed else None,
            created_at=now,
            expires_at=now + timedelta(hours=self._settings.commitment_expiry_hours),
        )
        await self._repo.insert_commitment(commitment)
        return commitment

    async def get_or_create_commitment(self) -> SeedCommitment:
        """Claim the oldest pooled commitment, or create one synchronously when the pool is empty.

        The fallback is attempted once. Raises CommitmentUnavailableError when
        the pool is empty and the chain cannot produce a commitment.
        """
        commitment = await self._repo.claim_oldest_available(self._clock())
        if commitment is not None:
            logger.debug("claimed pooled commitment", commitment_id=commitment.id)
            return commitment

        logger.warning("commitment pool empty, creating commitment synchronously")
        try:
            commitment = await self._create_commitment(claimed=True)
        except BlockchainUnavailableError as exc:
            raise CommitmentUnavailableError(f"Commitment pool is empty and fallback creation failed: {exc}") from exc
        logger.info("created fallback commitment", commitment_id=commitment.id, tx_hash=commitment.tx_hash)
        return commitment

    async def mark_commitment_used(
        self,
        commitment_id: str,
        game_id: str,
        tx: sqlite3.Connection | None = None,
    ) -> bool:
        used = await self._repo.mark_used(commitment_id, game_id, self._clock(), tx)
        if not used:
            logger.warning("commitment was not in claimed state", commitment_id=commitment_id, game_id=game_id)
        return used

    async def release_claimed_commitment(self, commitment_id: str, tx: sqlite3.Connection | None = None) -> bool:
        released = await self._repo.release_claimed(commitment_id, tx)
        if released:
            logger.info("released claimed commitment", commitment_id=commitment_id)
        return released

    async def reclaim_stale_claims(self) -> int:
        cutoff = self._clock() - timedelta(minutes=self._settings.claim_stale_minutes)
        reclaimed = await self._repo.reclaim_stale(cutoff)
        if reclaimed:
            logger.info("reclaimed stale commitment claims", count=reclaimed)
        return reclaimed

    async def expire_commitments(self) -> int:
        expired = await self._repo.expire_available(self._clock())
        if expired:
            logger.info("expired unused commitments", count=expired)
        return expired

    async def check_and_refill_pool(self) -> RefillResult:
        """Top up the pool; concurrent callers share a single in-flight run."""
        if self._refill_task is None or self._refill_task.done():
            self._refill_task = asyncio.create_task(self._refill())
        return await asyncio.shield(self._refill_task)

    async def _refill(self) -> RefillResult:
        reclaimed = await self.reclaim_stale_claims()
        counts = await self._repo.count_by_status(self._clock())
        available = counts[CommitmentStatus.AVAILABLE]
        if available > self._settings.pool_auto_refill_threshold:
            return RefillResult(reclaimed=reclaimed, skipped=True)

        needed = self._settings.pool_target_size - available
        to_create = min(needed, self._settings.refill_max_per_run)
        created = 0
        error = None
        for _ in range(to_create):
            try:
                await self._create_commitment(claimed=False)
            except WitnessNotReadyError as exc:
                logger.info("commitment witness not matured, retrying next cycle", error=str(exc))
                error = str(exc)
                break
            except BlockchainUnavailableError as exc:
                logger.warning("commitment creation failed during refill", error=str(exc))
                error = str(exc)
                break
            created += 1

        logger.info("commitment pool refill", available=available, created=created, needed=needed)
        return RefillResult(created=created, reclaimed=reclaimed, error=error)

    def trigger_refill(self) -> None:
        """Schedule a refill without waiting for it."""
        task = asyncio.create_task(self.check_and_refill_pool())
        self._triggered.add(task)
        task.add_done_callback(self._on_triggered_done)

    def _on_triggered_done(self, task: asyncio.Task[RefillResult]) -> None:
        self._triggered.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("background refill failed", error=str(task.exception()))

    async def get_pool_status(self) -> PoolStatus:
        counts = await self._repo.count_by_status(self._clock())
        available = counts[CommitmentStatus.AVAILABLE]
        return PoolStatus(
            available=available,
            claimed=counts[CommitmentStatus.CLAIMED],
            used=counts[CommitmentStatus.USED],
            expired=counts[CommitmentStatus.EXPIRED],
            total=sum(counts.values()),
            is_healthy=available >= self._settings.pool_min_healthy,
            blockchain_available=await self._chain.is_available(),
        )

    def start(self) -> None:
        """Start the refill and cleanup loops. Calling twice is a no-op."""
        if self._background_tasks:
            return
        self._background_tasks = [
            asyncio.create_task(_run_every(self._settings.check_interval_seconds, self.check_and_refill_pool, "refill")),
            asyncio.create_task(_run_every(self._settings.cleanup_interval_seconds, self._cleanup, "cleanup")),
        ]
        logger.info("commitment pool manager started")

    async def stop(self) -> None:
        tasks = [*self._background_tasks, *self._triggered]
        if self._refill_task is not None:
            tasks.append(self._refill_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks = []
        self._triggered.clear()
        self._refill_task = None
        logger.info("commitment pool manager stopped")

    async def _cleanup(self) -> None:
        await self.expire_commitments()
        await self.reclaim_stale_claims()


async def _run_every(interval: float, job: Callable[[], Awaitable[object]], name: str) -> None:
    """Run ``job`` immediately and then every ``interval`` seconds until cancelled."""
    while True:
        try:
            await job()
        except (BlockchainUnavailableError, sqlite3.Error, OSError, RuntimeError, ValueError):
            logger.exception("pool maintenance cycle failed", job=name)
        await asyncio.sleep(interval)
