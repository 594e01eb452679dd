"""
Session-scoped seed streams for the ``session_nonce_v1`` fairness mode.

A session holds one committed server seed at a time and derives each game
from ``(server_seed, client_seed, nonce)`` with a strictly increasing nonce.
The client seed may be changed only before the first nonce is allocated.
Rotating reveals the old seed so every game played under it can be verified.
"""

from __future__ import annotations

import asyncio
import sqlite3
import uuid
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from fairness.exceptions import (
    BlockchainUnavailableError,
    ClientSeedLockedError,
    SessionFairnessUnavailableError,
)
from fairness.seeds import (
    MAX_CLIENT_SEED_LENGTH,
    generate_client_seed,
    generate_server_seed,
    hash_server_seed,
    normalize_client_seed,
)
from game.logic.enums import FairnessMode, FairnessVersion
from shared.dal.models import FairnessSeed, FairnessSeedStatus
from shared.db.connection import utc_now
from shared.db.fairness_repository import SqliteFairnessSeedRepository

if TYPE_CHECKING:
    from collections.abc import Callable

    from fairness.chain.base import CommitmentService
    from fairness.settings import FairnessSettings
    from shared.dal.fairness_repository import FairnessSeedRepository
    from shared.dal.models import SessionFairnessState
    from shared.db.connection import Database

logger = structlog.get_logger()


class ActiveFairnessState(BaseModel, frozen=True):
    session_id: str
    seed_id: str
    server_seed: str
    server_seed_hash: str
    commitment_tx_hash: str
    commitment_block: int | None = None
    commitment_timestamp: datetime | None = None
    client_seed: str
    next_nonce: int
    fairness_version: FairnessVersion


class AllocatedNonce(BaseModel, frozen=True):
    seed_id: str
    server_seed: str
    server_seed_hash: str
    commitment_tx_hash: str
    commitment_block: int | None = None
    commitment_timestamp: datetime | None = None
    client_seed: str
    nonce: int
    next_nonce: int
    fairness_version: FairnessVersion


class FairnessPublicState(BaseModel, frozen=True):
    """What a client may see about its active stream. Never carries the raw seed."""

    mode: FairnessMode = FairnessMode.SESSION_NONCE_V1
    server_seed_hash: str
    commitment_tx_hash: str
    commitment_block: int | None = None
    commitment_timestamp: datetime | None = None
    client_seed: str
    next_nonce: int
    can_edit_client_seed: bool
    fairness_version: FairnessVersion


class SeedReveal(BaseModel, frozen=True):
    mode: FairnessMode = FairnessMode.SESSION_NONCE_V1
    server_seed: str
    server_seed_hash: str
    client_seed: str
    last_nonce_used: int | None = None
    tx_hash: str
    block_height: int | None = None
    block_timestamp: datetime | None = None


class RotateSeedResult(BaseModel, frozen=True):
    reveal: SeedReveal
    active: FairnessPublicState


class RevealState(BaseModel, frozen=True):
    server_seed: str | None = None
    is_revealed: bool = False


class SeedPoolStatus(BaseModel, frozen=True):
    available: int
    assigned: int
    revealed: int
    expired: int
    is_healthy: bool


def _active(state: SessionFairnessState, seed: FairnessSeed) -> ActiveFairnessState:
    return ActiveFairnessState(
        session_id=state.session_id,
        seed_id=seed.id,
        server_seed=seed.seed,
        server_seed_hash=seed.seed_hash,
        commitment_tx_hash=seed.tx_hash,
        commitment_block=seed.block_height,
        commitment_timestamp=seed.block_timestamp,
        client_seed=state.client_seed,
        next_nonce=state.next_nonce,
        fairness_version=FairnessVersion(state.fairness_version),
    )


def _public(active: ActiveFairnessState) -> FairnessPublicState:
    return FairnessPublicState(
        server_seed_hash=active.server_seed_hash,
        commitment_tx_hash=active.commitment_tx_hash,
        commitment_block=active.commitment_block,
        commitment_timestamp=active.commitment_timestamp,
        client_seed=active.client_seed,
        next_nonce=active.next_nonce,
        can_edit_client_seed=active.next_nonce == 0,
        fairness_version=active.fairness_version,
    )


class SessionFairnessStream:
    """Assigns anchored seeds to sessions and hands out nonces from them."""

    def __init__(
        self,
        db: Database,
        chain: CommitmentService,
        settings: FairnessSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._repo: FairnessSeedRepository = SqliteFairnessSeedRepository(db)
        self._chain = chain
        self._settings = settings
        self._clock = clock
        self._refill_lock = asyncio.Lock()
        self._refill_task: asyncio.Task[None] | None = None

    @property
    def repository(self) -> FairnessSeedRepository:
        return self._repo

    async def _load_active(self, session_id: str, tx: sqlite3.Connection) -> ActiveFairnessState | None:
        state = await self._repo.get_state(session_id, tx)
        if state is None:
            return None
        seed = await self._repo.get_seed(state.seed_id, tx)
        if seed is None or seed.status != FairnessSeedStatus.ASSIGNED:
            return None
        return _active(state, seed)

    async def _ensure_in_transaction(self, session_id: str, tx: sqlite3.Connection) -> ActiveFairnessState | None:
        active = await self._load_active(session_id, tx)
        if active is not None:
            return active

        now = self._clock()
        seed = await self._repo.claim_oldest_available(now, tx)
        if seed is None:
            return None
        state = await self._repo.upsert_state(
            session_id,
            seed.id,
            generate_client_seed(),
            FairnessVersion.HMAC_SHA256_V1,
            now,
            tx,
        )
        logger.info("assigned fairness seed to session", session_id=session_id, seed_id=seed.id)
        return _active(state, seed)

    async def create_anchored_seed(self) -> FairnessSeed | None:
        """Commit a fresh seed on-chain and add it to the pool. Returns None when the chain refuses."""
        server_seed = generate_server_seed()
        seed_hash = hash_server_seed(server_seed)
        try:
            receipt = await self._chain.create_commitment(seed_hash)
        except BlockchainUnavailableError as exc:
            logger.warning("failed to anchor fairness seed", seed_hash_prefix=seed_hash[:12], error=str(exc))
            return None

        seed = FairnessSeed(
            id=str(uuid.uuid4()),
            seed=server_seed,
            seed_hash=seed_hash,
            tx_hash=receipt.tx_hash,
            block_height=receipt.block_height,
            block_timestamp=receipt.block_timestamp,
            created_at=self._clock(),
        )
        await self._repo.insert_seed(seed)
        return seed

    async def ensure_active_fairness_state(
        self,
        session_id: str,
        tx: sqlite3.Connection | None = None,
    ) -> ActiveFairnessState:
        """Return the session's active stream, assigning a seed if it has none.

        Inside a caller transaction no on-demand seed is created, since that
        would hold the write lock across a chain round-trip.
        """
        if tx is not None:
            active = await self._ensure_in_transaction(session_id, tx)
            if active is None:
                raise SessionFairnessUnavailableError("No fairness seed is available for this session")
            return active

        async with self._db.transaction() as conn:
            active = await self._ensure_in_transaction(session_id, conn)
        if active is None and self._settings.session_seed_on_demand:
            await self.create_anchored_seed()
            async with self._db.transaction() as conn:
                active = await self._ensure_in_transaction(session_id, conn)
        if active is None:
            raise SessionFairnessUnavailableError("No fairness seed is available for this session")
        return active

    async def get_public_state(self, session_id: str) -> FairnessPublicState:
        return _public(await self.ensure_active_fairness_state(session_id))

    async def allocate_nonce(self, session_id: str, tx: sqlite3.Connection | None = None) -> AllocatedNonce:
        """Reserve the next nonce of the session's stream and return it with the seed data."""
        async with self._db.transaction(tx) as conn:
            active = await self.ensure_active_fairness_state(session_id, conn)
            state = await self._repo.increment_nonce(session_id, self._clock(), conn)
            if state is None:
                raise SessionFairnessUnavailableError("Fairness state vanished while allocating a nonce")
        return AllocatedNonce(
            seed_id=active.seed_id,
            server_seed=active.server_seed,
            server_seed_hash=active.server_seed_hash,
            commitment_tx_hash=active.commitment_tx_hash,
            commitment_block=active.commitment_block,
            commitment_timestamp=active.commitment_timestamp,
            client_seed=state.client_seed,
            nonce=state.next_nonce - 1,
            next_nonce=state.next_nonce,
            fairness_version=FairnessVersion(state.fairness_version),
        )

    async def set_client_seed(
        self,
        session_id: str,
        client_seed: str,
        tx: sqlite3.Connection | None = None,
    ) -> FairnessPublicState:
        """Replace the client seed. Raises ClientSeedLockedError once a nonce has been used."""
        normalized = normalize_client_seed(client_seed)
        async with self._db.transaction(tx) as conn:
            await self.ensure_active_fairness_state(session_id, conn)
            if not await self._repo.set_client_seed_if_unused(session_id, normalized, self._clock(), conn):
                raise ClientSeedLockedError("Client seed can only be changed before the first game of this seed")
            active = await self._load_active(session_id, conn)
        if active is None:
            raise SessionFairnessUnavailableError("Fairness state vanished while setting client seed")
        return _public(active)

    async def _rotate_in_transaction(
        self,
        session_id: str,
        next_client_seed: str | None,
        tx: sqlite3.Connection,
    ) -> RotateSeedResult | None:
        current = await self._load_active(session_id, tx)
        if current is None:
            return None
        now = self._clock()
        replacement = await self._repo.claim_oldest_available(now, tx)
        if replacement is None:
            return None

        await self._repo.mark_revealed(current.seed_id, now, tx)
        candidate = (next_client_seed or "").strip()
        client_seed = candidate[:MAX_CLIENT_SEED_LENGTH] if candidate else current.client_seed
        state = await self._repo.upsert_state(
            session_id,
            replacement.id,
            client_seed,
            FairnessVersion.HMAC_SHA256_V1,
            now,
            tx,
        )
        reveal = SeedReveal(
            server_seed=current.server_seed,
            server_seed_hash=current.server_seed_hash,
            client_seed=current.client_seed,
            last_nonce_used=current.next_nonce - 1 if current.next_nonce > 0 else None,
            tx_hash=current.commitment_tx_hash,
            block_height=current.commitment_block,
            block_timestamp=current.commitment_timestamp,
        )
        return RotateSeedResult(reveal=reveal, active=_public(_active(state, replacement)))

    async def rotate_seed(self, session_id: str, next_client_seed: str | None = None) -> RotateSeedResult:
        """Reveal the current seed and switch the session to a fresh one with the nonce reset."""
        await self.ensure_active_fairness_state(session_id)

        async with self._db.transaction() as conn:
            rotated = await self._rotate_in_transaction(session_id, next_client_seed, conn)
        if rotated is None and self._settings.session_seed_on_demand:
            await self.create_anchored_seed()
            async with self._db.transaction() as conn:
                rotated = await self._rotate_in_transaction(session_id, next_client_seed, conn)
        if rotated is None:
            raise SessionFairnessUnavailableError("Unable to rotate seed because no replacement seed is available")

        logger.info(
            "rotated fairness seed",
            session_id=session_id,
            revealed_hash=rotated.reveal.server_seed_hash,
            last_nonce_used=rotated.reveal.last_nonce_used,
        )
        return rotated

    async def get_revealable_server_seed(self, seed_id: str | None, fallback_seed: str | None) -> RevealState:
        """The raw seed a verifier may see: only once its stream has been rotated away."""
        if seed_id is None:
            return RevealState(server_seed=fallback_seed, is_revealed=fallback_seed is not None)
        seed = await self._repo.get_seed(seed_id)
        if seed is None:
            return RevealState()
        is_revealed = seed.status == FairnessSeedStatus.REVEALED
        return RevealState(server_seed=seed.seed if is_revealed else None, is_revealed=is_revealed)

    async def resolve_server_seed(self, seed_id: str, tx: sqlite3.Connection | None = None) -> str | None:
        """Raw seed for server-side replay of an active game. Never sent to clients."""
        seed = await self._repo.get_seed(seed_id, tx)
        return seed.seed if seed is not None else None

    # --- seed pool maintenance ---

    async def get_pool_status(self) -> SeedPoolStatus:
        counts = await self._repo.count_by_status()
        return SeedPoolStatus(
            available=counts[FairnessSeedStatus.AVAILABLE],
            assigned=counts[FairnessSeedStatus.ASSIGNED],
            revealed=counts[FairnessSeedStatus.REVEALED],
            expired=counts[FairnessSeedStatus.EXPIRED],
            is_healthy=counts[FairnessSeedStatus.AVAILABLE] >= self._settings.session_pool_min,
        )

    async def check_and_refill(self) -> int:
        """Create at most one anchored seed when the pool is below its minimum."""
        if self._refill_lock.locked():
            return 0
        async with self._refill_lock:
            counts = await self._repo.count_by_status()
            available = counts[FairnessSeedStatus.AVAILABLE]
            if available >= self._settings.session_pool_min:
                return 0
            to_create = min(self._settings.session_pool_target - available, self._settings.refill_max_per_run)
            created = 0
            for _ in range(to_create):
                if await self.create_anchored_seed() is None:
                    break
                created += 1
            logger.info("fairness seed pool refill", available=available, created=created)
            return created

    def start(self) -> None:
        if self._refill_task is not None:
            return
        self._refill_task = asyncio.create_task(self._run())
        logger.info("fairness seed pool maintenance started")

    async def stop(self) -> None:
        if self._refill_task is None:
            return
        self._refill_task.cancel()
        await asyncio.gather(self._refill_task, return_exceptions=True)
        self._refill_task = None
        logger.info("fairness seed pool maintenance stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.check_and_refill()
            except (sqlite3.Error, ValueError, RuntimeError):
                logger.exception("fairness seed pool refill failed")
            await asyncio.sleep(self._settings.check_interval_seconds)
