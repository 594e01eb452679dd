from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from shared.dal.models import FairnessSeed, FairnessSeedStatus
from shared.db.fairness_repository import SqliteFairnessSeedRepository
from shared.db.session_repository import SqliteSessionRepository
from shared.tests.conftest import NOW, SESSION_ID


def _seed(seed_id: str, offset: int = 0) -> FairnessSeed:
    return FairnessSeed(
        id=seed_id,
        seed=f"seed-{seed_id}",
        seed_hash=f"hash-{seed_id}",
        tx_hash=f"mock_{seed_id}",
        created_at=NOW + timedelta(seconds=offset),
    )


@pytest.fixture
async def repo(db, session):  # noqa: ARG001
    repository = SqliteFairnessSeedRepository(db)
    await repository.insert_seed(_seed("f1", 0))
    await repository.insert_seed(_seed("f2", 1))
    return repository


class TestSeedPool:
    async def test_claims_oldest_then_none(self, repo):
        assert (await repo.claim_oldest_available(NOW)).id == "f1"
        assert (await repo.claim_oldest_available(NOW)).id == "f2"
        assert await repo.claim_oldest_available(NOW) is None

    async def test_reveal_only_assigned(self, repo):
        assert not await repo.mark_revealed("f1", NOW)
        await repo.claim_oldest_available(NOW)
        assert await repo.mark_revealed("f1", NOW)
        seed = await repo.get_seed("f1")
        assert seed.status == FairnessSeedStatus.REVEALED
        assert seed.revealed_at == NOW

    async def test_counts(self, repo):
        await repo.claim_oldest_available(NOW)
        counts = await repo.count_by_status()
        assert counts[FairnessSeedStatus.AVAILABLE] == 1
        assert counts[FairnessSeedStatus.ASSIGNED] == 1
        assert counts[FairnessSeedStatus.REVEALED] == 0

    async def test_duplicate_hash_rejected(self, repo):
        with pytest.raises(ValueError, match="already exists"):
            await repo.insert_seed(_seed("f1"))


class TestStreamState:
    async def test_upsert_resets_nonce(self, repo):
        state = await repo.upsert_state(SESSION_ID, "f1", "client", "hmac_sha256_v1", NOW)
        assert state.next_nonce == 0
        await repo.increment_nonce(SESSION_ID, NOW)

        state = await repo.upsert_state(SESSION_ID, "f2", "client-2", "hmac_sha256_v1", NOW)
        assert (state.seed_id, state.client_seed, state.next_nonce) == ("f2", "client-2", 0)

    async def test_increment_returns_post_state(self, repo):
        await repo.upsert_state(SESSION_ID, "f1", "client", "hmac_sha256_v1", NOW)
        first = await repo.increment_nonce(SESSION_ID, NOW)
        second = await repo.increment_nonce(SESSION_ID, NOW)
        assert (first.next_nonce, second.next_nonce) == (1, 2)

    async def test_increment_unknown_session(self, repo):
        assert await repo.increment_nonce("missing", NOW) is None

    async def test_client_seed_editable_until_first_nonce(self, repo):
        await repo.upsert_state(SESSION_ID, "f1", "client", "hmac_sha256_v1", NOW)
        assert await repo.set_client_seed_if_unused(SESSION_ID, "mine", NOW)
        await repo.increment_nonce(SESSION_ID, NOW)
        assert not await repo.set_client_seed_if_unused(SESSION_ID, "late", NOW)
        assert (await repo.get_state(SESSION_ID)).client_seed == "mine"

    async def test_seed_belongs_to_one_session(self, repo, db):
        await SqliteSessionRepository(db).create_session("s2", "t1other")
        await repo.upsert_state(SESSION_ID, "f1", "client", "hmac_sha256_v1", NOW)
        with pytest.raises(sqlite3.IntegrityError):
            await repo.upsert_state("s2", "f1", "client", "hmac_sha256_v1", NOW)
