"""In-memory commitment service for demo and development use.

Commitments live only in process memory, so they stop verifying after a
restart. Never used on mainnet.
"""

from __future__ import annotations

import secrets
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from fairness.chain.base import (
    MOCK_TX_PREFIX,
    CommitmentReceipt,
    CommitmentService,
    CommitmentVerification,
)
from fairness.exceptions import BlockchainUnavailableError, WitnessNotReadyError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()

MOCK_START_BLOCK_HEIGHT = 2_500_000


class MockCommitmentService(CommitmentService):
    """Records commitments in a dict keyed by ``mock_`` transaction hashes.

    ``maturation_seconds`` simulates the witness-maturation delay between
    consecutive commitments (0 disables it). ``clock`` is a monotonic time
    source, injectable for tests.
    """

    def __init__(
        self,
        network: str = "testnet",
        maturation_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if network == "mainnet":
            raise BlockchainUnavailableError("Mock commitments are forbidden on mainnet")
        self._maturation_seconds = maturation_seconds
        self._clock = clock
        self._commitments: dict[str, CommitmentReceipt] = {}
        self._hashes: dict[str, str] = {}
        self._next_height = MOCK_START_BLOCK_HEIGHT
        self._last_created: float | None = None
        self.available = True

    @property
    def commitment_count(self) -> int:
        return len(self._commitments)

    async def create_commitment(self, server_seed_hash: str) -> CommitmentReceipt:
        if not self.available:
            raise BlockchainUnavailableError("Mock node offline")
        now = self._clock()
        if (
            self._maturation_seconds > 0
            and self._last_created is not None
            and now - self._last_created < self._maturation_seconds
        ):
            raise WitnessNotReadyError("Missing witness for change output (not yet matured)")

        tx_hash = f"{MOCK_TX_PREFIX}{secrets.token_hex(8)}_{server_seed_hash[:8]}"
        receipt = CommitmentReceipt(
            tx_hash=tx_hash,
            block_height=self._next_height,
            block_timestamp=datetime.now(tz=UTC),
        )
        self._next_height += 1
        self._last_created = now
        self._commitments[tx_hash] = receipt
        self._hashes[tx_hash] = server_seed_hash
        logger.info("created mock commitment", tx_hash=tx_hash, block_height=receipt.block_height)
        return receipt

    async def verify_commitment(self, tx_hash: str, expected_hash: str) -> CommitmentVerification:
        receipt = self._commitments.get(tx_hash)
        if receipt is None:
            return CommitmentVerification(
                valid=False,
                error="Mock commitment not found (may have expired or server restarted)",
            )
        if self._hashes[tx_hash] != expected_hash:
            return CommitmentVerification(valid=False, error="Hash mismatch - commitment does not match expected hash")
        return CommitmentVerification(
            valid=True,
            block_height=receipt.block_height,
            block_timestamp=receipt.block_timestamp,
        )

    async def is_available(self) -> bool:
        return self.available
