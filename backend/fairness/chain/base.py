"""Blockchain commitment collaborator interface.

A commitment publishes a server-seed hash on-chain before the seed is used,
so the house cannot change the seed after a bet is placed. Implementations
must respect the witness-maturation delay: the change output of a commitment
transaction cannot fund the next one until it has matured (about 75 seconds),
and a premature attempt fails with ``WitnessNotReadyError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel

MOCK_TX_PREFIX = "mock_"
COMMITMENT_MEMO_PREFIX = "ZCASHINO_COMMIT_V1:"

_EXPLORER_URLS = {
    "mainnet": "https://zcashblockexplorer.com",
    "testnet": "https://testnet.zcashblockexplorer.com",
}


class CommitmentReceipt(BaseModel, frozen=True):
    tx_hash: str
    block_height: int | None = None
    block_timestamp: datetime


class CommitmentVerification(BaseModel, frozen=True):
    valid: bool
    block_height: int | None = None
    block_timestamp: datetime | None = None
    error: str | None = None


class CommitmentService(ABC):
    """Publishes seed hashes on-chain and checks previously published ones."""

    @abstractmethod
    async def create_commitment(self, server_seed_hash: str) -> CommitmentReceipt:
        """Broadcast a commitment for ``server_seed_hash`` and wait for its txid.

        Raises BlockchainUnavailableError when the node cannot be used, or
        WitnessNotReadyError when the previous commitment has not matured.
        """

    @abstractmethod
    async def verify_commitment(self, tx_hash: str, expected_hash: str) -> CommitmentVerification:
        """Check that ``tx_hash`` is a confirmed commitment. Never raises for a negative result."""

    @abstractmethod
    async def is_available(self) -> bool: ...


def is_mock_tx(tx_hash: str | None) -> bool:
    return bool(tx_hash) and tx_hash.startswith(MOCK_TX_PREFIX)


def explorer_url(tx_hash: str, network: str = "testnet") -> str:
    if is_mock_tx(tx_hash):
        return f"/verify?mock=true&tx={tx_hash}"
    return f"{_EXPLORER_URLS.get(network, _EXPLORER_URLS['testnet'])}/tx/{tx_hash}"


class CommitmentInfo(BaseModel, frozen=True):
    """Public proof of a commitment, as shown to players next to a game."""

    tx_hash: str
    block_height: int | None = None
    block_timestamp: datetime | None = None
    explorer_url: str


def commitment_info(
    tx_hash: str | None,
    block_height: int | None = None,
    block_timestamp: datetime | None = None,
    network: str = "testnet",
) -> CommitmentInfo | None:
    if not tx_hash:
        return None
    return CommitmentInfo(
        tx_hash=tx_hash,
        block_height=block_height,
        block_timestamp=block_timestamp,
        explorer_url=explorer_url(tx_hash, network),
    )
