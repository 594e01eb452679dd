"""Persistence models for the data access layer.

Amounts are exposed as ``Decimal`` ZEC; the repositories convert to and from
integer zatoshi at the storage boundary.
"""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field

_ZERO = Decimal(0)


class CommitmentStatus(StrEnum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    USED = "used"
    EXPIRED = "expired"


class FairnessSeedStatus(StrEnum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    REVEALED = "revealed"
    EXPIRED = "expired"


class GameStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"


class PlayerSession(BaseModel, frozen=True):
    """Player account: owns the balance and responsible-gaming limits."""

    id: str
    wallet_address: str
    balance: Decimal = _ZERO
    total_deposited: Decimal = _ZERO
    total_withdrawn: Decimal = _ZERO
    total_wagered: Decimal = _ZERO
    total_won: Decimal = _ZERO
    is_authenticated: bool = False
    deposit_limit: Decimal | None = None
    loss_limit: Decimal | None = None
    session_limit_minutes: int | None = None
    excluded_until: datetime | None = None
    created_at: datetime
    last_active_at: datetime


class SeedCommitment(BaseModel, frozen=True):
    """Pool-mode fairness unit: a server seed whose hash was published on-chain in advance."""

    id: str
    server_seed: str
    server_seed_hash: str
    tx_hash: str
    block_height: int | None = None
    block_timestamp: datetime | None = None
    status: CommitmentStatus = CommitmentStatus.AVAILABLE
    used_by_game_id: str | None = None
    claimed_at: datetime | None = None
    used_at: datetime | None = None
    created_at: datetime
    expires_at: datetime


class FairnessSeed(BaseModel, frozen=True):
    """Session-mode server seed, committed on-chain and assigned to one session stream."""

    id: str
    seed: str
    seed_hash: str
    tx_hash: str
    block_height: int | None = None
    block_timestamp: datetime | None = None
    status: FairnessSeedStatus = FairnessSeedStatus.AVAILABLE
    assigned_at: datetime | None = None
    revealed_at: datetime | None = None
    created_at: datetime


class SessionFairnessState(BaseModel, frozen=True):
    """Active seed stream for a session: which seed, which client seed, which nonce is next."""

    session_id: str
    seed_id: str
    client_seed: str
    next_nonce: int = Field(default=0, ge=0)
    fairness_version: str
    created_at: datetime
    updated_at: datetime


class GameRecord(BaseModel, frozen=True):
    """Persisted round. Holds only replay inputs and the final result; hands are never stored."""

    id: str
    session_id: str
    main_bet: Decimal
    perfect_pairs_bet: Decimal = _ZERO
    insurance_bet: Decimal = _ZERO
    action_history: tuple[str, ...] = ()
    server_seed: str | None = None  # None in session mode (resolved through fairness_seed_id)
    server_seed_hash: str
    client_seed: str
    nonce: int
    fairness_version: str
    fairness_mode: str
    fairness_seed_id: str | None = None
    commitment_id: str | None = None
    commitment_tx_hash: str | None = None
    commitment_block: int | None = None
    commitment_timestamp: datetime | None = None
    verified_on_chain: bool = False
    status: GameStatus = GameStatus.ACTIVE
    outcome: str | None = None
    payout: Decimal | None = None
    created_at: datetime
    completed_at: datetime | None = None
