"""
Independent audit of completed rounds.

Verification recomputes everything from the revealed seed: the seed must hash
to the committed value, the commitment must be confirmed on-chain before the
game started, and replaying the stored action history must reproduce the
stored outcome and payout.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from fairness.chain.base import CommitmentInfo, commitment_info
from fairness.exceptions import GameNotVerifiableError
from fairness.seeds import hash_server_seed
from game.logic.enums import FairnessMode, FairnessVersion
from game.logic.exceptions import GameRuleError
from game.logic.replay import RoundInputs, determine_outcome, parse_action_history, replay_round
from game.logic.shuffle import normalize_fairness_version, shuffle
from game.logic.state import GameRules
from shared.dal.models import GameStatus
from shared.db.connection import utc_now
from shared.db.game_repository import SqliteGameRepository

if TYPE_CHECKING:
    from fairness.chain.base import CommitmentService
    from fairness.session_stream import SessionFairnessStream
    from shared.dal.game_repository import GameRepository
    from shared.dal.models import GameRecord
    from shared.db.connection import Database

logger = structlog.get_logger()

PAYOUT_TOLERANCE = Decimal("0.00000001")
MANUAL_GAME_ID = "manual-verification"
_PREVIEW_CARDS = 4


class VerificationSteps(BaseModel):
    hash_matches: bool = False
    on_chain_confirmed: bool = False
    timestamp_valid: bool = False
    outcome_valid: bool = False


class VerificationData(BaseModel, frozen=True):
    game_id: str
    server_seed: str | None
    server_seed_hash: str
    client_seed: str
    nonce: int
    fairness_version: FairnessVersion
    fairness_mode: FairnessMode = FairnessMode.LEGACY_PER_GAME_V1
    commitment: CommitmentInfo | None = None
    outcome: str | None = None
    payout: Decimal | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class ReplaySummary(BaseModel, frozen=True):
    player_cards: list[list[str]]
    dealer_cards: list[str]
    replayed_outcome: str
    replayed_payout: Decimal


class VerificationReport(BaseModel, frozen=True):
    valid: bool
    steps: VerificationSteps
    errors: list[str]
    data: VerificationData
    replay: ReplaySummary | None = None
    opening_cards: list[str] = []


class VerificationService:
    """Runs the four verification steps for stored games and for manually entered seed tuples."""

    def __init__(
        self,
        db: Database,
        chain: CommitmentService,
        stream: SessionFairnessStream,
        rules: GameRules | None = None,
        network: str = "testnet",
    ) -> None:
        self._games: GameRepository = SqliteGameRepository(db)
        self._chain = chain
        self._stream = stream
        self._rules = rules or GameRules()
        self._network = network

    async def _check_commitment(
        self,
        steps: VerificationSteps,
        errors: list[str],
        tx_hash: str,
        server_seed_hash: str,
    ) -> None:
        result = await self._chain.verify_commitment(tx_hash, server_seed_hash)
        steps.on_chain_confirmed = result.valid
        if not result.valid:
            errors.append(f"Blockchain verification failed: {result.error}")

    def _replay(self, game: GameRecord, server_seed: str, steps: VerificationSteps, errors: list[str]) -> ReplaySummary | None:
        try:
            state = replay_round(
                RoundInputs.from_record(game, server_seed, self._rules),
                parse_action_history(game.action_history),
                completed=True,
            )
        except (GameRuleError, ValueError) as exc:
            steps.outcome_valid = False
            errors.append(f"Game replay failed: {exc}")
            return None

        if not state.is_complete or state.settlement is None:
            steps.outcome_valid = False
            errors.append("Game replay did not reach a completed round")
            return None

        replayed_payout = state.settlement.total_payout
        replayed_outcome = determine_outcome(state)
        stored_payout = game.payout or Decimal(0)
        if abs(replayed_payout - stored_payout) > PAYOUT_TOLERANCE:
            steps.outcome_valid = False
            errors.append(f"Payout mismatch: replayed {replayed_payout}, stored {stored_payout}")
        if game.outcome is not None and replayed_outcome != game.outcome:
            steps.outcome_valid = False
            errors.append(f"Outcome mismatch: replayed {replayed_outcome}, stored {game.outcome}")

        return ReplaySummary(
            player_cards=[[str(c) for c in hand.cards] for hand in state.player_hands],
            dealer_cards=[str(c) for c in state.dealer_hand.cards],
            replayed_outcome=replayed_outcome,
            replayed_payout=replayed_payout,
        )

    async def verify_game(self, game_id: str) -> VerificationReport | None:
        """Verify a stored round. Returns None for an unknown id.

        Raises GameNotVerifiableError while the round is still active.
        """
        game = await self._games.get_game(game_id)
        if game is None:
            return None
        if game.status != GameStatus.COMPLETED:
            raise GameNotVerifiableError("Cannot verify an active game; the server seed is revealed only after completion")

        reveal = await self._stream.get_revealable_server_seed(game.fairness_seed_id, game.server_seed)
        server_seed = reveal.server_seed

        steps = VerificationSteps()
        errors: list[str] = []

        if server_seed is None:
            errors.append("Server seed has not been revealed yet. Rotate the session seed to verify this game.")
        else:
            steps.hash_matches = hash_server_seed(server_seed) == game.server_seed_hash
            if not steps.hash_matches:
                errors.append("Server seed hash does not match. The game may have been manipulated.")

        if game.commitment_tx_hash:
            await self._check_commitment(steps, errors, game.commitment_tx_hash, game.server_seed_hash)
            if steps.on_chain_confirmed and game.commitment_timestamp is not None:
                steps.timestamp_valid = game.commitment_timestamp <= game.created_at
                if not steps.timestamp_valid:
                    errors.append("Commitment timestamp is after game start.")
        else:
            errors.append("This game does not have a blockchain commitment.")

        replay = None
        if server_seed is not None:
            steps.outcome_valid = steps.hash_matches
            replay = self._replay(game, server_seed, steps, errors)

        valid = steps.hash_matches and steps.outcome_valid and (steps.on_chain_confirmed or not game.commitment_tx_hash)
        if valid and game.commitment_tx_hash and not game.verified_on_chain:
            await self._games.mark_verified_on_chain(game.id)

        logger.info("verified game", game_id=game.id, valid=valid, errors=len(errors))
        return VerificationReport(
            valid=valid,
            steps=steps,
            errors=errors,
            data=VerificationData(
                game_id=game.id,
                server_seed=server_seed,
                server_seed_hash=game.server_seed_hash,
                client_seed=game.client_seed,
                nonce=game.nonce,
                fairness_version=normalize_fairness_version(game.fairness_version),
                fairness_mode=FairnessMode(game.fairness_mode),
                commitment=commitment_info(
                    game.commitment_tx_hash,
                    game.commitment_block,
                    game.commitment_timestamp,
                    self._network,
                ),
                outcome=game.outcome,
                payout=game.payout,
                created_at=game.created_at,
                completed_at=game.completed_at,
            ),
            replay=replay,
        )

    async def verify_manual(  # noqa: PLR0913
        self,
        server_seed: str,
        server_seed_hash: str,
        client_seed: str,
        nonce: int,
        tx_hash: str | None = None,
        fairness_version: str | None = None,
    ) -> VerificationReport:
        """Verify a seed tuple entered by hand. Without game data the timestamp step mirrors the chain step."""
        version = normalize_fairness_version(fairness_version, FairnessVersion.HMAC_SHA256_V1)
        steps = VerificationSteps()
        errors: list[str] = []

        computed = hash_server_seed(server_seed)
        steps.hash_matches = computed == server_seed_hash
        if not steps.hash_matches:
            errors.append(f"Hash mismatch. Computed: {computed[:16]}...")

        if tx_hash:
            await self._check_commitment(steps, errors, tx_hash, server_seed_hash)
            steps.timestamp_valid = steps.on_chain_confirmed

        opening: list[str] = []
        try:
            cards = shuffle(server_seed, client_seed, nonce, self._rules.deck_count, version)
        except GameRuleError as exc:
            errors.append(f"Shuffle failed: {exc}")
        else:
            opening = [str(c) for c in cards[:_PREVIEW_CARDS]]
            steps.outcome_valid = steps.hash_matches

        return VerificationReport(
            valid=steps.hash_matches and steps.outcome_valid and (steps.on_chain_confirmed or not tx_hash),
            steps=steps,
            errors=errors,
            data=VerificationData(
                game_id=MANUAL_GAME_ID,
                server_seed=server_seed,
                server_seed_hash=server_seed_hash,
                client_seed=client_seed,
                nonce=nonce,
                fairness_version=version,
                commitment=commitment_info(tx_hash, network=self._network),
                created_at=utc_now(),
            ),
            opening_cards=opening,
        )
