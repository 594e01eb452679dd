"""
Blackjack game orchestration.

Glues the pure rules engine to persistence, the ledger and the fairness seed
supply. Mid-round state is never stored: every request replays the round from
its seeds and action history, applies one new decision, and commits the
decision, any extra stake and (when the round ends) the payout in a single
transaction. The ``active -> completed`` conditional update is the only place
a payout is credited, so a round pays out exactly once.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime  # noqa: TC003
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from fairness.chain.base import CommitmentInfo, commitment_info
from fairness.seeds import generate_client_seed, normalize_client_seed
from fairness.session_stream import FairnessPublicState  # noqa: TC001
from game.exceptions import (
    GameAlreadyCompletedError,
    GameConflictError,
    GameNotFoundError,
    GameOwnershipError,
    ReplayReconstructionError,
    SessionNotFoundError,
)
from game.limits import check_wager_allowed
from game.logic.engine import (
    additional_stake,
    create_initial_state,
    decline_insurance,
    execute_action,
    get_available_actions,
    needs_dealer_peek,
    peek_will_complete_round,
    start_round,
    validate_bets,
)
from game.logic.engine import take_insurance as apply_insurance
from game.logic.enums import BlackjackAction, FairnessMode, FairnessVersion
from game.logic.exceptions import (
    GameRuleError,
    InsufficientBalanceError,
    InsuranceNotAvailableError,
    InvalidActionError,
)
from game.logic.replay import RoundInputs, determine_outcome, parse_action_history, replay_round
from game.logic.state import BetLimits, GameRules
from shared.dal.models import GameRecord, GameStatus
from shared.db.connection import utc_now
from shared.db.game_repository import SqliteGameRepository
from shared.db.session_repository import SqliteSessionRepository
from shared.ledger import credit_funds, reserve_funds
from shared.money import ZERO, half_stake, round_zec

if TYPE_CHECKING:
    from collections.abc import Callable

    from fairness.pool import CommitmentPoolManager
    from fairness.session_stream import SessionFairnessStream
    from fairness.settings import FairnessSettings
    from game.logic.state import BlackjackGameState, Hand
    from shared.dal.game_repository import GameRepository
    from shared.dal.models import PlayerSession
    from shared.dal.session_repository import SessionRepository
    from shared.db.connection import Database

logger = structlog.get_logger()

VERIFICATION_READY = "ready"
VERIFICATION_PENDING_REVEAL = "pending_reveal"


class GameActionResult(BaseModel, frozen=True):
    game_id: str
    game_state: dict[str, Any]
    balance: Decimal
    total_wagered: Decimal
    total_won: Decimal
    commitment: CommitmentInfo | None = None
    fairness: FairnessPublicState | None = None


class GameView(BaseModel, frozen=True):
    """A stored game as its owner may see it; the seed appears only once it is revealable."""

    id: str
    main_bet: Decimal
    perfect_pairs_bet: Decimal
    insurance_bet: Decimal
    server_seed: str | None = None
    server_seed_hash: str
    client_seed: str
    nonce: int
    fairness_version: str
    fairness_mode: str
    verification_status: str
    status: GameStatus
    outcome: str | None = None
    payout: Decimal | None = None
    created_at: datetime
    completed_at: datetime | None = None
    commitment: CommitmentInfo | None = None
    verified_on_chain: bool = False
    game_state: dict[str, Any] | None = None


class GameSummary(BaseModel, frozen=True):
    id: str
    main_bet: Decimal
    status: GameStatus
    outcome: str | None = None
    payout: Decimal | None = None
    server_seed_hash: str
    nonce: int
    created_at: datetime


def _public_dealer_hand(hand: Hand, reveal: bool) -> dict[str, Any]:  # noqa: FBT001
    data = hand.model_dump(mode="json")
    if not reveal:
        data["cards"] = [card if card["face_up"] else {"face_up": False} for card in data["cards"]]
        data["is_blackjack"] = False
    return data


def sanitize_game_state(state: BlackjackGameState) -> dict[str, Any]:
    """Client view of a round: no deck, no server seed, and no hole card while the round is live."""
    data = state.model_dump(mode="json", exclude={"deck", "server_seed", "rules"})
    data["dealer_hand"] = _public_dealer_hand(state.dealer_hand, reveal=state.is_complete)
    data["available_actions"] = [str(a) for a in get_available_actions(state)]
    data["insurance_offered"] = needs_dealer_peek(state) and state.insurance_bet == ZERO
    return data


class BlackjackGameService:
    """Runs rounds for player sessions in either fairness mode."""

    def __init__(  # noqa: PLR0913
        self,
        db: Database,
        pool: CommitmentPoolManager,
        stream: SessionFairnessStream,
        settings: FairnessSettings,
        rules: GameRules | None = None,
        bet_limits: BetLimits | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._games: GameRepository = SqliteGameRepository(db)
        self._sessions: SessionRepository = SqliteSessionRepository(db)
        self._pool = pool
        self._stream = stream
        self._settings = settings
        self._rules = rules or GameRules()
        self._bet_limits = bet_limits or BetLimits()
        self._clock = clock

    @property
    def mode(self) -> FairnessMode:
        return self._settings.mode

    async def _require_session(self, session_id: str, tx: sqlite3.Connection | None = None) -> PlayerSession:
        session = await self._sessions.get_session(session_id, tx)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    async def _require_active_game(self, session_id: str, game_id: str, tx: sqlite3.Connection) -> GameRecord:
        game = await self._games.get_game(game_id, tx)
        if game is None:
            raise GameNotFoundError(f"Game {game_id} not found")
        if game.session_id != session_id:
            raise GameOwnershipError("Game belongs to another session")
        if game.status != GameStatus.ACTIVE:
            raise GameAlreadyCompletedError("Game already completed")
        return game

    async def _result(
        self,
        game_id: str,
        session_id: str,
        state: BlackjackGameState,
        commitment: CommitmentInfo | None = None,
        fairness: FairnessPublicState | None = None,
    ) -> GameActionResult:
        session = await self._require_session(session_id)
        return GameActionResult(
            game_id=game_id,
            game_state=sanitize_game_state(state),
            balance=session.balance,
            total_wagered=session.total_wagered,
            total_won=session.total_won,
            commitment=commitment,
            fairness=fairness,
        )

    # --- start ---

    async def start_game(
        self,
        session_id: str,
        bet: Decimal,
        perfect_pairs_bet: Decimal = ZERO,
        client_seed: str | None = None,
    ) -> GameActionResult:
        """Validate and reserve the stakes, take a committed seed, deal, and persist the round.

        A round that ends on the deal (naturals) is completed in the same transaction.
        """
        main_bet = round_zec(bet)
        side_bet = round_zec(perfect_pairs_bet)
        total = validate_bets(main_bet, side_bet, self._bet_limits)
        requested_seed = normalize_client_seed(client_seed) if client_seed else None

        session = await self._require_session(session_id)
        if total > session.balance:
            raise InsufficientBalanceError("Insufficient balance")
        check_wager_allowed(session, total, self._clock())

        if self._settings.mode == FairnessMode.SESSION_NONCE_V1:
            return await self._start_session_game(session_id, main_bet, side_bet, total, requested_seed)
        return await self._start_pool_game(session_id, main_bet, side_bet, total, requested_seed)

    def _deal(  # noqa: PLR0913
        self,
        session: PlayerSession,
        main_bet: Decimal,
        side_bet: Decimal,
        server_seed: str,
        server_seed_hash: str,
        client_seed: str,
        nonce: int,
        version: FairnessVersion,
    ) -> BlackjackGameState:
        return start_round(
            create_initial_state(session.balance, self._rules),
            main_bet,
            side_bet,
            server_seed,
            server_seed_hash,
            client_seed,
            nonce,
            version,
            self._bet_limits,
            self._rules,
        )

    async def _start_pool_game(
        self,
        session_id: str,
        main_bet: Decimal,
        side_bet: Decimal,
        total: Decimal,
        client_seed: str | None,
    ) -> GameActionResult:
        commitment = await self._pool.get_or_create_commitment()
        client_seed = client_seed or generate_client_seed()
        version = self._settings.default_version
        game_id = str(uuid.uuid4())

        try:
            async with self._db.transaction() as tx:
                session = await self._require_session(session_id, tx)
                last_nonce = await self._games.get_last_nonce(session_id, tx)
                nonce = 0 if last_nonce is None else last_nonce + 1
                state = self._deal(
                    session,
                    main_bet,
                    side_bet,
                    commitment.server_seed,
                    commitment.server_seed_hash,
                    client_seed,
                    nonce,
                    version,
                )
                if not reserve_funds(tx, session_id, total):
                    raise InsufficientBalanceError("Insufficient balance")

                await self._games.create_game(
                    tx,
                    GameRecord(
                        id=game_id,
                        session_id=session_id,
                        main_bet=main_bet,
                        perfect_pairs_bet=side_bet,
                        server_seed=commitment.server_seed,
                        server_seed_hash=commitment.server_seed_hash,
                        client_seed=client_seed,
                        nonce=nonce,
                        fairness_version=version,
                        fairness_mode=FairnessMode.LEGACY_PER_GAME_V1,
                        commitment_id=commitment.id,
                        commitment_tx_hash=commitment.tx_hash,
                        commitment_block=commitment.block_height,
                        commitment_timestamp=commitment.block_timestamp,
                        created_at=self._clock(),
                    ),
                )
                if not await self._pool.mark_commitment_used(commitment.id, game_id, tx):
                    raise GameConflictError("Commitment claim was lost before the game was recorded")
                if state.is_complete:
                    await self.process_game_completion(game_id, session_id, state, tx)
        except Exception:
            await self._release_commitment(commitment.id)
            raise

        self._pool.trigger_refill()
        logger.info("game started", game_id=game_id, session_id=session_id, nonce=nonce, mode="pool")
        info = commitment_info(
            commitment.tx_hash,
            commitment.block_height,
            commitment.block_timestamp,
            self._settings.network,
        )
        return await self._result(game_id, session_id, state, commitment=info)

    async def _release_commitment(self, commitment_id: str) -> None:
        try:
            await self._pool.release_claimed_commitment(commitment_id)
        except sqlite3.Error:
            logger.exception("failed to release claimed commitment", commitment_id=commitment_id)

    async def _start_session_game(
        self,
        session_id: str,
        main_bet: Decimal,
        side_bet: Decimal,
        total: Decimal,
        client_seed: str | None,
    ) -> GameActionResult:
        # may anchor a new seed, which must happen outside the write transaction
        await self._stream.ensure_active_fairness_state(session_id)
        game_id = str(uuid.uuid4())

        async with self._db.transaction() as tx:
            session = await self._require_session(session_id, tx)
            active = await self._stream.ensure_active_fairness_state(session_id, tx)
            if client_seed is not None and client_seed != active.client_seed:
                await self._stream.set_client_seed(session_id, client_seed, tx)
            allocated = await self._stream.allocate_nonce(session_id, tx)

            state = self._deal(
                session,
                main_bet,
                side_bet,
                allocated.server_seed,
                allocated.server_seed_hash,
                allocated.client_seed,
                allocated.nonce,
                allocated.fairness_version,
            )
            if not reserve_funds(tx, session_id, total):
                raise InsufficientBalanceError("Insufficient balance")

            await self._games.create_game(
                tx,
                GameRecord(
                    id=game_id,
                    session_id=session_id,
                    main_bet=main_bet,
                    perfect_pairs_bet=side_bet,
                    server_seed=None,
                    server_seed_hash=allocated.server_seed_hash,
                    client_seed=allocated.client_seed,
                    nonce=allocated.nonce,
                    fairness_version=allocated.fairness_version,
                    fairness_mode=FairnessMode.SESSION_NONCE_V1,
                    fairness_seed_id=allocated.seed_id,
                    commitment_tx_hash=allocated.commitment_tx_hash,
                    commitment_block=allocated.commitment_block,
                    commitment_timestamp=allocated.commitment_timestamp,
                    created_at=self._clock(),
                ),
            )
            if state.is_complete:
                await self.process_game_completion(game_id, session_id, state, tx)

        logger.info("game started", game_id=game_id, session_id=session_id, nonce=allocated.nonce, mode="session")
        info = commitment_info(
            allocated.commitment_tx_hash,
            allocated.commitment_block,
            allocated.commitment_timestamp,
            self._settings.network,
        )
        fairness = await self._stream.get_public_state(session_id)
        return await self._result(game_id, session_id, state, commitment=info, fairness=fairness)

    # --- decisions ---

    async def _reconstruct(
        self,
        game: GameRecord,
        session: PlayerSession,
        tx: sqlite3.Connection | None = None,
    ) -> BlackjackGameState:
        server_seed = game.server_seed
        if server_seed is None and game.fairness_seed_id is not None:
            server_seed = await self._stream.resolve_server_seed(game.fairness_seed_id, tx)
        if server_seed is None:
            raise ReplayReconstructionError("Server seed unavailable for this game")
        try:
            return replay_round(
                RoundInputs.from_record(game, server_seed, self._rules),
                parse_action_history(game.action_history),
                session.balance,
            )
        except (GameRuleError, ValueError) as exc:
            logger.exception("game replay failed", game_id=game.id)
            raise ReplayReconstructionError(f"Game {game.id} could not be reconstructed") from exc

    async def handle_action(self, session_id: str, game_id: str, action: str) -> GameActionResult:
        """Apply one player decision to an active round."""
        try:
            decision = BlackjackAction(action)
        except ValueError:
            raise InvalidActionError(action, "unknown action") from None

        async with self._db.transaction() as tx:
            game = await self._require_active_game(session_id, game_id, tx)
            session = await self._require_session(session_id, tx)
            state = await self._reconstruct(game, session, tx)
            if state.is_complete:
                raise ReplayReconstructionError(f"Game {game_id} is active but its replay is already complete")

            # a dealer blackjack found on the peek ends the round; the decision is never applied or stored
            if peek_will_complete_round(state):
                new_state = decline_insurance(state)
            else:
                extra = additional_stake(state, decision)
                if extra > state.balance:
                    raise InsufficientBalanceError("Insufficient balance")
                if decision not in get_available_actions(state):
                    raise InvalidActionError(decision, "not available for the current hand")
                if extra > ZERO:
                    check_wager_allowed(session, extra, self._clock())
                    if not reserve_funds(tx, session_id, extra):
                        raise InsufficientBalanceError("Insufficient balance")

                new_state = execute_action(state, decision)
                if not await self._games.append_action(tx, game_id, decision, len(game.action_history)):
                    raise GameConflictError("Game changed concurrently; reload and retry")
            if new_state.is_complete:
                await self.process_game_completion(game_id, session_id, new_state, tx)

        logger.info("game action", game_id=game_id, action=decision, complete=new_state.is_complete)
        return await self._result(game_id, session_id, new_state)

    async def take_insurance(self, session_id: str, game_id: str) -> GameActionResult:
        """Insure half the main bet against a dealer Ace; only before the first decision."""
        async with self._db.transaction() as tx:
            game = await self._require_active_game(session_id, game_id, tx)
            session = await self._require_session(session_id, tx)
            state = await self._reconstruct(game, session, tx)
            if game.insurance_bet > ZERO:
                raise InsuranceNotAvailableError("Insurance already taken")
            if not needs_dealer_peek(state):
                raise InsuranceNotAvailableError("Insurance not available")

            amount = half_stake(game.main_bet)
            check_wager_allowed(session, amount, self._clock())
            new_state = apply_insurance(state, amount)
            if not reserve_funds(tx, session_id, amount):
                raise InsufficientBalanceError("Insufficient balance for insurance")
            if not await self._games.set_insurance_bet(tx, game_id, amount):
                raise GameConflictError("Game changed concurrently; reload and retry")
            if new_state.is_complete:
                await self.process_game_completion(game_id, session_id, new_state, tx)

        logger.info("insurance taken", game_id=game_id, amount=str(amount), complete=new_state.is_complete)
        return await self._result(game_id, session_id, new_state)

    async def process_game_completion(
        self,
        game_id: str,
        session_id: str,
        state: BlackjackGameState,
        tx: sqlite3.Connection | None = None,
    ) -> bool:
        """Mark the round completed and credit its payout, at most once.

        Returns False (and credits nothing) when the round was already completed.
        """
        if state.settlement is None:
            raise ValueError("Round is not complete")
        payout = state.settlement.total_payout
        outcome = determine_outcome(state)

        async with self._db.transaction(tx) as conn:
            if not await self._games.complete_game(conn, game_id, outcome, payout, self._clock()):
                logger.warning(
                    "duplicate completion blocked",
                    event_type="duplicate_completion",
                    game_id=game_id,
                    session_id=session_id,
                )
                return False
            credit_funds(conn, session_id, payout)

        logger.info("game completed", game_id=game_id, outcome=outcome, payout=str(payout))
        return True

    # --- reads ---

    async def get_game(self, session_id: str, game_id: str) -> GameView:
        game = await self._games.get_game(game_id)
        if game is None or game.session_id != session_id:
            raise GameNotFoundError(f"Game {game_id} not found")

        reveal = await self._stream.get_revealable_server_seed(game.fairness_seed_id, game.server_seed)
        if game.fairness_mode == FairnessMode.SESSION_NONCE_V1:
            can_reveal = reveal.is_revealed
        else:
            can_reveal = game.status == GameStatus.COMPLETED

        game_state = None
        if game.status == GameStatus.ACTIVE:
            session = await self._require_session(session_id)
            game_state = sanitize_game_state(await self._reconstruct(game, session))

        return GameView(
            id=game.id,
            main_bet=game.main_bet,
            perfect_pairs_bet=game.perfect_pairs_bet,
            insurance_bet=game.insurance_bet,
            server_seed=reveal.server_seed if can_reveal else None,
            server_seed_hash=game.server_seed_hash,
            client_seed=game.client_seed,
            nonce=game.nonce,
            fairness_version=game.fairness_version,
            fairness_mode=game.fairness_mode,
            verification_status=VERIFICATION_READY if can_reveal else VERIFICATION_PENDING_REVEAL,
            status=game.status,
            outcome=game.outcome,
            payout=game.payout,
            created_at=game.created_at,
            completed_at=game.completed_at,
            commitment=commitment_info(
                game.commitment_tx_hash,
                game.commitment_block,
                game.commitment_timestamp,
                self._settings.network,
            ),
            verified_on_chain=game.verified_on_chain,
            game_state=game_state,
        )

    async def get_history(self, session_id: str, limit: int = 50) -> list[GameSummary]:
        games = await self._games.get_session_games(session_id, limit)
        return [
            GameSummary(
                id=g.id,
                main_bet=g.main_bet,
                status=g.status,
                outcome=g.outcome,
                payout=g.payout,
                server_seed_hash=g.server_seed_hash,
                nonce=g.nonce,
                created_at=g.created_at,
            )
            for g in games
        ]
