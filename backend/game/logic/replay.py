"""
Deterministic round reconstruction.

Mid-round state is never persisted. A round is rebuilt by replaying its
seed inputs and ordered action history through the rules engine; the same
inputs always produce the same state, so reconstructing incrementally across
requests is observationally identical to having played the round live.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Self

from pydantic import BaseModel, Field, model_validator

from game.logic.engine import (
    create_initial_state,
    decline_insurance,
    execute_action,
    peek_will_complete_round,
    start_round,
    take_insurance,
)
from game.logic.enums import BlackjackAction, FairnessVersion, GameOutcome
from game.logic.exceptions import InvalidActionError
from game.logic.shuffle import normalize_fairness_version
from game.logic.state import BetLimits, GameRules
from shared.money import ZERO, round_zec

if TYPE_CHECKING:
    from collections.abc import Sequence

    from game.logic.state import BlackjackGameState
    from shared.dal.models import GameRecord

_FUNDED_ACTIONS = frozenset({BlackjackAction.DOUBLE, BlackjackAction.SPLIT})


class RoundInputs(BaseModel, frozen=True):
    """Everything needed to regenerate a round's opening deal."""

    server_seed: str = Field(min_length=1)
    server_seed_hash: str = ""
    client_seed: str
    nonce: int = Field(ge=0)
    fairness_version: FairnessVersion = FairnessVersion.LEGACY_MULBERRY_V1
    main_bet: Decimal
    perfect_pairs_bet: Decimal = ZERO
    insurance_bet: Decimal = ZERO
    rules: GameRules = GameRules()
    bet_limits: BetLimits = BetLimits()

    @model_validator(mode="after")
    def _validate_side_bets(self) -> Self:
        if self.insurance_bet < ZERO or self.insurance_bet > self.main_bet / 2:
            raise ValueError("insurance_bet must be between 0 and half the main bet")
        return self

    @classmethod
    def from_record(cls, game: GameRecord, server_seed: str, rules: GameRules | None = None) -> RoundInputs:
        """Inputs of a stored round. Bet limits are pinned to the stored bet, which was validated at start."""
        return cls(
            server_seed=server_seed,
            server_seed_hash=game.server_seed_hash,
            client_seed=game.client_seed,
            nonce=game.nonce,
            fairness_version=normalize_fairness_version(game.fairness_version),
            main_bet=game.main_bet,
            perfect_pairs_bet=game.perfect_pairs_bet,
            insurance_bet=game.insurance_bet,
            rules=rules or GameRules(),
            bet_limits=BetLimits(min_bet=game.main_bet, max_bet=game.main_bet),
        )


def parse_action_history(raw: Sequence[str]) -> list[BlackjackAction]:
    """Convert stored action strings to enum members; unknown entries are rejected, never skipped."""
    try:
        return [BlackjackAction(entry) for entry in raw]
    except ValueError as exc:
        raise InvalidActionError(str(exc), "unknown action in history") from None


def funded_balance(inputs: RoundInputs, actions: Sequence[BlackjackAction], remaining_balance: Decimal) -> Decimal:
    """Balance as it stood before any stake of this round was taken.

    Every stake of a round (main bet, side bet, insurance, one main bet per
    double or split) was reserved from the session before it was applied, so
    adding them back to the current session balance reproduces the balance the
    live round saw at each decision.
    """
    extra = sum((inputs.main_bet for a in actions if a in _FUNDED_ACTIONS), ZERO)
    return round_zec(remaining_balance + inputs.main_bet + inputs.perfect_pairs_bet + inputs.insurance_bet + extra)


def replay_round(
    inputs: RoundInputs,
    actions: Sequence[BlackjackAction],
    remaining_balance: Decimal = ZERO,
    *,
    completed: bool = False,
) -> BlackjackGameState:
    """Rebuild a round from its inputs and ordered action history.

    Insurance is re-applied before the first action, matching the order in
    which it can legally be taken. Raises InvalidActionError when the history
    contains an action that was not legal at its position.

    A round ended by a dealer blackjack on the peek stores no action, so for a
    ``completed`` round whose history is exhausted a pending peek is run.
    """
    state = create_initial_state(funded_balance(inputs, actions, remaining_balance), inputs.rules)
    state = start_round(
        state,
        inputs.main_bet,
        inputs.perfect_pairs_bet,
        inputs.server_seed,
        inputs.server_seed_hash,
        inputs.client_seed,
        inputs.nonce,
        inputs.fairness_version,
        inputs.bet_limits,
        inputs.rules,
    )
    if inputs.insurance_bet > ZERO:
        state = take_insurance(state, inputs.insurance_bet)

    for action in actions:
        if state.is_complete:
            raise InvalidActionError(action, "round already complete")
        state = execute_action(state, action)
    if completed and peek_will_complete_round(state):
        state = decline_insurance(state)
    return state


def determine_outcome(state: BlackjackGameState) -> GameOutcome:
    """Summarize a completed round's main hands as a single outcome."""
    if state.settlement is None:
        raise ValueError("Round is not complete")

    hands = state.player_hands
    if hands and all(h.is_surrendered for h in hands):
        return GameOutcome.SURRENDER
    first = hands[0]
    if first.is_blackjack and not first.is_split and not state.dealer_hand.is_blackjack:
        return GameOutcome.BLACKJACK

    main_stake = sum((h.bet for h in hands), ZERO)
    if state.settlement.main_hands_payout > main_stake:
        return GameOutcome.WIN
    if state.settlement.main_hands_payout == main_stake:
        return GameOutcome.PUSH
    return GameOutcome.LOSE
