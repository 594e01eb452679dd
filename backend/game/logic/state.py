"""Immutable blackjack game-state models.

All models are frozen; the rules engine returns updated copies via
``model_copy(update=...)`` and never mutates a state in place.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from game.logic.cards import Card  # noqa: TC001
from game.logic.enums import FairnessVersion, GamePhase, PerfectPairsOutcome
from shared.money import ZERO


class GameRules(BaseModel, frozen=True):
    """Table rules. Defaults are Vegas Strip: 6 decks, dealer stands on soft 17, 3:2 blackjack."""

    deck_count: int = Field(default=6, ge=1, le=8)
    dealer_stands_on: int = 17
    blackjack_payout: Decimal = Decimal("1.5")
    insurance_payout: Decimal = Decimal(2)
    allow_surrender: bool = False
    max_hands: int = Field(default=4, ge=1)


class BetLimits(BaseModel, frozen=True):
    min_bet: Decimal = Decimal("0.01")
    max_bet: Decimal = Decimal(1)


class Hand(BaseModel, frozen=True):
    cards: tuple[Card, ...] = ()
    bet: Decimal = ZERO
    is_doubled: bool = False
    is_split: bool = False
    is_stood: bool = False
    is_busted: bool = False
    is_blackjack: bool = False
    is_surrendered: bool = False


class PerfectPairsResult(BaseModel, frozen=True):
    outcome: PerfectPairsOutcome
    multiplier: int
    payout: Decimal


class HandResult(BaseModel, frozen=True):
    hand_index: int
    outcome: str  # "win" | "lose" | "push" | "blackjack" | "surrender"
    payout: Decimal


class Settlement(BaseModel, frozen=True):
    """Stake/payout breakdown computed once when the round completes."""

    total_stake: Decimal
    total_payout: Decimal
    net: Decimal
    main_hands_payout: Decimal
    insurance_payout: Decimal
    perfect_pairs_payout: Decimal
    hand_results: tuple[HandResult, ...] = ()


class BlackjackGameState(BaseModel, frozen=True):
    """Complete in-memory state of one round, reconstructed from seeds and action history."""

    phase: GamePhase = GamePhase.BETTING
    player_hands: tuple[Hand, ...] = ()
    dealer_hand: Hand = Hand()
    current_hand_index: int = 0
    deck: tuple[Card, ...] = ()
    balance: Decimal = ZERO
    current_bet: Decimal = ZERO
    perfect_pairs_bet: Decimal = ZERO
    insurance_bet: Decimal = ZERO
    dealer_peeked: bool = False
    server_seed: str | None = None
    server_seed_hash: str = ""
    client_seed: str = ""
    nonce: int = 0
    fairness_version: FairnessVersion = FairnessVersion.LEGACY_MULBERRY_V1
    last_payout: Decimal = ZERO
    perfect_pairs_result: PerfectPairsResult | None = None
    settlement: Settlement | None = None
    rules: GameRules = GameRules()

    @property
    def current_hand(self) -> Hand | None:
        if 0 <= self.current_hand_index < len(self.player_hands):
            return self.player_hands[self.current_hand_index]
        return None

    @property
    def is_complete(self) -> bool:
        return self.phase == GamePhase.COMPLETE
