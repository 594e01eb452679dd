"""Rules engine tests on hand-built states with a fixed deck."""

from decimal import Decimal

import pytest

from game.logic.engine import (
    additional_stake,
    create_initial_state,
    decline_insurance,
    execute_action,
    get_available_actions,
    needs_dealer_peek,
    peek_will_complete_round,
    start_round,
    take_insurance,
    validate_bets,
)
from game.logic.enums import BlackjackAction, FairnessVersion, GameOutcome, GamePhase
from game.logic.exceptions import (
    InsufficientBalanceError,
    InsuranceNotAvailableError,
    InvalidActionError,
    InvalidBetError,
)
from game.logic.replay import determine_outcome
from game.logic.state import BetLimits, GameRules
from game.tests.conftest import create_hand, create_round_state


class TestValidateBets:
    def test_returns_total_stake(self):
        assert validate_bets(Decimal("0.5"), Decimal("0.25")) == Decimal("0.75")

    @pytest.mark.parametrize("bet", [Decimal("0.001"), Decimal(2)])
    def test_main_bet_outside_limits(self, bet):
        with pytest.raises(InvalidBetError, match="Bet must be between"):
            validate_bets(bet, Decimal(0))

    def test_side_bet_cannot_exceed_main_bet(self):
        with pytest.raises(InvalidBetError, match="Perfect Pairs"):
            validate_bets(Decimal("0.1"), Decimal("0.2"))

    def test_custom_limits(self):
        limits = BetLimits(min_bet=Decimal(1), max_bet=Decimal(5))
        assert validate_bets(Decimal(5), Decimal(0), limits) == Decimal(5)


class TestStartRound:
    def _start(self, balance=Decimal(10), bet=Decimal("0.5"), side=Decimal(0), nonce=0):
        return start_round(
            create_initial_state(balance),
            bet,
            side,
            "server-seed",
            "hash",
            "client-seed",
            nonce,
            FairnessVersion.HMAC_SHA256_V1,
        )

    def test_deals_four_cards(self):
        state = self._start()
        assert len(state.player_hands) == 1
        assert len(state.player_hands[0].cards) == 2
        assert len(state.dealer_hand.cards) == 2
        assert len(state.deck) == 6 * 52 - 4

    def test_is_deterministic(self):
        assert self._start(nonce=3) == self._start(nonce=3)

    def test_stakes_leave_the_balance(self):
        state = self._start(side=Decimal("0.1"))
        if state.is_complete:
            assert state.balance == Decimal(10) - Decimal("0.6") + state.settlement.total_payout
        else:
            assert state.balance == Decimal("9.4")
            assert state.dealer_hand.cards[1].face_up is False

    def test_insufficient_balance(self):
        with pytest.raises(InsufficientBalanceError):
            self._start(balance=Decimal("0.2"))

    def test_side_bet_is_settled_at_deal(self):
        state = self._start(side=Decimal("0.5"))
        assert state.perfect_pairs_result is not None


class TestHitAndStand:
    def test_hit_draws_from_front_of_deck(self):
        state = execute_action(create_round_state(), BlackjackAction.HIT)
        assert [str(c) for c in state.player_hands[0].cards] == ["10H", "7C", "2H"]
        assert len(state.deck) == 5
        assert state.phase == GamePhase.PLAYER_TURN

    def test_hit_to_bust_completes_without_dealer_draw(self):
        state = execute_action(create_round_state(deck=("KH", "2H")), BlackjackAction.HIT)
        assert state.is_complete
        assert state.player_hands[0].is_busted
        assert len(state.dealer_hand.cards) == 2
        assert state.settlement.total_payout == Decimal(0)
        assert determine_outcome(state) == GameOutcome.LOSE

    def test_hit_to_21_stands_automatically(self):
        state = execute_action(create_round_state(deck=("4H", "2H")), BlackjackAction.HIT)
        assert state.is_complete
        assert state.settlement.total_payout == Decimal(2)
        assert determine_outcome(state) == GameOutcome.WIN

    def test_stand_push(self):
        state = execute_action(create_round_state(), BlackjackAction.STAND)
        assert state.is_complete
        assert state.settlement.total_payout == Decimal(1)
        assert state.balance == Decimal(10)
        assert determine_outcome(state) == GameOutcome.PUSH

    def test_dealer_draws_to_seventeen(self):
        state = execute_action(create_round_state(dealer=("9S", "5D")), BlackjackAction.STAND)
        assert [str(c) for c in state.dealer_hand.cards] == ["9S", "5D", "2H", "3H"]
        assert all(c.face_up for c in state.dealer_hand.cards)
        assert determine_outcome(state) == GameOutcome.LOSE

    def test_unsplit_natural_pays_three_to_two(self):
        state = create_round_state(player=("AH", "KS"))
        state = execute_action(state, BlackjackAction.STAND)
        assert state.settlement.total_payout == Decimal("2.5")
        assert determine_outcome(state) == GameOutcome.BLACKJACK


class TestDouble:
    def test_double_takes_one_card_and_doubles_the_bet(self):
        state = create_round_state(player=("5H", "6C"), deck=("KH", "2H"))
        assert additional_stake(state, BlackjackAction.DOUBLE) == Decimal(1)

        state = execute_action(state, BlackjackAction.DOUBLE)
        hand = state.player_hands[0]
        assert hand.is_doubled
        assert hand.bet == Decimal(2)
        assert len(hand.cards) == 3
        assert state.settlement.total_payout == Decimal(4)
        assert state.balance == Decimal(12)

    def test_double_needs_two_cards(self):
        state = execute_action(create_round_state(player=("2H", "3C")), BlackjackAction.HIT)
        assert BlackjackAction.DOUBLE not in get_available_actions(state)

    def test_double_needs_funds(self):
        state = create_round_state(player=("5H", "6C"), balance=Decimal("0.5"))
        assert BlackjackAction.DOUBLE not in get_available_actions(state)
        with pytest.raises(InvalidActionError):
            execute_action(state, BlackjackAction.DOUBLE)


class TestSplit:
    def test_split_plays_hands_right_to_left(self):
        state = create_round_state(player=("8H", "8C"), deck=("3H", "2H", "KH", "KD"))
        state = execute_action(state, BlackjackAction.SPLIT)
        assert len(state.player_hands) == 2
        assert state.current_hand_index == 1
        assert [str(c) for c in state.player_hands[0].cards] == ["8H", "3H"]
        assert [str(c) for c in state.player_hands[1].cards] == ["8C", "2H"]
        assert state.balance == Decimal(8)

        state = execute_action(state, BlackjackAction.STAND)
        assert state.current_hand_index == 0
        state = execute_action(state, BlackjackAction.STAND)
        assert state.is_complete
        assert state.settlement.total_stake == Decimal(2)
        assert determine_outcome(state) == GameOutcome.LOSE

    def test_split_aces_cannot_be_resplit(self):
        state = create_round_state(player=("AH", "AS"))
        state = state.model_copy(update={"player_hands": (create_hand("AH", "AD", is_split=True),)})
        assert BlackjackAction.SPLIT not in get_available_actions(state)

    def test_split_limited_by_max_hands(self):
        state = create_round_state(player=("8H", "8C"), rules=GameRules(max_hands=1))
        assert BlackjackAction.SPLIT not in get_available_actions(state)

    def test_split_natural_is_not_blackjack(self):
        state = create_round_state(dealer=("9S", "8D"))
        split_natural = create_hand("AH", "KD", is_split=True)
        state = state.model_copy(update={"player_hands": (split_natural,)})
        state = execute_action(state, BlackjackAction.STAND)
        assert state.settlement.hand_results[0].outcome == "win"
        assert state.settlement.total_payout == Decimal(2)


class TestSurrender:
    def test_not_offered_by_default(self):
        state = create_round_state(player=("10H", "6C"))
        assert BlackjackAction.SURRENDER not in get_available_actions(state)
        with pytest.raises(InvalidActionError):
            execute_action(state, BlackjackAction.SURRENDER)

    def test_returns_half_the_bet(self):
        state = create_round_state(player=("10H", "6C"), rules=GameRules(allow_surrender=True))
        state = execute_action(state, BlackjackAction.SURRENDER)
        assert state.is_complete
        assert state.settlement.total_payout == Decimal("0.5")
        assert determine_outcome(state) == GameOutcome.SURRENDER


class TestDealerPeek:
    def _ace_up(self, hole: str = "KD", **kwargs):
        return create_round_state(dealer=("AS", hole), dealer_peeked=False, **kwargs)

    def test_peek_pending_against_ace(self):
        state = self._ace_up()
        assert needs_dealer_peek(state)
        assert peek_will_complete_round(state)
        assert not peek_will_complete_round(self._ace_up(hole="7D"))

    def test_dealer_blackjack_preempts_the_action(self):
        state = execute_action(self._ace_up(), BlackjackAction.DOUBLE)
        assert state.is_complete
        assert len(state.player_hands[0].cards) == 2
        assert not state.player_hands[0].is_doubled
        assert state.dealer_hand.cards[1].face_up
        assert state.settlement.total_payout == Decimal(0)

    def test_decline_without_blackjack_continues(self):
        state = decline_insurance(self._ace_up(hole="7D"))
        assert state.dealer_peeked
        assert not state.is_complete

    def test_insurance_pays_two_to_one(self):
        state = take_insurance(self._ace_up(), Decimal("0.5"))
        assert state.is_complete
        assert state.insurance_bet == Decimal("0.5")
        assert state.settlement.insurance_payout == Decimal("1.5")
        assert state.balance == Decimal("10")

    def test_insurance_lost_when_no_blackjack(self):
        state = take_insurance(self._ace_up(hole="7D"), Decimal("0.5"))
        assert not state.is_complete
        assert state.balance == Decimal("8.5")

    def test_insurance_capped_at_half_the_bet(self):
        with pytest.raises(InvalidBetError):
            take_insurance(self._ace_up(), Decimal("0.6"))

    def test_insurance_needs_dealer_ace(self):
        with pytest.raises(InsuranceNotAvailableError):
            take_insurance(create_round_state(), Decimal("0.5"))


class TestActionGuards:
    def test_no_actions_after_completion(self):
        state = execute_action(create_round_state(), BlackjackAction.STAND)
        assert get_available_actions(state) == []
        with pytest.raises(InvalidActionError, match="player turn"):
            execute_action(state, BlackjackAction.HIT)

    def test_hit_and_stand_need_no_extra_stake(self):
        state = create_round_state()
        assert additional_stake(state, BlackjackAction.HIT) == Decimal(0)
        assert additional_stake(state, BlackjackAction.STAND) == Decimal(0)
