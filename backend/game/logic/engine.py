"""
Blackjack rules engine.

Pure functions over ``BlackjackGameState``. Every function returns a new state
and has no side effects, so the same seeds plus the same ordered action list
always reproduce the same hands and settlement. The orchestration layer relies
on this to rebuild mid-round state from a game's action history, and the
verification service relies on it to audit completed rounds.

Deal order: player gets shoe[0] and shoe[2], dealer gets shoe[1] (up) and
shoe[3] (hole, face down); every later card is drawn from the front of the
remaining deck. After a split, hands are played right to left.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from game.logic.cards import hand_value, is_blackjack, is_pair, perfect_pairs_outcome
from game.logic.enums import BlackjackAction, FairnessVersion, GamePhase, Rank
from game.logic.exceptions import (
    InsufficientBalanceError,
    InsuranceNotAvailableError,
    InvalidActionError,
    InvalidBetError,
)
from game.logic.shuffle import shuffle
from game.logic.state import (
    BetLimits,
    BlackjackGameState,
    GameRules,
    Hand,
    HandResult,
    PerfectPairsResult,
    Settlement,
)
from shared.money import ZERO, round_zec

if TYPE_CHECKING:
    from collections.abc import Callable

    from game.logic.cards import Card

_INITIAL_DEAL_SIZE = 4


def create_initial_state(balance: Decimal, rules: GameRules | None = None) -> BlackjackGameState:
    return BlackjackGameState(balance=round_zec(balance), rules=rules or GameRules())


def _reveal(hand: Hand) -> Hand:
    return hand.model_copy(update={"cards": tuple(c.model_copy(update={"face_up": True}) for c in hand.cards)})


def _replace_hand(state: BlackjackGameState, index: int, hand: Hand) -> tuple[Hand, ...]:
    hands = list(state.player_hands)
    hands[index] = hand
    return tuple(hands)


def validate_bets(main_bet: Decimal, perfect_pairs_bet: Decimal, bet_limits: BetLimits | None = None) -> Decimal:
    """Check the main bet against the table limits and the side bet against the main bet; returns the total stake."""
    limits = bet_limits or BetLimits()
    if main_bet < limits.min_bet or main_bet > limits.max_bet:
        raise InvalidBetError(f"Bet must be between {limits.min_bet} and {limits.max_bet} ZEC")
    if perfect_pairs_bet < ZERO or perfect_pairs_bet > main_bet:
        raise InvalidBetError("Perfect Pairs bet must be between 0 and the main bet")
    return round_zec(main_bet + perfect_pairs_bet)


def start_round(  # noqa: PLR0913
    state: BlackjackGameState,
    main_bet: Decimal,
    perfect_pairs_bet: Decimal,
    server_seed: str,
    server_seed_hash: str,
    client_seed: str,
    nonce: int,
    fairness_version: FairnessVersion = FairnessVersion.LEGACY_MULBERRY_V1,
    bet_limits: BetLimits | None = None,
    rules: GameRules | None = None,
) -> BlackjackGameState:
    """Validate bets, shuffle, deal the opening four cards and settle immediate naturals.

    Raises InvalidBetError for out-of-range bets and InsufficientBalanceError when
    the balance cannot cover main bet plus side bet. Raises ShuffleInputError for
    malformed seed inputs.
    """
    rules = rules or state.rules
    main_bet = round_zec(main_bet)
    perfect_pairs_bet = round_zec(perfect_pairs_bet)

    total_bet = validate_bets(main_bet, perfect_pairs_bet, bet_limits)
    if total_bet > state.balance:
        raise InsufficientBalanceError("Insufficient balance")

    shoe = shuffle(server_seed, client_seed, nonce, rules.deck_count, fairness_version)
    player_cards = (shoe[0], shoe[2])
    dealer_cards = (shoe[1], shoe[3].model_copy(update={"face_up": False}))

    player_hand = Hand(cards=player_cards, bet=main_bet, is_blackjack=is_blackjack(player_cards))
    dealer_hand = Hand(cards=dealer_cards, is_blackjack=is_blackjack(dealer_cards))

    perfect_pairs_result = None
    if perfect_pairs_bet > ZERO:
        outcome, multiplier = perfect_pairs_outcome(player_cards)
        perfect_pairs_result = PerfectPairsResult(
            outcome=outcome,
            multiplier=multiplier,
            payout=round_zec(perfect_pairs_bet * multiplier),
        )

    offer_insurance = dealer_cards[0].rank == Rank.ACE and not player_hand.is_blackjack
    immediate = (
        (player_hand.is_blackjack and dealer_hand.is_blackjack)
        or (dealer_hand.is_blackjack and not offer_insurance)
        or player_hand.is_blackjack
    )

    new_state = state.model_copy(
        update={
            "phase": GamePhase.PLAYER_TURN,
            "player_hands": (player_hand,),
            "dealer_hand": dealer_hand,
            "current_hand_index": 0,
            "deck": tuple(shoe[_INITIAL_DEAL_SIZE:]),
            "balance": round_zec(state.balance - total_bet),
            "current_bet": main_bet,
            "perfect_pairs_bet": perfect_pairs_bet,
            "insurance_bet": ZERO,
            "dealer_peeked": not offer_insurance,
            "server_seed": server_seed,
            "server_seed_hash": server_seed_hash,
            "client_seed": client_seed,
            "nonce": nonce,
            "fairness_version": FairnessVersion(fairness_version),
            "last_payout": ZERO,
            "perfect_pairs_result": perfect_pairs_result,
            "settlement": None,
            "rules": rules,
        },
    )

    if immediate:
        return _resolve_round(new_state.model_copy(update={"dealer_hand": _reveal(dealer_hand)}))
    return new_state


def _dealer_shows_ace(state: BlackjackGameState) -> bool:
    cards = state.dealer_hand.cards
    return bool(cards) and cards[0].rank == Rank.ACE


def needs_dealer_peek(state: BlackjackGameState) -> bool:
    """True while the dealer shows an Ace and has not yet checked the hole card."""
    return state.phase == GamePhase.PLAYER_TURN and not state.dealer_peeked and _dealer_shows_ace(state)


def peek_will_complete_round(state: BlackjackGameState) -> bool:
    """True when the next player decision will be pre-empted by a dealer blackjack."""
    return needs_dealer_peek(state) and state.dealer_hand.is_blackjack


def _peek_dealer(state: BlackjackGameState) -> BlackjackGameState:
    if not state.dealer_hand.is_blackjack:
        return state.model_copy(update={"dealer_peeked": True})
    return _resolve_round(
        state.model_copy(update={"dealer_peeked": True, "dealer_hand": _reveal(state.dealer_hand)}),
    )


def take_insurance(state: BlackjackGameState, amount: Decimal) -> BlackjackGameState:
    """Place an insurance bet before the peek; completes the round if the dealer has blackjack."""
    if not needs_dealer_peek(state):
        raise InsuranceNotAvailableError("Insurance is only offered before the peek against a dealer Ace")

    amount = round_zec(amount)
    if amount <= ZERO or amount > state.current_bet / 2:
        raise InvalidBetError("Insurance must be positive and at most half the main bet")
    if amount > state.balance:
        raise InsufficientBalanceError("Insufficient balance for insurance")

    insured = state.model_copy(
        update={
            "balance": round_zec(state.balance - amount),
            "insurance_bet": amount,
        },
    )
    return _peek_dealer(insured)


def decline_insurance(state: BlackjackGameState) -> BlackjackGameState:
    if not needs_dealer_peek(state):
        raise InsuranceNotAvailableError("No insurance decision is pending")
    return _peek_dealer(state)


def execute_action(state: BlackjackGameState, action: BlackjackAction) -> BlackjackGameState:
    """Apply one player action.

    A pending dealer peek runs first; when it reveals a dealer blackjack the
    round completes and the requested action is never applied.
    """
    if state.phase != GamePhase.PLAYER_TURN:
        raise InvalidActionError(action, "round is not in the player turn")

    if needs_dealer_peek(state):
        state = _peek_dealer(state)
        if state.is_complete:
            return state

    hand = state.current_hand
    if hand is None or hand.is_stood or hand.is_busted:
        return _advance_to_next_hand(state)

    if action not in get_available_actions(state):
        raise InvalidActionError(action, "not available for the current hand")

    return _ACTION_HANDLERS[BlackjackAction(action)](state)


def _hit(state: BlackjackGameState) -> BlackjackGameState:
    hand = state.player_hands[state.current_hand_index]
    cards = (*hand.cards, state.deck[0])
    value = hand_value(cards)
    busted = value > 21
    finished = busted or value == 21

    new_state = state.model_copy(
        update={
            "player_hands": _replace_hand(
                state,
                state.current_hand_index,
                hand.model_copy(update={"cards": cards, "is_busted": busted, "is_stood": finished}),
            ),
            "deck": state.deck[1:],
        },
    )
    if finished:
        return _advance_to_next_hand(new_state)
    return new_state


def _stand(state: BlackjackGameState) -> BlackjackGameState:
    hand = state.player_hands[state.current_hand_index]
    return _advance_to_next_hand(
        state.model_copy(
            update={
                "player_hands": _replace_hand(state, state.current_hand_index, hand.model_copy(update={"is_stood": True})),
            },
        ),
    )


def _double(state: BlackjackGameState) -> BlackjackGameState:
    hand = state.player_hands[state.current_hand_index]
    cards = (*hand.cards, state.deck[0])
    doubled = hand.model_copy(
        update={
            "cards": cards,
            "bet": round_zec(hand.bet * 2),
            "is_doubled": True,
            "is_busted": hand_value(cards) > 21,
            "is_stood": True,
        },
    )
    return _advance_to_next_hand(
        state.model_copy(
            update={
                "player_hands": _replace_hand(state, state.current_hand_index, doubled),
                "deck": state.deck[1:],
                "balance": round_zec(state.balance - hand.bet),
            },
        ),
    )


def _split(state: BlackjackGameState) -> BlackjackGameState:
    index = state.current_hand_index
    hand = state.player_hands[index]
    first = Hand(cards=(hand.cards[0], state.deck[0]), bet=hand.bet, is_split=True)
    second = Hand(cards=(hand.cards[1], state.deck[1]), bet=hand.bet, is_split=True)

    hands = (*state.player_hands[:index], first, second, *state.player_hands[index + 1 :])
    return state.model_copy(
        update={
            "player_hands": hands,
            "current_hand_index": len(hands) - 1,
            "deck": state.deck[2:],
            "balance": round_zec(state.balance - hand.bet),
        },
    )


def _surrender(state: BlackjackGameState) -> BlackjackGameState:
    hand = state.player_hands[state.current_hand_index]
    return _resolve_round(
        state.model_copy(
            update={
                "dealer_peeked": True,
                "player_hands": _replace_hand(
                    state,
                    state.current_hand_index,
                    hand.model_copy(update={"is_surrendered": True, "is_stood": True}),
                ),
                "dealer_hand": _reveal(state.dealer_hand),
            },
        ),
    )


_ACTION_HANDLERS: dict[BlackjackAction, Callable[[BlackjackGameState], BlackjackGameState]] = {
    BlackjackAction.HIT: _hit,
    BlackjackAction.STAND: _stand,
    BlackjackAction.DOUBLE: _double,
    BlackjackAction.SPLIT: _split,
    BlackjackAction.SURRENDER: _surrender,
}


def _advance_to_next_hand(state: BlackjackGameState) -> BlackjackGameState:
    for i in range(state.current_hand_index - 1, -1, -1):
        hand = state.player_hands[i]
        if not hand.is_stood and not hand.is_busted:
            return state.model_copy(update={"current_hand_index": i})
    return _play_dealer(state)


def _play_dealer(state: BlackjackGameState) -> BlackjackGameState:
    revealed = _reveal(state.dealer_hand)
    if all(h.is_busted for h in state.player_hands):
        return _resolve_round(state.model_copy(update={"dealer_peeked": True, "dealer_hand": revealed}))

    cards: tuple[Card, ...] = revealed.cards
    deck = state.deck
    while hand_value(cards) < state.rules.dealer_stands_on:
        cards = (*cards, deck[0])
        deck = deck[1:]

    dealer_hand = revealed.model_copy(
        update={
            "cards": cards,
            "is_stood": True,
            "is_busted": hand_value(cards) > 21,
        },
    )
    return _resolve_round(state.model_copy(update={"dealer_peeked": True, "dealer_hand": dealer_hand, "deck": deck}))


def _hand_result(index: int, hand: Hand, dealer: Hand, rules: GameRules) -> HandResult:
    player_value = hand_value(hand.cards)
    dealer_value = hand_value(dealer.cards)

    if hand.is_surrendered:
        return HandResult(hand_index=index, outcome="surrender", payout=round_zec(hand.bet / 2))
    if hand.is_busted:
        return HandResult(hand_index=index, outcome="lose", payout=ZERO)
    if hand.is_blackjack and not hand.is_split:
        if dealer.is_blackjack:
            return HandResult(hand_index=index, outcome="push", payout=hand.bet)
        return HandResult(
            hand_index=index,
            outcome="blackjack",
            payout=round_zec(hand.bet * (1 + rules.blackjack_payout)),
        )
    if dealer.is_busted or player_value > dealer_value:
        return HandResult(hand_index=index, outcome="win", payout=round_zec(hand.bet * 2))
    if player_value < dealer_value:
        return HandResult(hand_index=index, outcome="lose", payout=ZERO)
    return HandResult(hand_index=index, outcome="push", payout=hand.bet)


def _resolve_round(state: BlackjackGameState) -> BlackjackGameState:
    """Compute the settlement and credit the in-memory balance. Runs exactly once per round."""
    dealer = state.dealer_hand
    insurance_payout = ZERO
    if state.insurance_bet > ZERO and dealer.is_blackjack:
        insurance_payout = round_zec(state.insurance_bet * (1 + state.rules.insurance_payout))

    perfect_pairs_payout = state.perfect_pairs_result.payout if state.perfect_pairs_result else ZERO
    results = tuple(_hand_result(i, hand, dealer, state.rules) for i, hand in enumerate(state.player_hands))
    main_hands_payout = round_zec(sum((r.payout for r in results), ZERO))

    total_payout = round_zec(main_hands_payout + insurance_payout + perfect_pairs_payout)
    total_stake = round_zec(
        sum((h.bet for h in state.player_hands), ZERO) + state.insurance_bet + state.perfect_pairs_bet,
    )
    settlement = Settlement(
        total_stake=total_stake,
        total_payout=total_payout,
        net=round_zec(total_payout - total_stake),
        main_hands_payout=main_hands_payout,
        insurance_payout=insurance_payout,
        perfect_pairs_payout=perfect_pairs_payout,
        hand_results=results,
    )
    return state.model_copy(
        update={
            "phase": GamePhase.COMPLETE,
            "dealer_peeked": True,
            "balance": round_zec(state.balance + total_payout),
            "last_payout": total_payout,
            "settlement": settlement,
        },
    )


def get_available_actions(state: BlackjackGameState) -> list[BlackjackAction]:
    """Legal actions for the current hand only."""
    if state.phase != GamePhase.PLAYER_TURN:
        return []
    hand = state.current_hand
    if hand is None or hand.is_stood or hand.is_busted:
        return []

    actions = [BlackjackAction.HIT, BlackjackAction.STAND]
    two_cards = len(hand.cards) == 2
    affordable = hand.bet <= state.balance

    if two_cards and affordable:
        actions.append(BlackjackAction.DOUBLE)

    resplit_aces = hand.is_split and two_cards and all(c.rank == Rank.ACE for c in hand.cards)
    if is_pair(hand.cards) and affordable and len(state.player_hands) < state.rules.max_hands and not resplit_aces:
        actions.append(BlackjackAction.SPLIT)

    if (
        state.rules.allow_surrender
        and two_cards
        and len(state.player_hands) == 1
        and not hand.is_split
        and not hand.is_doubled
    ):
        actions.append(BlackjackAction.SURRENDER)

    return actions


def additional_stake(state: BlackjackGameState, action: BlackjackAction) -> Decimal:
    """Funds an action takes from the balance (double and split match the current hand's bet)."""
    if action in (BlackjackAction.DOUBLE, BlackjackAction.SPLIT) and state.current_hand is not None:
        return state.current_hand.bet
    return ZERO
