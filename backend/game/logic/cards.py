"""
Card model and hand evaluation helpers.

A shoe is built in a fixed canonical order (deck by deck, suits hearts,
diamonds, clubs, spades, ranks A..K), so a card's position in the unshuffled
shoe is its identity for the shuffle engine.
"""

from pydantic import BaseModel

from game.logic.enums import PerfectPairsOutcome, Rank, Suit

CARDS_PER_DECK = 52
BLACKJACK_VALUE = 21

_SUIT_ORDER = (Suit.HEARTS, Suit.DIAMONDS, Suit.CLUBS, Suit.SPADES)
_RANK_ORDER = tuple(Rank)
_RED_SUITS = frozenset({Suit.HEARTS, Suit.DIAMONDS})
_FACE_RANKS = frozenset({Rank.JACK, Rank.QUEEN, Rank.KING})

# side bet multiplier by pair type
_PERFECT_PAIRS_TABLE = {
    PerfectPairsOutcome.PERFECT: 25,
    PerfectPairsOutcome.COLORED: 12,
    PerfectPairsOutcome.MIXED: 6,
    PerfectPairsOutcome.NONE: 0,
}


class Card(BaseModel, frozen=True):
    suit: Suit
    rank: Rank
    face_up: bool = True

    def __str__(self) -> str:
        return f"{self.rank}{self.suit[0].upper()}"


def create_deck() -> list[Card]:
    """Build a single 52-card deck in canonical order."""
    return [Card(suit=suit, rank=rank) for suit in _SUIT_ORDER for rank in _RANK_ORDER]


def create_shoe(deck_count: int) -> list[Card]:
    """Build a shoe of ``deck_count`` decks in canonical order."""
    shoe: list[Card] = []
    for _ in range(deck_count):
        shoe.extend(create_deck())
    return shoe


def card_value(card: Card) -> int:
    """Hard value of a card (Ace counts as 1)."""
    if card.rank == Rank.ACE:
        return 1
    if card.rank in _FACE_RANKS:
        return 10
    return int(card.rank)


def _hard_total_and_aces(cards: tuple[Card, ...] | list[Card]) -> tuple[int, int]:
    total = 0
    aces = 0
    for card in cards:
        total += card_value(card)
        if card.rank == Rank.ACE:
            aces += 1
    return total, aces


def hand_value(cards: tuple[Card, ...] | list[Card]) -> int:
    """Best total not exceeding 21 when possible (each Ace upgraded to 11 while safe)."""
    total, aces = _hard_total_and_aces(cards)
    while aces > 0 and total + 10 <= BLACKJACK_VALUE:
        total += 10
        aces -= 1
    return total


def is_soft(cards: tuple[Card, ...] | list[Card]) -> bool:
    """True when an Ace is currently counted as 11."""
    total, aces = _hard_total_and_aces(cards)
    return aces > 0 and total + 10 <= BLACKJACK_VALUE


def is_blackjack(cards: tuple[Card, ...] | list[Card]) -> bool:
    return len(cards) == 2 and hand_value(cards) == BLACKJACK_VALUE


def is_busted(cards: tuple[Card, ...] | list[Card]) -> bool:
    return hand_value(cards) > BLACKJACK_VALUE


def is_pair(cards: tuple[Card, ...] | list[Card]) -> bool:
    return len(cards) == 2 and cards[0].rank == cards[1].rank


def is_red(card: Card) -> bool:
    return card.suit in _RED_SUITS


def perfect_pairs_outcome(cards: tuple[Card, ...] | list[Card]) -> tuple[PerfectPairsOutcome, int]:
    """Classify the player's first two cards for the Perfect Pairs side bet."""
    if len(cards) < 2 or cards[0].rank != cards[1].rank:
        outcome = PerfectPairsOutcome.NONE
    elif cards[0].suit == cards[1].suit:
        outcome = PerfectPairsOutcome.PERFECT
    elif is_red(cards[0]) == is_red(cards[1]):
        outcome = PerfectPairsOutcome.COLORED
    else:
        outcome = PerfectPairsOutcome.MIXED
    return outcome, _PERFECT_PAIRS_TABLE[outcome]
