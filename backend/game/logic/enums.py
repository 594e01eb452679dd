"""Enumerations shared by the blackjack rules engine and its callers."""

from enum import StrEnum


class Suit(StrEnum):
    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"


class Rank(StrEnum):
    ACE = "A"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"


class GamePhase(StrEnum):
    BETTING = "betting"
    PLAYER_TURN = "playerTurn"
    COMPLETE = "complete"


class BlackjackAction(StrEnum):
    """Player actions that are appended to a game's action history."""

    HIT = "hit"
    STAND = "stand"
    DOUBLE = "double"
    SPLIT = "split"
    SURRENDER = "surrender"


class PerfectPairsOutcome(StrEnum):
    NONE = "none"
    MIXED = "mixed"
    COLORED = "colored"
    PERFECT = "perfect"


class GameOutcome(StrEnum):
    """Summary outcome stored on a completed game row."""

    BLACKJACK = "blackjack"
    WIN = "win"
    LOSE = "lose"
    PUSH = "push"
    SURRENDER = "surrender"


class FairnessVersion(StrEnum):
    """Shuffle algorithm identifier stored with every game for replay."""

    LEGACY_MULBERRY_V1 = "legacy_mulberry_v1"
    HMAC_SHA256_V1 = "hmac_sha256_v1"


class FairnessMode(StrEnum):
    """Seed lifecycle used to obtain a game's server seed."""

    LEGACY_PER_GAME_V1 = "legacy_per_game_v1"
    SESSION_NONCE_V1 = "session_nonce_v1"
