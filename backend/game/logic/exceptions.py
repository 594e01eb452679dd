"""Typed failures raised by the pure blackjack logic layer."""


class GameRuleError(Exception):
    """Base for rule violations detected by the rules engine."""


class ShuffleInputError(GameRuleError, ValueError):
    """Shuffle inputs are malformed (bad deck count, seed, nonce or version)."""


class InvalidBetError(GameRuleError):
    """Bet is outside the table limits or the side bet exceeds the main bet."""


class InsufficientBalanceError(GameRuleError):
    """Balance cannot cover the requested stake."""


class InvalidActionError(GameRuleError):
    """Action is not legal for the current phase or hand."""

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"{action}: {reason}")


class InsuranceNotAvailableError(GameRuleError):
    """Insurance was requested when the dealer is not showing an unpeeked Ace."""
