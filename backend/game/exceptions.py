"""Typed failures of the game orchestration layer."""


class GameServiceError(Exception):
    """Base for orchestration failures; each subclass carries a stable ``code``."""

    code = "GAME_ERROR"


class SessionNotFoundError(GameServiceError):
    code = "SESSION_NOT_FOUND"


class GameNotFoundError(GameServiceError):
    code = "GAME_NOT_FOUND"


class GameOwnershipError(GameServiceError):
    """The game exists but belongs to another session."""

    code = "GAME_OWNERSHIP"


class GameAlreadyCompletedError(GameServiceError):
    code = "GAME_ALREADY_COMPLETED"


class GameConflictError(GameServiceError):
    """A concurrent request changed the game first; the caller should reload and retry."""

    code = "GAME_CONFLICT"


class SelfExcludedError(GameServiceError):
    code = "SELF_EXCLUDED"


class WagerLimitError(GameServiceError):
    """A responsible-gaming limit blocks new exposure."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


class ReplayReconstructionError(GameServiceError):
    """Stored inputs no longer replay to a consistent round."""

    code = "REPLAY_FAILED"
