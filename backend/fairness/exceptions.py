"""Typed failures of the provably-fair seed supply and verification layer."""


class FairnessError(Exception):
    """Base for seed-supply and seed-lifecycle failures."""


class BlockchainUnavailableError(FairnessError):
    """The commitment node cannot be reached or is not ready to broadcast."""


class WitnessNotReadyError(BlockchainUnavailableError):
    """The previous commitment's change output has not matured enough to be spent."""


class CommitmentUnavailableError(FairnessError):
    """No pooled commitment could be claimed and the synchronous fallback failed."""


class SessionFairnessUnavailableError(FairnessError):
    """No anchored seed could be assigned to the session's fairness stream."""


class ClientSeedLockedError(FairnessError):
    """The client seed cannot change once the active stream has been used for a wager."""


class InvalidClientSeedError(FairnessError, ValueError):
    """Client seed is empty or longer than the allowed maximum."""


class GameNotVerifiableError(FairnessError):
    """Only completed games can be verified."""
