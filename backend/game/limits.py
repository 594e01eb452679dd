"""Responsible-gaming checks applied before any new exposure is reserved."""

from __future__ import annotations

from typing import TYPE_CHECKING

from game.exceptions import SelfExcludedError, WagerLimitError
from shared.db.connection import utc_now
from shared.money import ZERO, round_zec

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from shared.dal.models import PlayerSession

SESSION_LIMIT_REACHED = "SESSION_LIMIT_REACHED"
LOSS_LIMIT_REACHED = "LOSS_LIMIT_REACHED"


def check_wager_allowed(session: PlayerSession, added_exposure: Decimal, now: datetime | None = None) -> None:
    """Raise when the session may not take on ``added_exposure`` more ZEC of risk.

    Withdrawals are never blocked by these checks; only new wagers are.
    """
    now = now or utc_now()
    exposure = round_zec(added_exposure)

    if session.excluded_until is not None and session.excluded_until > now:
        raise SelfExcludedError(f"Self-excluded until {session.excluded_until.isoformat()}")

    if exposure < ZERO:
        raise WagerLimitError(LOSS_LIMIT_REACHED, "Invalid wager exposure")

    if session.session_limit_minutes:
        elapsed_minutes = int((now - session.created_at).total_seconds() // 60)
        if elapsed_minutes >= session.session_limit_minutes:
            raise WagerLimitError(
                SESSION_LIMIT_REACHED,
                "Session time limit reached. New wagers are blocked, but withdrawals remain available.",
            )

    if session.loss_limit is not None:
        net_loss = max(ZERO, round_zec(session.total_wagered - session.total_won))
        if round_zec(net_loss + exposure) > session.loss_limit:
            raise WagerLimitError(LOSS_LIMIT_REACHED, "Loss limit reached. New wagers are blocked for this session.")
