"""
Balance reservation and crediting.

Every balance change goes through these functions, always inside a
transaction the caller already holds, so a reservation or credit commits or
rolls back together with the game-state change it pays for. None of them
opens its own transaction.

``reserve_funds`` is a single conditional UPDATE: the balance is decremented
only if it covers the amount, so concurrent reservations against the same
balance can never overdraw it. "Insufficient balance" is reported as
``False`` rather than an exception so callers can branch on it.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from shared.money import to_zatoshi

if TYPE_CHECKING:
    import sqlite3
    from decimal import Decimal

logger = structlog.get_logger()


class ReserveCounter(StrEnum):
    """Session counter incremented alongside a balance decrement."""

    WAGERED = "total_wagered"
    WITHDRAWN = "total_withdrawn"


class CreditCounter(StrEnum):
    """Session counter incremented alongside a balance increment."""

    WON = "total_won"
    DEPOSITED = "total_deposited"


def reserve_funds(
    tx: sqlite3.Connection,
    session_id: str,
    amount: Decimal,
    counter: ReserveCounter = ReserveCounter.WAGERED,
) -> bool:
    """Decrement the balance iff it covers ``amount``. Non-positive amounts succeed without a write."""
    units = to_zatoshi(amount)
    if units <= 0:
        return True
    column = ReserveCounter(counter).value
    cursor = tx.execute(
        f"UPDATE sessions SET balance = balance - ?, {column} = {column} + ? WHERE id = ? AND balance >= ?",  # noqa: S608
        (units, units, session_id, units),
    )
    if cursor.rowcount != 1:
        logger.warning("reservation rejected", event_type="reservation_rejected", session_id=session_id, amount=str(amount))
        return False
    return True


def credit_funds(
    tx: sqlite3.Connection,
    session_id: str,
    amount: Decimal,
    counter: CreditCounter = CreditCounter.WON,
) -> None:
    """Increment the balance and the matching counter. Non-positive amounts are a no-op."""
    units = to_zatoshi(amount)
    if units <= 0:
        return
    column = CreditCounter(counter).value
    cursor = tx.execute(
        f"UPDATE sessions SET balance = balance + ?, {column} = {column} + ? WHERE id = ?",  # noqa: S608
        (units, units, session_id),
    )
    if cursor.rowcount != 1:
        raise LookupError(f"Session {session_id} not found")


def release_funds(
    tx: sqlite3.Connection,
    session_id: str,
    amount: Decimal,
    counter: ReserveCounter = ReserveCounter.WAGERED,
) -> None:
    """Undo a reservation made earlier in the same logical operation."""
    units = to_zatoshi(amount)
    if units <= 0:
        return
    column = ReserveCounter(counter).value
    cursor = tx.execute(
        f"UPDATE sessions SET balance = balance + ?, {column} = MAX(0, {column} - ?) WHERE id = ?",  # noqa: S608
        (units, units, session_id),
    )
    if cursor.rowcount != 1:
        raise LookupError(f"Session {session_id} not found")
