"""ZEC amount helpers.

Amounts are ``Decimal`` in the domain layer and integer zatoshi (1e-8 ZEC)
in storage, so balance guards compare exact integers.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

ZATOSHI_PER_ZEC = 100_000_000
ZEC_QUANTUM = Decimal("0.00000001")
ZERO = Decimal(0)


def round_zec(value: Decimal | int | str, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Quantize an amount to 8 decimal places."""
    return Decimal(value).quantize(ZEC_QUANTUM, rounding=rounding)


def half_stake(value: Decimal) -> Decimal:
    """Half of a stake, rounded down so it never exceeds the exact half."""
    return round_zec(value / 2, ROUND_DOWN)


def to_zatoshi(amount: Decimal | int | str) -> int:
    return int(round_zec(amount) * ZATOSHI_PER_ZEC)


def from_zatoshi(value: int) -> Decimal:
    return round_zec(Decimal(value) / ZATOSHI_PER_ZEC)
