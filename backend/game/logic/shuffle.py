"""
Deterministic shoe shuffling for provably-fair blackjack.

A game's deck order is a pure function of (server seed, client seed, nonce,
deck count, fairness version):
1. The three seed inputs are joined as ``"server:client:nonce"``
2. A version-specific integer generator is derived from that string
3. A Fisher-Yates pass runs from the last index down to 1,
   swapping index ``i`` with ``draw(i + 1)``

Two generators are supported:
- ``legacy_mulberry_v1``: a 32-bit string hash seeds mulberry32; draws scale
  the 32-bit output into range. Kept so games played under it still verify.
- ``hmac_sha256_v1``: a keyed byte stream ``HMAC-SHA256(key=seed,
  msg=str(counter))`` read four bytes at a time as big-endian uint32, with
  rejection sampling so every index in range is equally likely.

Both must stay byte-for-byte stable: any change breaks replay of stored games
and third-party verification.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING

from game.logic.cards import create_shoe
from game.logic.enums import FairnessVersion
from game.logic.exceptions import ShuffleInputError

if TYPE_CHECKING:
    from collections.abc import Callable

    from game.logic.cards import Card

MIN_DECK_COUNT = 1
MAX_DECK_COUNT = 8

_UINT32_MASK = 0xFFFFFFFF
_UINT32_RANGE = 1 << 32
_MULBERRY_INCREMENT = 0x6D2B79F5


def normalize_fairness_version(
    value: str | None,
    fallback: FairnessVersion = FairnessVersion.LEGACY_MULBERRY_V1,
) -> FairnessVersion:
    """Map a stored version string to a known version, falling back for unknown values."""
    try:
        return FairnessVersion(value)
    except ValueError:
        return fallback


def combine_seed(server_seed: str, client_seed: str, nonce: int) -> str:
    return f"{server_seed}:{client_seed}:{nonce}"


def _legacy_string_hash(seed: str) -> int:
    """31-multiplier rolling hash over UTF-16 code units, wrapped to 32 bits."""
    encoded = seed.encode("utf-16-le", errors="surrogatepass")
    value = 0
    for offset in range(0, len(encoded), 2):
        code_unit = encoded[offset] | (encoded[offset + 1] << 8)
        value = (value * 31 + code_unit) & _UINT32_MASK
    return value


def _imul(a: int, b: int) -> int:
    return (a * b) & _UINT32_MASK


def _legacy_int_generator(seed: str) -> Callable[[int], int]:
    state = _legacy_string_hash(seed)

    def next_uint32() -> int:
        nonlocal state
        state = (state + _MULBERRY_INCREMENT) & _UINT32_MASK
        t = _imul(state ^ (state >> 15), state | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & _UINT32_MASK
        return (t ^ (t >> 14)) & _UINT32_MASK

    def draw(max_exclusive: int) -> int:
        # Equivalent to floor(u / 2^32 * n) without floating point.
        return (next_uint32() * max_exclusive) >> 32

    return draw


def _hmac_int_generator(seed: str) -> Callable[[int], int]:
    key = seed.encode("utf-8")
    counter = 0
    buffer = b""
    offset = 0

    def next_uint32() -> int:
        nonlocal counter, buffer, offset
        out = 0
        for _ in range(4):
            if offset >= len(buffer):
                buffer = hmac.new(key, str(counter).encode("ascii"), hashlib.sha256).digest()
                counter += 1
                offset = 0
            out = (out << 8) | buffer[offset]
            offset += 1
        return out

    def draw(max_exclusive: int) -> int:
        if max_exclusive == 0:
            return 0
        limit = (_UINT32_RANGE // max_exclusive) * max_exclusive
        value = next_uint32()
        while value >= limit:
            value = next_uint32()
        return value % max_exclusive

    return draw


_GENERATORS: dict[FairnessVersion, Callable[[str], Callable[[int], int]]] = {
    FairnessVersion.LEGACY_MULBERRY_V1: _legacy_int_generator,
    FairnessVersion.HMAC_SHA256_V1: _hmac_int_generator,
}


def generate_shuffle_order(deck_size: int, seed: str, fairness_version: FairnessVersion | str) -> list[int]:
    """Return the shuffled permutation of ``range(deck_size)`` for a combined seed."""
    if not isinstance(seed, str):
        raise ShuffleInputError(f"Seed must be a string, got {type(seed).__name__}")
    if isinstance(deck_size, bool) or not isinstance(deck_size, int) or deck_size < 0:
        raise ShuffleInputError(f"Deck size must be a non-negative integer, got {deck_size!r}")
    try:
        version = FairnessVersion(fairness_version)
    except ValueError:
        raise ShuffleInputError(f"Unknown fairness version {fairness_version!r}") from None

    draw = _GENERATORS[version](seed)
    indices = list(range(deck_size))
    for i in range(deck_size - 1, 0, -1):
        j = draw(i + 1)
        indices[i], indices[j] = indices[j], indices[i]
    return indices


def validate_shuffle_inputs(server_seed: str, client_seed: str, nonce: int, deck_count: int) -> None:
    """Reject malformed shuffle inputs instead of substituting defaults."""
    if not isinstance(server_seed, str) or not server_seed:
        raise ShuffleInputError("Server seed must be a non-empty string")
    if not isinstance(client_seed, str):
        raise ShuffleInputError(f"Client seed must be a string, got {type(client_seed).__name__}")
    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
        raise ShuffleInputError(f"Nonce must be a non-negative integer, got {nonce!r}")
    if isinstance(deck_count, bool) or not isinstance(deck_count, int):
        raise ShuffleInputError(f"Deck count must be an integer, got {deck_count!r}")
    if not (MIN_DECK_COUNT <= deck_count <= MAX_DECK_COUNT):
        raise ShuffleInputError(f"Deck count must be in [{MIN_DECK_COUNT}, {MAX_DECK_COUNT}], got {deck_count}")


def shuffle(
    server_seed: str,
    client_seed: str,
    nonce: int,
    deck_count: int,
    fairness_version: FairnessVersion | str,
) -> list[Card]:
    """Build a shoe of ``deck_count`` decks and return it in shuffled order."""
    validate_shuffle_inputs(server_seed, client_seed, nonce, deck_count)
    shoe = create_shoe(deck_count)
    order = generate_shuffle_order(len(shoe), combine_seed(server_seed, client_seed, nonce), fairness_version)
    return [shoe[index] for index in order]
