"""
Unit tests for deterministic shoe shuffling.

Covers the reference vectors of both fairness versions, permutation validity,
input validation, and version normalization.
"""

import pytest

from game.logic.cards import create_shoe
from game.logic.enums import FairnessVersion
from game.logic.exceptions import ShuffleInputError
from game.logic.shuffle import (
    combine_seed,
    generate_shuffle_order,
    normalize_fairness_version,
    shuffle,
)

REFERENCE_SEED = "server:client:42"


class TestReferenceVectors:
    def test_hmac_sha256_v1(self):
        order = generate_shuffle_order(52, REFERENCE_SEED, FairnessVersion.HMAC_SHA256_V1)
        assert order[:20] == [51, 3, 8, 46, 35, 50, 0, 14, 28, 17, 18, 43, 26, 9, 48, 20, 44, 42, 11, 38]

    def test_legacy_mulberry_v1(self):
        order = generate_shuffle_order(52, REFERENCE_SEED, FairnessVersion.LEGACY_MULBERRY_V1)
        assert order[:20] == [16, 43, 13, 10, 35, 24, 36, 33, 42, 49, 28, 50, 19, 2, 23, 17, 34, 1, 45, 31]

    def test_versions_produce_different_permutations(self):
        hmac_order = generate_shuffle_order(52, REFERENCE_SEED, FairnessVersion.HMAC_SHA256_V1)
        legacy_order = generate_shuffle_order(52, REFERENCE_SEED, FairnessVersion.LEGACY_MULBERRY_V1)
        assert sorted(hmac_order) == list(range(52))
        assert sorted(legacy_order) == list(range(52))
        assert hmac_order != legacy_order


class TestShuffle:
    @pytest.mark.parametrize("version", list(FairnessVersion))
    def test_deterministic(self, version):
        first = shuffle("server", "client", 7, 6, version)
        second = shuffle("server", "client", 7, 6, version)
        assert first == second

    def test_is_permutation_of_the_shoe(self):
        shoe = create_shoe(6)
        shuffled = shuffle("server", "client", 0, 6, FairnessVersion.HMAC_SHA256_V1)
        assert len(shuffled) == 312
        key = lambda c: (c.suit, c.rank)  # noqa: E731
        assert sorted(shuffled, key=key) == sorted(shoe, key=key)

    def test_nonce_changes_order(self):
        a = shuffle("server", "client", 0, 1, FairnessVersion.HMAC_SHA256_V1)
        b = shuffle("server", "client", 1, 1, FairnessVersion.HMAC_SHA256_V1)
        assert a != b

    def test_combined_seed_format(self):
        assert combine_seed("s", "c", 3) == "s:c:3"

    def test_empty_client_seed_is_allowed(self):
        assert len(shuffle("server", "", 0, 1, FairnessVersion.LEGACY_MULBERRY_V1)) == 52


class TestShuffleValidation:
    @pytest.mark.parametrize(
        ("server_seed", "client_seed", "nonce", "deck_count"),
        [
            ("", "client", 0, 6),
            ("server", "client", -1, 6),
            ("server", "client", True, 6),
            ("server", "client", 0, 0),
            ("server", "client", 0, 9),
            ("server", "client", 0, 2.5),
        ],
    )
    def test_rejects_malformed_inputs(self, server_seed, client_seed, nonce, deck_count):
        with pytest.raises(ShuffleInputError):
            shuffle(server_seed, client_seed, nonce, deck_count, FairnessVersion.HMAC_SHA256_V1)

    def test_rejects_unknown_version(self):
        with pytest.raises(ShuffleInputError, match="Unknown fairness version"):
            generate_shuffle_order(52, REFERENCE_SEED, "sha1_v0")

    def test_shuffle_input_error_is_value_error(self):
        with pytest.raises(ValueError, match="Nonce"):
            shuffle("server", "client", -5, 1, FairnessVersion.HMAC_SHA256_V1)


class TestNormalizeFairnessVersion:
    def test_known_versions_pass_through(self):
        assert normalize_fairness_version("hmac_sha256_v1") == FairnessVersion.HMAC_SHA256_V1
        assert normalize_fairness_version("legacy_mulberry_v1") == FairnessVersion.LEGACY_MULBERRY_V1

    def test_unknown_falls_back_to_legacy(self):
        assert normalize_fairness_version("unknown-version") == FairnessVersion.LEGACY_MULBERRY_V1
        assert normalize_fairness_version(None) == FairnessVersion.LEGACY_MULBERRY_V1

    def test_custom_fallback(self):
        assert normalize_fairness_version(None, FairnessVersion.HMAC_SHA256_V1) == FairnessVersion.HMAC_SHA256_V1
