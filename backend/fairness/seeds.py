"""Server/client seed generation and hashing."""

import hashlib
import secrets

from fairness.exceptions import InvalidClientSeedError

SERVER_SEED_BYTES = 32
CLIENT_SEED_BYTES = 16
MAX_CLIENT_SEED_LENGTH = 128


def generate_server_seed() -> str:
    """Generate a cryptographic server seed as a hex string (64 chars / 256 bits)."""
    return secrets.token_bytes(SERVER_SEED_BYTES).hex()


def generate_client_seed() -> str:
    return secrets.token_bytes(CLIENT_SEED_BYTES).hex()


def hash_server_seed(server_seed: str) -> str:
    """SHA-256 of the seed's UTF-8 bytes, hex-encoded. This is the value published on-chain."""
    return hashlib.sha256(server_seed.encode("utf-8")).hexdigest()


def normalize_client_seed(value: str) -> str:
    """Strip surrounding whitespace and enforce 1..128 characters."""
    if not isinstance(value, str):
        raise InvalidClientSeedError("Client seed must be a string")
    seed = value.strip()
    if not seed or len(seed) > MAX_CLIENT_SEED_LENGTH:
        raise InvalidClientSeedError(f"Client seed must be 1-{MAX_CLIENT_SEED_LENGTH} characters")
    return seed
