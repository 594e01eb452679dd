"""Provably-fair subsystem configuration via environment variables."""

from typing import Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings

from game.logic.enums import FairnessMode, FairnessVersion


class FairnessSettings(BaseSettings):
    model_config = {"env_prefix": "FAIRNESS_"}

    mode: FairnessMode = FairnessMode.LEGACY_PER_GAME_V1
    default_version: FairnessVersion = FairnessVersion.LEGACY_MULBERRY_V1

    # per-game commitment pool
    pool_target_size: int = Field(default=15, ge=1)
    pool_min_healthy: int = Field(default=5, ge=0)
    pool_auto_refill_threshold: int = Field(default=5, ge=0)
    refill_max_per_run: int = Field(default=1, ge=1)  # one commitment per cycle: witness maturation
    check_interval_seconds: float = Field(default=300, gt=0)
    cleanup_interval_seconds: float = Field(default=3600, gt=0)
    commitment_expiry_hours: float = Field(default=24, gt=0)
    claim_stale_minutes: float = Field(default=5, gt=0)

    # session seed pool
    session_pool_min: int = Field(default=5, ge=0)
    session_pool_target: int = Field(default=15, ge=1)
    session_seed_on_demand: bool = True

    # commitment node
    demo_mode: bool = False
    network: str = Field(default="testnet", pattern=r"^(mainnet|testnet)$")
    rpc_url: str = "http://127.0.0.1:18232"
    rpc_user: str = ""
    rpc_password: SecretStr = SecretStr("")
    house_address: str = ""
    mock_maturation_seconds: float = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _validate_pools(self) -> Self:
        if self.pool_min_healthy > self.pool_target_size:
            raise ValueError("pool_min_healthy cannot exceed pool_target_size")
        if self.session_pool_min > self.session_pool_target:
            raise ValueError("session_pool_min cannot exceed session_pool_target")
        if self.demo_mode and self.network == "mainnet":
            raise ValueError("demo_mode is forbidden on mainnet")
        return self
