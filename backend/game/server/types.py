from decimal import Decimal
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

_ID_FIELD = Field(min_length=1, max_length=100)


class GameRequestAction(StrEnum):
    START = "start"
    HIT = "hit"
    STAND = "stand"
    DOUBLE = "double"
    SPLIT = "split"
    SURRENDER = "surrender"
    INSURANCE = "insurance"


class FairnessRequestAction(StrEnum):
    SET_CLIENT_SEED = "set_client_seed"
    ROTATE = "rotate"


class GameActionRequest(BaseModel):
    """Body of ``POST /api/game``. ``start`` needs a bet; every other action needs a game id."""

    model_config = ConfigDict(extra="forbid")

    action: GameRequestAction
    session_id: str = _ID_FIELD
    game_id: str | None = Field(default=None, min_length=1, max_length=100)
    bet: Decimal | None = Field(default=None, gt=0, max_digits=20, decimal_places=8)
    perfect_pairs_bet: Decimal = Field(default=Decimal(0), ge=0, max_digits=20, decimal_places=8)
    client_seed: str | None = Field(default=None, max_length=256)

    @model_validator(mode="after")
    def _validate_action_fields(self) -> Self:
        if self.action == GameRequestAction.START:
            if self.bet is None:
                raise ValueError("bet is required to start a game")
        elif self.game_id is None:
            raise ValueError(f"game_id is required for {self.action}")
        return self


class FairnessActionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: FairnessRequestAction
    session_id: str = _ID_FIELD
    client_seed: str | None = Field(default=None, max_length=256)

    @model_validator(mode="after")
    def _validate_client_seed(self) -> Self:
        if self.action == FairnessRequestAction.SET_CLIENT_SEED and not self.client_seed:
            raise ValueError("client_seed is required for set_client_seed")
        return self


class VerifyRequest(BaseModel):
    """Either a stored ``game_id`` or a full manual seed tuple."""

    model_config = ConfigDict(extra="forbid")

    game_id: str | None = Field(default=None, min_length=1, max_length=100)
    server_seed: str | None = Field(default=None, min_length=1, max_length=256)
    server_seed_hash: str | None = Field(default=None, pattern=r"^[0-9a-fA-F]{64}$")
    client_seed: str | None = Field(default=None, min_length=1, max_length=256)
    nonce: int | None = Field(default=None, ge=0, strict=True)
    tx_hash: str | None = Field(default=None, max_length=128)
    fairness_version: str | None = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def _validate_target(self) -> Self:
        manual = (self.server_seed, self.server_seed_hash, self.client_seed, self.nonce)
        if self.game_id is None and any(v is None for v in manual):
            raise ValueError("Provide game_id, or server_seed, server_seed_hash, client_seed and nonce")
        return self
