"""Game server configuration via environment variables."""

from decimal import Decimal
from typing import Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings
from pydantic_settings.sources.base import PydanticBaseSettingsSource

from game.logic.state import BetLimits, GameRules
from shared.validators import ListEnvSettingsSource, parse_origin_list


class GameServerSettings(BaseSettings):
    model_config = {"env_prefix": "GAME_"}

    database_path: str = Field(default="backend/data/blackjack.db", min_length=1)
    log_dir: str | None = None
    cors_origins: list[str] = ["http://localhost:3000"]

    min_bet: Decimal = Field(default=Decimal("0.01"), gt=0)
    max_bet: Decimal = Field(default=Decimal(1), gt=0)
    deck_count: int = Field(default=6, ge=1, le=8)
    allow_surrender: bool = False
    history_limit: int = Field(default=50, ge=1, le=500)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_origin_list(v)

    @model_validator(mode="after")
    def _validate_bets(self) -> Self:
        if self.min_bet > self.max_bet:
            raise ValueError("min_bet cannot exceed max_bet")
        return self

    @property
    def rules(self) -> GameRules:
        return GameRules(deck_count=self.deck_count, allow_surrender=self.allow_surrender)

    @property
    def bet_limits(self) -> BetLimits:
        return BetLimits(min_bet=self.min_bet, max_bet=self.max_bet)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, ListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
