from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from fairness.chain.mock import MockCommitmentService
from fairness.pool import CommitmentPoolManager
from fairness.session_stream import SessionFairnessStream
from fairness.settings import FairnessSettings
from game.logic.cards import Card, is_blackjack
from game.logic.enums import FairnessMode, GamePhase, Rank, Suit
from game.logic.state import BlackjackGameState, GameRules, Hand
from game.service import BlackjackGameService
from shared.db.connection import Database
from shared.db.session_repository import SqliteSessionRepository

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

SESSION_ID = "session-1"
STARTING_BALANCE = Decimal(10)

_SUITS = {"H": Suit.HEARTS, "D": Suit.DIAMONDS, "C": Suit.CLUBS, "S": Suit.SPADES}


# ============================================================================
# Test State Builder Helpers
# ============================================================================


def card(code: str, *, face_up: bool = True) -> Card:
    """Build a card from a short code such as ``"AS"``, ``"10H"`` or ``"KD"``."""
    return Card(rank=Rank(code[:-1]), suit=_SUITS[code[-1]], face_up=face_up)


def cards(*codes: str) -> tuple[Card, ...]:
    return tuple(card(c) for c in codes)


def create_hand(*codes: str, bet: Decimal = Decimal(1), **flags: bool) -> Hand:
    hand_cards = cards(*codes)
    return Hand(cards=hand_cards, bet=bet, is_blackjack=is_blackjack(hand_cards), **flags)


def create_round_state(
    *,
    player: Sequence[str] = ("10H", "7C"),
    dealer: Sequence[str] = ("9S", "8D"),
    deck: Sequence[str] = ("2H", "3H", "4H", "5H", "6H", "7H"),
    bet: Decimal = Decimal(1),
    balance: Decimal = Decimal(9),
    dealer_peeked: bool = True,
    rules: GameRules | None = None,
) -> BlackjackGameState:
    """A round in the player turn with a fixed deck; the dealer hole card is face down."""
    dealer_cards = (card(dealer[0]), card(dealer[1], face_up=False))
    return BlackjackGameState(
        phase=GamePhase.PLAYER_TURN,
        player_hands=(create_hand(*player, bet=bet),),
        dealer_hand=Hand(cards=dealer_cards, is_blackjack=is_blackjack(dealer_cards)),
        deck=cards(*deck),
        balance=balance,
        current_bet=bet,
        dealer_peeked=dealer_peeked,
        server_seed="server",
        client_seed="client",
        rules=rules or GameRules(),
    )


_FILLER = ("2C", "3D", "4S", "5C", "6D", "7S") * 4


def fix_shoe(monkeypatch: pytest.MonkeyPatch, *codes: str) -> None:
    """Make every shuffle return ``codes`` first.

    The deal order is player, dealer up, player, dealer hole; later codes are
    drawn by hits, doubles and the dealer. Small filler cards follow.
    """
    shoe = [card(c) for c in (*codes, *_FILLER)]
    monkeypatch.setattr("game.logic.engine.shuffle", lambda *_args, **_kwargs: list(shoe))


# ============================================================================
# Service fixtures
# ============================================================================


@pytest.fixture
def db(tmp_path: Path):
    database = Database(tmp_path / "blackjack.db")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def chain() -> MockCommitmentService:
    return MockCommitmentService()


@pytest.fixture
def fairness_settings() -> FairnessSettings:
    return FairnessSettings(demo_mode=True, pool_target_size=3, pool_min_healthy=1, session_pool_target=3)


@pytest.fixture
def session_settings() -> FairnessSettings:
    return FairnessSettings(
        demo_mode=True,
        mode=FairnessMode.SESSION_NONCE_V1,
        pool_target_size=3,
        pool_min_healthy=1,
        session_pool_min=1,
        session_pool_target=3,
    )


@pytest.fixture
async def session(db: Database):
    return await SqliteSessionRepository(db).create_session(SESSION_ID, "t1wallet", STARTING_BALANCE)


def build_service(db: Database, chain: MockCommitmentService, settings: FairnessSettings) -> BlackjackGameService:
    pool = CommitmentPoolManager(db, chain, settings)
    stream = SessionFairnessStream(db, chain, settings)
    return BlackjackGameService(db, pool, stream, settings)


@pytest.fixture
async def pool_service(db, chain, fairness_settings, session):  # noqa: ARG001
    service = build_service(db, chain, fairness_settings)
    yield service
    await service._pool.stop()


@pytest.fixture
async def session_service(db, chain, session_settings, session):  # noqa: ARG001
    service = build_service(db, chain, session_settings)
    yield service
    await service._stream.stop()
