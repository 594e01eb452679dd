from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from game.logic.engine import execute_action, get_available_actions
from game.logic.enums import BlackjackAction, FairnessMode, FairnessVersion, GameOutcome
from game.logic.exceptions import InvalidActionError
from game.logic.replay import (
    RoundInputs,
    determine_outcome,
    funded_balance,
    parse_action_history,
    replay_round,
)
from game.tests.conftest import create_round_state, fix_shoe
from shared.dal.models import GameRecord


def _inputs(nonce: int = 0, **overrides) -> RoundInputs:
    fields = {
        "server_seed": "a" * 64,
        "server_seed_hash": "h" * 64,
        "client_seed": "client",
        "nonce": nonce,
        "fairness_version": FairnessVersion.HMAC_SHA256_V1,
        "main_bet": Decimal("0.5"),
    }
    fields.update(overrides)
    return RoundInputs(**fields)


def _first_open_round() -> RoundInputs:
    """Inputs whose opening deal leaves the player a decision."""
    for nonce in range(100):
        inputs = _inputs(nonce)
        if not replay_round(inputs, []).is_complete:
            return inputs
    raise AssertionError("no open round in 100 nonces")


class TestReplayRound:
    def test_same_inputs_same_state(self):
        assert replay_round(_inputs(4), []) == replay_round(_inputs(4), [])

    def test_incremental_play_matches_full_replay(self):
        inputs = _first_open_round()
        live = replay_round(inputs, [])
        history: list[BlackjackAction] = []
        while not live.is_complete:
            action = BlackjackAction.STAND if BlackjackAction.STAND in get_available_actions(live) else None
            assert action is not None
            live = execute_action(live, action)
            history.append(action)

        replayed = replay_round(inputs, history)
        assert replayed == live
        assert replayed.settlement == live.settlement

    def test_action_after_completion_rejected(self):
        inputs = _first_open_round()
        with pytest.raises(InvalidActionError, match="round already complete"):
            replay_round(inputs, [BlackjackAction.STAND] * 10)

    def test_remaining_balance_restores_live_balance(self):
        inputs = _first_open_round()
        state = replay_round(inputs, [], remaining_balance=Decimal("3.25"))
        assert state.balance == Decimal("3.25")


class TestPeekOnCompletedRound:
    def test_active_round_keeps_peek_pending(self, monkeypatch):
        fix_shoe(monkeypatch, "10H", "AS", "9C", "KD")
        state = replay_round(_inputs(), [])
        assert not state.is_complete
        assert not state.dealer_peeked

    def test_completed_round_runs_the_peek(self, monkeypatch):
        fix_shoe(monkeypatch, "10H", "AS", "9C", "KD")
        state = replay_round(_inputs(), [], completed=True)
        assert state.is_complete
        assert state.dealer_hand.is_blackjack
        assert state.settlement.total_payout == Decimal(0)
        assert determine_outcome(state) == GameOutcome.LOSE

    def test_no_dealer_blackjack_leaves_round_open(self, monkeypatch):
        fix_shoe(monkeypatch, "10H", "AS", "9C", "7D")
        assert not replay_round(_inputs(), [], completed=True).is_complete


class TestFundedBalance:
    def test_adds_back_every_stake(self):
        inputs = _inputs(main_bet=Decimal(1), perfect_pairs_bet=Decimal("0.5"), insurance_bet=Decimal("0.5"))
        actions = [BlackjackAction.DOUBLE, BlackjackAction.HIT, BlackjackAction.SPLIT]
        assert funded_balance(inputs, actions, Decimal(3)) == Decimal(7)


class TestRoundInputs:
    def test_insurance_capped_at_half_the_bet(self):
        with pytest.raises(ValidationError):
            _inputs(insurance_bet=Decimal("0.3"))

    def test_from_record_pins_limits_to_stored_bet(self):
        game = GameRecord(
            id="g1",
            session_id="s1",
            main_bet=Decimal(5),
            server_seed_hash="h" * 64,
            client_seed="client",
            nonce=2,
            fairness_version="not-a-version",
            fairness_mode=FairnessMode.LEGACY_PER_GAME_V1,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        inputs = RoundInputs.from_record(game, "seed")
        assert inputs.bet_limits.min_bet == inputs.bet_limits.max_bet == Decimal(5)
        assert inputs.fairness_version == FairnessVersion.LEGACY_MULBERRY_V1
        assert replay_round(inputs, [], remaining_balance=Decimal(0)).current_bet == Decimal(5)


class TestParseActionHistory:
    def test_parses_known_actions(self):
        assert parse_action_history(["hit", "stand"]) == [BlackjackAction.HIT, BlackjackAction.STAND]

    def test_rejects_unknown_entries(self):
        with pytest.raises(InvalidActionError):
            parse_action_history(["hit", "peek"])


class TestDetermineOutcome:
    def test_requires_completed_round(self):
        with pytest.raises(ValueError, match="not complete"):
            determine_outcome(create_round_state())
