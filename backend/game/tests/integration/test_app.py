"""HTTP surface tests: routing, error mapping, and app lifecycle."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from starlette.testclient import TestClient

from fairness.chain.mock import MockCommitmentService
from fairness.seeds import hash_server_seed
from fairness.settings import FairnessSettings
from game.logic.enums import FairnessMode
from game.server.app import create_app
from game.server.settings import GameServerSettings
from shared.db.connection import Database
from shared.db.session_repository import SqliteSessionRepository

if TYPE_CHECKING:
    from pathlib import Path

    from starlette.applications import Starlette

SESSION_ID = "http-session"


def _make_app(tmp_path: Path, mode: FairnessMode = FairnessMode.LEGACY_PER_GAME_V1) -> Starlette:
    settings = GameServerSettings(database_path=str(tmp_path / "app.db"))
    fairness_settings = FairnessSettings(demo_mode=True, mode=mode, pool_min_healthy=0, session_pool_min=0)
    app = create_app(settings, fairness_settings, chain=MockCommitmentService(), run_background_tasks=False)
    asyncio.run(SqliteSessionRepository(app.state.db).create_session(SESSION_ID, "t1wallet", Decimal(5)))
    return app


@pytest.fixture
def client(tmp_path):
    with TestClient(_make_app(tmp_path)) as test_client:
        yield test_client


@pytest.fixture
def session_client(tmp_path):
    with TestClient(_make_app(tmp_path, FairnessMode.SESSION_NONCE_V1)) as test_client:
        yield test_client


def _start(client: TestClient, **extra) -> dict:
    response = client.post("/api/game", json={"action": "start", "session_id": SESSION_ID, "bet": "0.1", **extra})
    assert response.status_code == 200, response.text
    return response.json()


def _play_out(client: TestClient, body: dict) -> dict:
    while body["game_state"]["phase"] != "complete":
        response = client.post(
            "/api/game",
            json={"action": "stand", "session_id": SESSION_ID, "game_id": body["game_id"]},
        )
        assert response.status_code == 200, response.text
        body = response.json()
    return body


class TestHealth:
    def test_reports_mode_and_pool(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["fairness_mode"] == "legacy_per_game_v1"
        assert body["blockchain_available"] is True
        assert "commitment_pool" in body


class TestGameRoutes:
    def test_start_returns_state_and_commitment(self, client):
        body = _start(client)
        assert body["game_id"]
        assert Decimal(body["total_wagered"]) == Decimal("0.1")
        assert body["commitment"]["tx_hash"].startswith("mock_")
        assert "deck" not in body["game_state"]

    def test_start_requires_bet(self, client):
        response = client.post("/api/game", json={"action": "start", "session_id": SESSION_ID})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_rejects_unknown_fields(self, client):
        response = client.post("/api/game", json={"action": "start", "session_id": SESSION_ID, "bet": 1, "x": 1})
        assert response.status_code == 400

    def test_unknown_session(self, client):
        response = client.post("/api/game", json={"action": "start", "session_id": "ghost", "bet": "0.1"})
        assert response.status_code == 404
        assert response.json()["code"] == "SESSION_NOT_FOUND"

    def test_bet_above_limit(self, client):
        response = client.post("/api/game", json={"action": "start", "session_id": SESSION_ID, "bet": "3"})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_BET"

    def test_action_on_completed_game_conflicts(self, client):
        body = _play_out(client, _start(client))
        response = client.post("/api/game", json={"action": "hit", "session_id": SESSION_ID, "game_id": body["game_id"]})
        assert response.status_code == 409
        assert response.json()["code"] == "GAME_ALREADY_COMPLETED"

    def test_query_single_game_and_history(self, client):
        body = _play_out(client, _start(client))

        single = client.get("/api/game", params={"session_id": SESSION_ID, "game_id": body["game_id"]})
        assert single.status_code == 200
        assert single.json()["verification_status"] == "ready"

        history = client.get("/api/game", params={"session_id": SESSION_ID})
        assert [g["id"] for g in history.json()["games"]] == [body["game_id"]]

    def test_query_requires_session(self, client):
        response = client.get("/api/game")
        assert response.status_code == 400


class TestVerifyRoute:
    def test_verify_completed_game(self, client):
        body = _play_out(client, _start(client))
        response = client.post("/api/verify", json={"game_id": body["game_id"]})
        assert response.status_code == 200
        report = response.json()
        assert report["valid"] is True, report["errors"]
        assert report["steps"]["hash_matches"] is True
        assert report["steps"]["on_chain_confirmed"] is True
        assert report["steps"]["outcome_valid"] is True

    def test_verify_active_game_rejected(self, client):
        body = _start(client)
        if body["game_state"]["phase"] == "complete":
            pytest.skip("round completed on the deal")
        response = client.post("/api/verify", json={"game_id": body["game_id"]})
        assert response.status_code == 400
        assert response.json()["code"] == "GAME_NOT_VERIFIABLE"

    def test_verify_unknown_game(self, client):
        response = client.post("/api/verify", json={"game_id": "missing"})
        assert response.status_code == 404

    def test_manual_verification(self, client):
        seed = "f" * 64
        response = client.post(
            "/api/verify",
            json={
                "server_seed": seed,
                "server_seed_hash": hash_server_seed(seed),
                "client_seed": "client",
                "nonce": 3,
                "fairness_version": "hmac_sha256_v1",
            },
        )
        report = response.json()
        assert report["valid"] is True
        assert len(report["opening_cards"]) == 4
        assert report["steps"]["on_chain_confirmed"] is False

    def test_manual_verification_needs_full_tuple(self, client):
        response = client.post("/api/verify", json={"server_seed": "abc"})
        assert response.status_code == 400


class TestFairnessRoutes:
    def test_legacy_mode_has_no_session_stream(self, client):
        state = client.get("/api/fairness", params={"session_id": SESSION_ID})
        assert state.json() == {"mode": "legacy_per_game_v1", "can_edit_client_seed": False}

        response = client.post("/api/fairness", json={"action": "rotate", "session_id": SESSION_ID})
        assert response.status_code == 409

    def test_set_client_seed_then_lock(self, session_client):
        response = session_client.post(
            "/api/fairness",
            json={"action": "set_client_seed", "session_id": SESSION_ID, "client_seed": "  mine  "},
        )
        assert response.status_code == 200
        assert response.json()["fairness"]["client_seed"] == "mine"

        _start(session_client)
        locked = session_client.post(
            "/api/fairness",
            json={"action": "set_client_seed", "session_id": SESSION_ID, "client_seed": "other"},
        )
        assert locked.status_code == 409
        assert locked.json()["code"] == "CLIENT_SEED_LOCKED"

    def test_rotate_reveals_previous_seed(self, session_client):
        before = session_client.get("/api/fairness", params={"session_id": SESSION_ID}).json()
        response = session_client.post("/api/fairness", json={"action": "rotate", "session_id": SESSION_ID})
        assert response.status_code == 200
        body = response.json()
        assert hash_server_seed(body["reveal"]["server_seed"]) == before["server_seed_hash"]
        assert body["fairness"]["server_seed_hash"] != before["server_seed_hash"]
        assert body["fairness"]["next_nonce"] == 0

    def test_unknown_session(self, session_client):
        response = session_client.get("/api/fairness", params={"session_id": "ghost"})
        assert response.status_code == 404


class TestPoolRoute:
    def test_reports_both_pools(self, client):
        body = client.get("/api/pool").json()
        assert set(body) == {"commitments", "session_seeds"}


class TestOwnedDbShutdown:
    def test_shutdown_closes_owned_db(self, tmp_path):
        app = _make_app(tmp_path)
        with TestClient(app):
            db: Database = app.state.db
            assert db.connection is not None
        assert db._conn is None

    def test_injected_db_stays_open(self, tmp_path):
        db = Database(tmp_path / "shared.db")
        db.connect()
        fairness_settings = FairnessSettings(demo_mode=True)
        app = create_app(GameServerSettings(), fairness_settings, db=db, chain=MockCommitmentService())
        with TestClient(app):
            pass
        assert db.connection is not None
        db.close()
