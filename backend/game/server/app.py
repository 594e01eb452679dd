from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ValidationError
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from fairness.chain.mock import MockCommitmentService
from fairness.chain.rpc import ZcashRpcCommitmentService
from fairness.exceptions import (
    BlockchainUnavailableError,
    ClientSeedLockedError,
    CommitmentUnavailableError,
    FairnessError,
    GameNotVerifiableError,
    InvalidClientSeedError,
    SessionFairnessUnavailableError,
)
from fairness.pool import CommitmentPoolManager
from fairness.session_stream import SessionFairnessStream
from fairness.settings import FairnessSettings
from fairness.verification import VerificationService
from game.exceptions import (
    GameAlreadyCompletedError,
    GameConflictError,
    GameNotFoundError,
    GameOwnershipError,
    GameServiceError,
    ReplayReconstructionError,
    SelfExcludedError,
    SessionNotFoundError,
    WagerLimitError,
)
from game.logic.enums import FairnessMode
from game.logic.exceptions import (
    GameRuleError,
    InsufficientBalanceError,
    InsuranceNotAvailableError,
    InvalidActionError,
    InvalidBetError,
    ShuffleInputError,
)
from game.server.settings import GameServerSettings
from game.server.types import (
    FairnessActionRequest,
    FairnessRequestAction,
    GameActionRequest,
    GameRequestAction,
    VerifyRequest,
)
from game.service import BlackjackGameService
from shared.db import Database, SqliteSessionRepository
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request

    from fairness.chain.base import CommitmentService
    from shared.dal.session_repository import SessionRepository

_MAX_REQUEST_BODY_SIZE = 4096

# Most specific class first; the first isinstance match wins.
_ERROR_RESPONSES: tuple[tuple[type[Exception], int, str], ...] = (
    (InvalidBetError, 400, "INVALID_BET"),
    (InsufficientBalanceError, 400, "INSUFFICIENT_BALANCE"),
    (InvalidActionError, 400, "INVALID_ACTION"),
    (InsuranceNotAvailableError, 400, "INSURANCE_NOT_AVAILABLE"),
    (ShuffleInputError, 400, "INVALID_SEED_INPUT"),
    (GameRuleError, 400, "GAME_RULE_VIOLATION"),
    (InvalidClientSeedError, 400, "INVALID_CLIENT_SEED"),
    (GameNotVerifiableError, 400, "GAME_NOT_VERIFIABLE"),
    (GameOwnershipError, 403, GameOwnershipError.code),
    (SelfExcludedError, 403, SelfExcludedError.code),
    (WagerLimitError, 403, "WAGER_LIMIT"),
    (SessionNotFoundError, 404, SessionNotFoundError.code),
    (GameNotFoundError, 404, GameNotFoundError.code),
    (ClientSeedLockedError, 409, "CLIENT_SEED_LOCKED"),
    (GameAlreadyCompletedError, 409, GameAlreadyCompletedError.code),
    (GameConflictError, 409, GameConflictError.code),
    (CommitmentUnavailableError, 503, "COMMITMENT_UNAVAILABLE"),
    (SessionFairnessUnavailableError, 503, "FAIRNESS_UNAVAILABLE"),
    (BlockchainUnavailableError, 503, "BLOCKCHAIN_UNAVAILABLE"),
    (ReplayReconstructionError, 503, ReplayReconstructionError.code),
)


def _error(message: str, code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status_code)


async def domain_error(_request: Request, exc: Exception) -> JSONResponse:
    for exc_type, status_code, code in _ERROR_RESPONSES:
        if isinstance(exc, exc_type):
            if isinstance(exc, GameServiceError):
                code = exc.code
            if status_code >= 500:
                logger.warning("request failed", error=str(exc), code=code)
            return _error(str(exc), code, status_code)
    logger.error("unmapped domain error", error=str(exc), error_type=type(exc).__name__)
    return _error("Internal error", "INTERNAL_ERROR", 500)


async def http_error(_request: Request, exc: HTTPException) -> JSONResponse:
    return _error(str(exc.detail), "INVALID_REQUEST", exc.status_code)


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:  # noqa: ANN401
    raw_body = await request.body()
    if len(raw_body) > _MAX_REQUEST_BODY_SIZE:
        raise HTTPException(413, "Request body too large")
    try:
        return model.model_validate_json(raw_body)
    except ValidationError as exc:
        raise HTTPException(400, _first_error(exc)) from None


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    location = ".".join(str(part) for part in errors[0]["loc"])
    return f"{location}: {errors[0]['msg']}" if location else errors[0]["msg"]


def _required_param(request: Request, name: str) -> str:
    value = request.query_params.get(name)
    if not value:
        raise HTTPException(400, f"{name} is required")
    return value


def _json(model: BaseModel | list[Any] | dict[str, Any]) -> JSONResponse:
    if isinstance(model, BaseModel):
        return JSONResponse(model.model_dump(mode="json"))
    return JSONResponse(model)


async def _require_session(request: Request, session_id: str) -> None:
    sessions: SessionRepository = request.app.state.sessions
    if await sessions.get_session(session_id) is None:
        raise SessionNotFoundError(f"Session {session_id} not found")


async def health(request: Request) -> JSONResponse:
    fairness_settings: FairnessSettings = request.app.state.fairness_settings
    chain: CommitmentService = request.app.state.chain
    body: dict[str, Any] = {
        "status": "ok",
        "fairness_mode": fairness_settings.mode,
        "blockchain_available": await chain.is_available(),
    }
    if fairness_settings.mode == FairnessMode.SESSION_NONCE_V1:
        stream: SessionFairnessStream = request.app.state.stream
        seed_pool = await stream.get_pool_status()
        body["seed_pool"] = seed_pool.model_dump(mode="json")
        healthy = seed_pool.is_healthy
    else:
        pool: CommitmentPoolManager = request.app.state.pool
        commitment_pool = await pool.get_pool_status()
        body["commitment_pool"] = commitment_pool.model_dump(mode="json")
        healthy = commitment_pool.is_healthy
    if not healthy:
        body["status"] = "degraded"
    return JSONResponse(body)


async def game_action(request: Request) -> JSONResponse:
    service: BlackjackGameService = request.app.state.game_service
    body = await _parse_body(request, GameActionRequest)

    if body.action == GameRequestAction.START:
        result = await service.start_game(body.session_id, body.bet, body.perfect_pairs_bet, body.client_seed)
    elif body.action == GameRequestAction.INSURANCE:
        result = await service.take_insurance(body.session_id, body.game_id)
    else:
        result = await service.handle_action(body.session_id, body.game_id, body.action.value)
    return _json(result)


async def game_query(request: Request) -> JSONResponse:
    service: BlackjackGameService = request.app.state.game_service
    settings: GameServerSettings = request.app.state.settings
    session_id = _required_param(request, "session_id")
    game_id = request.query_params.get("game_id") or None

    if game_id is not None:
        return _json(await service.get_game(session_id, game_id))
    await _require_session(request, session_id)
    games = await service.get_history(session_id, settings.history_limit)
    return _json({"games": [g.model_dump(mode="json") for g in games]})


async def fairness_state(request: Request) -> JSONResponse:
    fairness_settings: FairnessSettings = request.app.state.fairness_settings
    session_id = _required_param(request, "session_id")
    await _require_session(request, session_id)

    if fairness_settings.mode == FairnessMode.LEGACY_PER_GAME_V1:
        return _json({"mode": FairnessMode.LEGACY_PER_GAME_V1.value, "can_edit_client_seed": False})
    stream: SessionFairnessStream = request.app.state.stream
    return _json(await stream.get_public_state(session_id))


async def fairness_action(request: Request) -> JSONResponse:
    fairness_settings: FairnessSettings = request.app.state.fairness_settings
    stream: SessionFairnessStream = request.app.state.stream
    body = await _parse_body(request, FairnessActionRequest)
    await _require_session(request, body.session_id)

    if fairness_settings.mode == FairnessMode.LEGACY_PER_GAME_V1:
        return _error("Session fairness is unavailable in legacy per-game mode", "LEGACY_MODE", 409)

    if body.action == FairnessRequestAction.SET_CLIENT_SEED:
        public = await stream.set_client_seed(body.session_id, body.client_seed)
        return _json({"action": body.action.value, "fairness": public.model_dump(mode="json")})

    rotated = await stream.rotate_seed(body.session_id, body.client_seed)
    return _json(
        {
            "action": body.action.value,
            "reveal": rotated.reveal.model_dump(mode="json"),
            "fairness": rotated.active.model_dump(mode="json"),
        },
    )


async def verify(request: Request) -> JSONResponse:
    verifier: VerificationService = request.app.state.verifier
    body = await _parse_body(request, VerifyRequest)

    if body.game_id is not None:
        report = await verifier.verify_game(body.game_id)
        if report is None:
            raise GameNotFoundError(f"Game {body.game_id} not found")
        return _json(report)

    report = await verifier.verify_manual(
        body.server_seed,
        body.server_seed_hash.lower(),
        body.client_seed,
        body.nonce,
        tx_hash=body.tx_hash,
        fairness_version=body.fairness_version,
    )
    return _json(report)


async def pool_status(request: Request) -> JSONResponse:
    pool: CommitmentPoolManager = request.app.state.pool
    stream: SessionFairnessStream = request.app.state.stream
    commitments = await pool.get_pool_status()
    seeds = await stream.get_pool_status()
    return _json({"commitments": commitments.model_dump(mode="json"), "session_seeds": seeds.model_dump(mode="json")})


def build_commitment_service(settings: FairnessSettings) -> CommitmentService:
    """Mock commitments in demo mode (never on mainnet), the zcashd JSON-RPC node otherwise."""
    if settings.demo_mode:
        return MockCommitmentService(settings.network, maturation_seconds=settings.mock_maturation_seconds)
    return ZcashRpcCommitmentService(settings.rpc_url, settings.rpc_user, settings.rpc_password, settings.house_address)


def create_app(  # noqa: PLR0913
    settings: GameServerSettings | None = None,
    fairness_settings: FairnessSettings | None = None,
    db: Database | None = None,
    chain: CommitmentService | None = None,
    *,
    run_background_tasks: bool = True,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = GameServerSettings()
    if fairness_settings is None:  # pragma: no cover
        fairness_settings = FairnessSettings()

    # When the app opens the database or the node client itself, it owns their lifecycle.
    owned_db: Database | None = None
    owned_chain: CommitmentService | None = None

    if db is None:
        db = Database(settings.database_path)
        db.connect()
        owned_db = db
    if chain is None:
        chain = build_commitment_service(fairness_settings)
        owned_chain = chain

    pool = CommitmentPoolManager(db, chain, fairness_settings)
    stream = SessionFairnessStream(db, chain, fairness_settings)
    game_service = BlackjackGameService(
        db,
        pool,
        stream,
        fairness_settings,
        rules=settings.rules,
        bet_limits=settings.bet_limits,
    )
    verifier = VerificationService(db, chain, stream, rules=settings.rules, network=fairness_settings.network)

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        if run_background_tasks:
            if fairness_settings.mode == FairnessMode.SESSION_NONCE_V1:
                stream.start()
            else:
                pool.start()
        try:
            yield
        finally:
            await pool.stop()
            await stream.stop()
            if isinstance(owned_chain, ZcashRpcCommitmentService):
                await owned_chain.aclose()
            if owned_db is not None:
                owned_db.close()

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/api/game", game_action, methods=["POST"]),
        Route("/api/game", game_query, methods=["GET"]),
        Route("/api/fairness", fairness_state, methods=["GET"]),
        Route("/api/fairness", fairness_action, methods=["POST"]),
        Route("/api/verify", verify, methods=["POST"]),
        Route("/api/pool", pool_status, methods=["GET"]),
    ]

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={
            HTTPException: http_error,
            GameRuleError: domain_error,
            GameServiceError: domain_error,
            FairnessError: domain_error,
        },
    )
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.fairness_settings = fairness_settings
    app.state.db = db
    app.state.chain = chain
    app.state.sessions = SqliteSessionRepository(db)
    app.state.pool = pool
    app.state.stream = stream
    app.state.game_service = game_service
    app.state.verifier = verifier

    logger.info("blackjack server ready", fairness_mode=fairness_settings.mode, network=fairness_settings.network)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    settings = GameServerSettings()
    setup_logging(settings.log_dir)
    return create_app(settings=settings)
