"""FastAPI application — live prices, pick scoring and duel settlement."""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Literal

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from flip_core.config.loader import load_config
from flip_core.config.schema import AppConfig
from flip_core.db.engine import get_session as _get_session, init_engine
from flip_core.db.store import KvStore, RoomStore, UserStore
from flip_core.errors import (
    DomainError,
    EvalTimeNotReachedError,
    RoomNotFoundError,
)
from flip_core.models.duel import Direction
from flip_core.orchestrator.runner import PriceOrchestrator
from flip_core.quotes.service import PriceService
from flip_core.settlement.engine import DuelSettler, RoundSettler
from flip_core.settlement.scoring import score_pick
from flip_core.tokens.registry import TokenRegistry

logger = structlog.get_logger("api")


class ScoreRequest(BaseModel):
    baseline: float
    current: float
    direction: Direction
    duplicate_index: int = Field(default=1, ge=1)
    boost_level: Literal[0, 50, 100] = 0
    boost_active: bool = False


class LockPickRequest(BaseModel):
    token_id: str
    direction: Direction


class LockRequest(BaseModel):
    user_id: str
    picks: list[LockPickRequest] = Field(min_length=1)


class CancelRequest(BaseModel):
    user_id: str


class RoundSettleRequest(BaseModel):
    day: date | None = None


def get_db() -> Generator[Session, None, None]:
    """Dependency to get DB session."""
    yield from _get_session()


def get_settler(request: Request, session: Session = Depends(get_db)) -> DuelSettler:
    kv = KvStore(session)
    return DuelSettler(
        RoomStore(kv),
        UserStore(kv),
        request.app.state.service,
        request.app.state.registry,
    )


def get_round_settler(request: Request, session: Session = Depends(get_db)) -> RoundSettler:
    return RoundSettler(
        UserStore(KvStore(session)),
        request.app.state.service,
        request.app.state.registry,
    )


def get_rooms(session: Session = Depends(get_db)) -> RoomStore:
    return RoomStore(KvStore(session))


def _status_for(exc: DomainError) -> int:
    if isinstance(exc, RoomNotFoundError):
        return 404
    if isinstance(exc, EvalTimeNotReachedError):
        return 425
    return 409


def create_app(
    config: AppConfig | None = None,
    *,
    service: PriceService | None = None,
    registry: TokenRegistry | None = None,
    orchestrator: PriceOrchestrator | None = None,
    start_background: bool = True,
) -> FastAPI:
    """Build the app.

    With ``start_background`` the lifespan opens the database engine and
    runs the price poller; tests pass ready-made collaborators and turn it
    off.
    """
    cfg = config or load_config("config.yaml")
    svc = service or PriceService.from_config(cfg)
    reg = registry or TokenRegistry.from_config(cfg)
    orch = orchestrator or PriceOrchestrator.from_config(cfg, svc, reg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_background:
            init_engine(cfg.database.url)
            logger.info("database_engine_initialized")
            await orch.start()
        try:
            yield
        finally:
            if start_background:
                await orch.stop()
                await svc.close()

    app = FastAPI(
        title="Flip price & settlement API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.service = svc
    app.state.registry = reg
    app.state.orchestrator = orch

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    @app.get("/api/health")
    async def health_check():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    # ── Prices ───────────────────────────────────────────────

    @app.get("/api/prices")
    async def list_prices():
        prices = orch.get_all()
        return {
            "prices": [p.model_dump(mode="json") for p in prices],
            "virtualPriceUsd": orch.virtual_price_usd or None,
        }

    @app.get("/api/prices/{token_id}")
    async def get_price(token_id: str):
        token = reg.get(token_id)
        live = orch.get_live_price(token.id if token is not None else token_id)
        if live is None:
            raise HTTPException(status_code=404, detail=f"No price for {token_id!r}")
        return live.model_dump(mode="json")

    @app.post("/api/score")
    async def score(req: ScoreRequest):
        points = score_pick(
            req.baseline,
            req.current,
            req.direction,
            req.duplicate_index,
            boost_level=req.boost_level,
            boost_active=req.boost_active,
        )
        return {"points": points}

    @app.post("/api/rounds/settle")
    async def settle_rounds(
        req: RoundSettleRequest,
        settler: RoundSettler = Depends(get_round_settler),
    ):
        settled = await settler.settle(req.day)
        return {
            "settled": {uid: s.total_points for uid, s in settled.items()},
        }

    # ── Duels ────────────────────────────────────────────────

    @app.get("/api/duels/{room_id}")
    async def get_duel(room_id: str, rooms: RoomStore = Depends(get_rooms)):
        return rooms.get(room_id).model_dump(mode="json")

    @app.post("/api/duels/{room_id}/settle")
    async def settle_duel(room_id: str, settler: DuelSettler = Depends(get_settler)):
        room = await settler.settle(room_id)
        return room.model_dump(mode="json")

    @app.post("/api/duels/{room_id}/lock")
    async def lock_duel_picks(
        room_id: str,
        req: LockRequest,
        settler: DuelSettler = Depends(get_settler),
    ):
        room = await settler.lock_picks(
            room_id, req.user_id, [(p.token_id, p.direction) for p in req.picks],
        )
        return room.model_dump(mode="json")

    @app.post("/api/duels/{room_id}/cancel")
    async def cancel_duel(
        room_id: str,
        req: CancelRequest,
        settler: DuelSettler = Depends(get_settler),
    ):
        return settler.cancel(room_id, req.user_id).model_dump(mode="json")

    return app
