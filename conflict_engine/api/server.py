"""
Conflict & Context Engine: API Server
=====================================

Read API over live conflict state, plus a trigger for the update cycle
(used by the external scheduler).

Endpoints:
- GET  /health
- GET  /api/v1/conflicts/top      -> conflicts sorted by metric
- GET  /api/v1/theatres           -> theatre rollups (v2)
- GET  /api/v1/fronts             -> front-line state (v2)
- GET  /api/v1/alliances          -> alliance pressure (v2)
- GET  /api/v1/relations          -> relation edges
- GET  /api/v1/relations/stats    -> relation edge summary
- GET  /api/v1/world              -> world state rollup
- POST /api/v1/cycle              -> run one update cycle

Usage:
    uvicorn conflict_engine.api.server:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..contracts.base import ErrorCode, TickLockHeldError, TransientStoreError
from ..contracts.events import QueryResult
from ..engine import EngineConfig, UpdateOptions, UpdateOrchestrator

logger = logging.getLogger(__name__)


class CycleRequest(BaseModel):
    """Optional overrides for a triggered update cycle."""
    min_tension: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_age_seconds: Optional[int] = Field(default=None, gt=0)
    v2_enabled: Optional[bool] = None


def _respond(result: QueryResult) -> dict:
    if not result.success:
        status = 400 if result.error.code == ErrorCode.INVALID_QUERY else 503
        raise HTTPException(status_code=status, detail=result.error.message)
    return {
        "results": list(result.results),
        "count": result.result_count,
        "total": result.total,
        "execution_time_ms": round(result.execution_time_ms, 3),
    }


def create_app(orchestrator: Optional[UpdateOrchestrator] = None) -> FastAPI:
    """
    Build the API application.

    Without an orchestrator, one is created at startup from the process
    environment (EngineConfig.from_env).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if orchestrator is not None:
            app.state.engine = orchestrator
        else:
            config = EngineConfig.from_env()
            logger.info(
                "initialising engine (backend=%s, v2=%s)",
                config.storage.backend_type, config.v2_enabled
            )
            app.state.engine = UpdateOrchestrator(config)
        yield
        logger.info("shutting down engine")
        app.state.engine = None

    app = FastAPI(
        title="Conflict & Context Engine API",
        version="0.1.0",
        description="Read layer and update trigger for live conflict state",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    def engine_of(request: Request) -> UpdateOrchestrator:
        engine = getattr(request.app.state, "engine", None)
        if engine is None:
            raise HTTPException(status_code=503, detail="Engine not initialized")
        return engine

    def require_v2(engine: UpdateOrchestrator) -> None:
        if not engine.config.v2_enabled:
            raise HTTPException(status_code=503, detail="CCE v2 is disabled")

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.get("/health")
    async def health_check(request: Request):
        engine = engine_of(request)
        return {
            "status": "online",
            "cce_enabled": engine.config.cce_enabled,
            "v2_enabled": engine.config.v2_enabled,
        }

    @app.get("/api/v1/conflicts/top")
    async def top_conflicts(
        request: Request,
        metric: str = "pressure",
        limit: Optional[int] = None,
        offset: int = 0,
        theatre: Optional[str] = None,
    ):
        engine = engine_of(request)
        return _respond(engine.query.top_conflicts(metric, limit, offset, theatre))

    @app.get("/api/v1/theatres")
    async def theatres(request: Request, min_tension: float = 0.0, sort: str = "tension"):
        engine = engine_of(request)
        require_v2(engine)
        return _respond(engine.query.theatres(min_tension, sort))

    @app.get("/api/v1/fronts")
    async def fronts(
        request: Request,
        theatre: Optional[str] = None,
        min_intensity: float = 0.0,
    ):
        engine = engine_of(request)
        require_v2(engine)
        return _respond(engine.query.fronts(theatre, min_intensity))

    @app.get("/api/v1/alliances")
    async def alliances(request: Request, min_pressure: float = 0.0):
        engine = engine_of(request)
        require_v2(engine)
        return _respond(engine.query.alliances(min_pressure))

    @app.get("/api/v1/relations")
    async def relations(
        request: Request,
        code: Optional[str] = None,
        min_strength: float = 0.0,
        relation_type: Optional[str] = Query(default=None, alias="type"),
        limit: Optional[int] = None,
        offset: int = 0,
    ):
        engine = engine_of(request)
        return _respond(engine.query.relations(code, min_strength, relation_type, limit, offset))

    @app.get("/api/v1/relations/stats")
    async def relations_stats(request: Request):
        engine = engine_of(request)
        return _respond(engine.query.relation_stats())

    @app.get("/api/v1/world")
    async def world(request: Request):
        engine = engine_of(request)
        return _respond(engine.query.world(engine.config.world))

    @app.post("/api/v1/cycle")
    def run_cycle(request: Request, body: Optional[CycleRequest] = None):
        engine = engine_of(request)
        body = body or CycleRequest()
        try:
            result = engine.run_update_cycle(UpdateOptions(
                min_tension=body.min_tension,
                max_age_seconds=body.max_age_seconds,
                v2_enabled=body.v2_enabled,
            ))
        except TickLockHeldError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except TransientStoreError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return result.to_dict()

    return app


app = create_app()
