from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .engine import RouteEngine
from .errors import (
    MissingCredentialError,
    RouteCompositionFailure,
    RouteEngineError,
    RouteNotReadyError,
    normalize_reason_code,
)
from .logging_utils import log_event
from .models import (
    AccessTokenRequest,
    CacheStatsResponse,
    ElevationsRequest,
    RouteElevations,
    RouteRequest,
    RouteResponse,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.engine = RouteEngine.from_settings()
    yield
    await app.state.engine.aclose()


app = FastAPI(title="Canyon Route Engine", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def route_engine(request: Request) -> RouteEngine:
    engine: RouteEngine | None = getattr(request.app.state, "engine", None)  # type: ignore[attr-defined]
    if engine is None:
        raise HTTPException(status_code=503, detail="route engine not initialised")
    return engine


EngineDep = Annotated[RouteEngine, Depends(route_engine)]


def _error_detail(e: RouteEngineError) -> dict[str, str]:
    return {"reason_code": normalize_reason_code(e.reason_code), "message": e.message}


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Route engine is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
async def health(engine: EngineDep) -> dict[str, str | bool]:
    return {"status": "ok", "access_token_configured": engine.has_access_token}


@app.post("/route", response_model=RouteResponse, response_model_by_alias=True)
async def generate_route(req: RouteRequest, engine: EngineDep) -> RouteResponse:
    t0 = time.perf_counter()
    try:
        generation = await engine.generate(req.waypoints)
    except MissingCredentialError as e:
        raise HTTPException(status_code=400, detail=_error_detail(e)) from e
    except (RouteNotReadyError, RouteCompositionFailure) as e:
        raise HTTPException(status_code=422, detail=_error_detail(e)) from e

    log_event(
        "route_request",
        waypoint_count=len(req.waypoints),
        segment_count=len(generation.segments),
        fallback_count=len(generation.warnings),
        routing_requests=generation.routing_requests,
        terrain_tile_fetches=generation.terrain_tile_fetches,
        duration_ms=round((time.perf_counter() - t0) * 1000.0, 2),
    )
    return RouteResponse(route=generation.route, warnings=generation.warnings, status=generation.status_text)


@app.post("/route/elevations", response_model=RouteElevations)
async def route_elevations(req: ElevationsRequest, engine: EngineDep) -> RouteElevations:
    try:
        return await engine.resolve_route_elevations(req.route)
    except MissingCredentialError as e:
        raise HTTPException(status_code=400, detail=_error_detail(e)) from e
    except RouteEngineError as e:
        log_event("route_elevations_unavailable", reason_code=e.reason_code, error=e.message)
        raise HTTPException(
            status_code=502,
            detail={"reason_code": normalize_reason_code(e.reason_code), "message": "Elevation unavailable for this route."},
        ) from e


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(engine: EngineDep) -> CacheStatsResponse:
    return CacheStatsResponse(**engine.cache_stats())


@app.delete("/cache")
async def clear_cache(engine: EngineDep) -> dict[str, int]:
    return {"cleared": engine.clear_cache()}


@app.put("/access-token")
async def rotate_access_token(req: AccessTokenRequest, engine: EngineDep) -> dict[str, bool]:
    return {"changed": engine.set_access_token(req.access_token)}
