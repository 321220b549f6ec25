from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .errors import RouteGenerationError, status_for_reason_code
from .loaders import filter_pois_by_group, load_poi_catalog, load_road_dataset
from .logging_utils import log_event
from .models import (
    HealthResponse,
    POIGroup,
    POIListResponse,
    POIModel,
    POIValidateRequest,
    POIValidateResponse,
    RouteGenerateRequest,
    RouteGenerateResponse,
    ShapeInfo,
    ShapeListResponse,
)
from .poi_mapping import POI
from .service import check_poi_selection, generate_shape_route
from .session import RoutingSession
from .settings import settings
from .templates import SHAPE_LABELS, variation_config


async def _load_session(app: FastAPI) -> None:
    try:
        dataset = load_road_dataset()
    except RouteGenerationError as exc:
        log_event("startup_road_data_failed", level="error", reason_code=exc.reason_code, detail=exc.message)
        return
    started = time.perf_counter()
    await app.state.session.rebuild(dataset.roads)
    app.state.road_data_path = str(dataset.path)
    log_event(
        "startup_session_ready",
        path=str(dataset.path),
        walkable=dataset.walkable,
        elapsed_ms=round((time.perf_counter() - started) * 1000.0, 2),
        **app.state.session.snapshot(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.session = RoutingSession(grid_size_deg=settings.spatial_grid_size_deg)
    app.state.road_data_path = None
    app.state.pois = []
    if settings.load_data_on_startup:
        await _load_session(app)
        app.state.pois = load_poi_catalog()
    yield
    app.state.session.reset()


app = FastAPI(title="Shape Route Generator", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def routing_session(request: Request) -> RoutingSession:
    session: RoutingSession | None = getattr(request.app.state, "session", None)  # type: ignore[attr-defined]
    if session is None:
        raise HTTPException(status_code=503, detail="Routing session not initialised")
    return session


SessionDep = Annotated[RoutingSession, Depends(routing_session)]


def _http_error(exc: RouteGenerationError) -> HTTPException:
    return HTTPException(status_code=status_for_reason_code(exc.reason_code), detail=exc.as_detail())


def _poi_model(poi: POI) -> POIModel:
    return POIModel(name=poi.name, lat=poi.lat, lon=poi.lon, category=poi.category)


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Backend is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse)
async def health(request: Request, session: SessionDep) -> HealthResponse:
    return HealthResponse(
        status="ok" if session.ready else "degraded",
        graph=session.snapshot(),
        pois=len(getattr(request.app.state, "pois", [])),
        road_data_path=getattr(request.app.state, "road_data_path", None),
    )


@app.get("/shapes", response_model=ShapeListResponse)
async def list_shapes() -> ShapeListResponse:
    shapes = []
    for kind, label in SHAPE_LABELS.items():
        config = variation_config(kind)
        shapes.append(ShapeInfo(id=kind.value, label=label, rotations=list(config.rotations), flips=list(config.flips)))
    return ShapeListResponse(shapes=shapes)


@app.get("/pois", response_model=POIListResponse)
async def list_pois(request: Request, group: POIGroup = "all") -> POIListResponse:
    catalog: list[POI] = getattr(request.app.state, "pois", [])
    selected = filter_pois_by_group(catalog, group)
    return POIListResponse(group=group, count=len(selected), pois=[_poi_model(p) for p in selected])


@app.post("/pois/validate", response_model=POIValidateResponse)
async def validate_pois(req: POIValidateRequest) -> POIValidateResponse:
    return check_poi_selection(req.start, req.pois)


@app.post("/routes/generate", response_model=RouteGenerateResponse)
async def generate(req: RouteGenerateRequest, request: Request, session: SessionDep) -> RouteGenerateResponse:
    log_event("route_request", shape=req.shape, pois=len(req.pois), num_candidates=req.num_candidates)

    disconnected = False

    async def progress(current: int, total: int, stage: str) -> None:
        nonlocal disconnected
        # Only poll the transport every few candidates.
        if current % 8 == 0:
            disconnected = await request.is_disconnected()

    try:
        return await generate_shape_route(
            session,
            req,
            progress=progress,
            should_cancel=lambda: disconnected,
        )
    except RouteGenerationError as exc:
        log_event("route_request_failed", level="warning", reason_code=exc.reason_code, detail=exc.message)
        raise _http_error(exc) from exc


@app.post("/session/reset")
async def reset_session(session: SessionDep) -> dict[str, int]:
    return {"cleared_paths": session.reset()}
