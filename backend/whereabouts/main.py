"""
main.py – FastAPI entry point
=============================

Hosts the location scheduler for the application layer.

* The lifespan builds the scheduler from environment settings, starts the
  daily slots and stops them on shutdown.
* ``POST /location/refresh`` is the only way to trigger an update by hand
  and is rate limited per client.

Run with ``uvicorn whereabouts.main:app``.
"""

from __future__ import annotations

# ─── Std-lib / third-party ────────────────────────────────────────────
import datetime as dt
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any

from dateutil import tz
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# ---------------------------------------------------------------------
# Environment (before project modules read their settings)
# ---------------------------------------------------------------------
load_dotenv()

# ─── Project modules ──────────────────────────────────────────────────
from . import constants as cfg  # noqa: E402
from .errors import LocationUpdateError  # noqa: E402
from .geocoding_service import (  # noqa: E402
    GeocodingResolver,
    GoogleGeocoder,
    NominatimGeocoder,
)
from .models import LocationSnapshot  # noqa: E402
from .position_source import (  # noqa: E402
    GeolocationApiPlatform,
    PositionPlatform,
    PositionSource,
    StaticPlatform,
)
from .scheduler import UpdateScheduler  # noqa: E402
from .snapshot_cache import SnapshotCache  # noqa: E402
from .storage import JsonFileStore, KeyValueStore  # noqa: E402
from .update_history import UpdateHistory  # noqa: E402

# ─── Logging ──────────────────────────────────────────────────────────
LOG = logging.getLogger("location_loop")

_SERVICE_LOGGERS = (
    "location_loop",
    "scheduler",
    "position_source",
    "geocoding_service",
    "snapshot_cache",
    "update_history",
    "storage",
    "extapi",
)

_handler = logging.StreamHandler(sys.stdout)
_handler.setFormatter(logging.Formatter("%(levelname)s:     %(name)s - %(message)s"))
for _name in _SERVICE_LOGGERS:
    _logger = logging.getLogger(_name)
    if _handler not in _logger.handlers:
        _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)

UTC = dt.timezone.utc

# Rate limiter for the manual refresh endpoint
limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------
def _build_platform() -> PositionPlatform:
    if cfg.STATIC_LAT and cfg.STATIC_LON:
        return StaticPlatform(float(cfg.STATIC_LAT), float(cfg.STATIC_LON))
    return GeolocationApiPlatform(cfg.GOOGLE_MAPS_API_KEY)


def _schedule_tz() -> dt.tzinfo:
    if not cfg.SCHEDULE_TZ:
        return tz.tzlocal()
    zone = tz.gettz(cfg.SCHEDULE_TZ)
    if zone is None:
        raise ValueError(f"Unknown SCHEDULE_TZ {cfg.SCHEDULE_TZ!r}")
    return zone


def build_scheduler(store: KeyValueStore | None = None) -> UpdateScheduler:
    """Assemble the scheduler and its collaborators from settings."""
    store = store if store is not None else JsonFileStore()
    primary = GoogleGeocoder(cfg.GOOGLE_MAPS_API_KEY) if cfg.GOOGLE_MAPS_API_KEY else None
    if primary is None:
        LOG.warning("[init] GOOGLE_MAPS_API_KEY not set – geocoding via Nominatim only")
    return UpdateScheduler(
        PositionSource(_build_platform()),
        GeocodingResolver(primary, NominatimGeocoder()),
        SnapshotCache(store),
        UpdateHistory(store),
        slots=cfg.parse_slots(cfg.UPDATE_SLOTS),
        tzinfo=_schedule_tz(),
        initial_update=cfg.INITIAL_UPDATE,
    )


def _on_update(snapshot: LocationSnapshot) -> None:
    LOG.info(
        "[loop] location %s, %s (%s)",
        snapshot.city_info.city,
        snapshot.city_info.country,
        snapshot.source.value,
    )


def _on_error(message: str) -> None:
    LOG.warning("[loop] %s", message)


# ---------------------------------------------------------------------
# Lifespan – scheduled location sampling
# ---------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: N802 – FastAPI naming style
    """Start the daily location slots; stop them on shutdown."""
    scheduler = getattr(app.state, "scheduler", None) or build_scheduler()
    app.state.scheduler = scheduler
    scheduler.start(_on_update, _on_error)

    yield  # ⇢ application runs here

    scheduler.stop()


# ---------------------------------------------------------------------
# FastAPI instance & middleware
# ---------------------------------------------------------------------
app = FastAPI(title="whereabouts", lifespan=lifespan)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Return 429 when rate limit is exceeded."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
    )


ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "capacitor://localhost",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def _scheduler(request: Request) -> UpdateScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not running")
    return scheduler


# Health probe --------------------------------------------------------
@app.get("/healthz", response_class=PlainTextResponse)
async def healthz() -> PlainTextResponse:
    """Return HTTP 200 with body “ok” if the app is up."""
    return PlainTextResponse("ok", status_code=200)


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------
@app.get("/location.json")
async def location(request: Request) -> JSONResponse:
    """Best known location plus freshness and scheduler state."""
    scheduler = _scheduler(request)
    best = scheduler.get_current_best_location()
    payload: dict[str, Any] = {
        "location": best.to_dict() if best else None,
        "fresh": scheduler.is_fresh(best) if best else False,
        "state": scheduler.state.value,
        "permission": scheduler.position.permission,
    }
    return JSONResponse(payload)


@app.post("/location/refresh")
@limiter.limit("6/minute")
async def refresh(request: Request) -> dict[str, Any]:
    """Force one pipeline run (rate limited: 6/minute per IP)."""
    scheduler = _scheduler(request)
    try:
        snapshot = await scheduler.force_update()
    except LocationUpdateError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"ok": True, "location": snapshot.to_dict()}


@app.get("/location/schedule.json")
async def schedule(request: Request) -> JSONResponse:
    scheduler = _scheduler(request)
    return JSONResponse(
        {
            "active": scheduler.is_active,
            "next_updates": [n.to_dict() for n in scheduler.get_next_update_times()],
        }
    )


@app.get("/location/stats.json")
async def stats(request: Request) -> JSONResponse:
    return JSONResponse(_scheduler(request).get_update_stats().to_dict())


@app.get("/location/history.json")
async def history(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
) -> JSONResponse:
    """
    Recent update attempts, newest first.

    Args:
        limit: Maximum number of records to return (default: 10).
    """
    records = _scheduler(request).get_update_history(limit)
    return JSONResponse(
        {
            "records": [rec.to_dict() for rec in records],
            "query": {"limit": limit},
        }
    )
