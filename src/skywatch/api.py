import typing

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from skywatch.config import SessionPreferences
from skywatch.errors import (
    ConfigurationError,
    InvalidInputError,
    PlaceNotFoundError,
    SkywatchError,
    UpstreamError,
)
from skywatch.geocode import GeocodeResolver
from skywatch.location import LocationAcquisition
from skywatch.models import (
    AggregatedWeather,
    Coordinates,
    LocationFix,
    PlaceIdentity,
    SearchOutcome,
    UnitPreference,
)
from skywatch.orchestrator import RequestContext, WeatherOrchestrator
from skywatch.session import ShareState

logger = structlog.get_logger("Api")
router = APIRouter()


class LocateResponse(BaseModel):
    fix: LocationFix
    share_query: str


def _orchestrator(request: Request) -> WeatherOrchestrator:
    return typing.cast(WeatherOrchestrator, request.app.state.orchestrator)


def _resolver(request: Request) -> GeocodeResolver:
    return typing.cast(GeocodeResolver, request.app.state.resolver)


def _preferences(request: Request) -> SessionPreferences:
    return typing.cast(SessionPreferences, request.app.state.preferences)


def error_status(error: SkywatchError) -> int:
    if isinstance(error, InvalidInputError):
        return 400
    if isinstance(error, PlaceNotFoundError):
        return 404
    if isinstance(error, ConfigurationError):
        return 500
    if isinstance(error, UpstreamError):
        return 502
    return 500


async def skywatch_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = typing.cast(SkywatchError, exc)
    status = error_status(error)
    body: dict[str, typing.Any] = {"message": error.message, "kind": error.kind}
    if isinstance(error, UpstreamError):
        body["upstream_status"] = error.status
        body["provider"] = error.provider
    log = logger.warning if status < 500 else logger.error
    log("Request failed", path=request.url.path, status=status, kind=error.kind, message=error.message)
    return JSONResponse(status_code=status, content=body)


@router.get("/api/weather", response_model=AggregatedWeather)
async def get_weather(
    request: Request,
    lat: str | None = Query(default=None),
    lon: str | None = Query(default=None),
    unit: str | None = Query(default=None),
    place: str | None = Query(default=None),
    country: str | None = Query(default=None),
) -> AggregatedWeather:
    """
    Aggregated forecast and alerts for a point.

    Coordinates win when given; otherwise ``place`` is geocoded and its best
    candidate is used.
    """
    orchestrator = _orchestrator(request)
    chosen = UnitPreference.parse(unit) if unit else _preferences(request).unit
    if lat is None and lon is None and place and place.strip():
        candidate = await orchestrator.resolve_place(place, preferred_country=country)
        coordinates = candidate.coordinates
    else:
        coordinates = Coordinates.parse(lat, lon)
    return await orchestrator.get_weather(RequestContext(coordinates=coordinates, unit=chosen))


@router.get("/api/geocode", response_model=SearchOutcome)
async def search_places(
    request: Request,
    q: str = Query(default=""),
    country: str | None = Query(default=None),
) -> SearchOutcome:
    """Ranked place candidates for disambiguation."""
    if not q.strip():
        raise InvalidInputError("Search text is required")
    return await _orchestrator(request).search_places(q, preferred_country=country)


@router.get("/api/reverse", response_model=PlaceIdentity)
async def reverse_lookup(
    request: Request,
    lat: str | None = Query(default=None),
    lon: str | None = Query(default=None),
) -> PlaceIdentity:
    return await _resolver(request).reverse_lookup(Coordinates.parse(lat, lon))


@router.get("/api/locate", response_model=LocateResponse)
async def locate(request: Request) -> LocateResponse:
    """
    Run the location fallback chain.

    ``lat``/``lon``/``unit`` are read as shareable state: unusable values are
    ignored and the chain continues with the IP estimate, the saved last
    place and finally the default place. There is no device stage here.
    """
    shared = ShareState.from_query(str(request.url.query))
    preferences = _preferences(request)
    acquisition = typing.cast(LocationAcquisition, request.app.state.acquisition)
    fix = await acquisition.acquire(explicit=shared.coordinates, last_known=preferences.coordinates)
    share = ShareState(coordinates=fix.coordinates, unit=shared.unit or preferences.unit)
    return LocateResponse(fix=fix, share_query=share.to_query())


@router.get("/api/preferences", response_model=SessionPreferences)
async def get_preferences(request: Request) -> SessionPreferences:
    return _preferences(request)


@router.put("/api/preferences", response_model=SessionPreferences)
async def put_preferences(request: Request, preferences: SessionPreferences) -> SessionPreferences:
    """Replace the saved unit and last place; persisted immediately."""
    preferences.save(request.app.state.settings.preferences_path)
    request.app.state.preferences = preferences
    return preferences


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
