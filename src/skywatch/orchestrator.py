"""Per-request aggregation of forecast and alerts.

The forecast path is mandatory; the alert path can only attenuate the
payload. ``WeatherSession`` enforces last-request-wins ordering across
overlapping requests.
"""

import asyncio
from dataclasses import dataclass

import structlog

from skywatch.alerts import AlertAggregator
from skywatch.cache import ResponseCache, make_key
from skywatch.errors import PlaceNotFoundError, SkywatchError
from skywatch.forecast import ForecastFetcher
from skywatch.geocode import GeocodeResolver
from skywatch.models import (
    AggregatedWeather,
    AlertDiagnostics,
    AlertReport,
    Coordinates,
    PlaceCandidate,
    SearchOutcome,
    SearchStatus,
    UnitPreference,
)
from skywatch.units import tokens_for

logger = structlog.get_logger("Orchestrator")


@dataclass(frozen=True)
class RequestContext:
    """Everything one aggregation needs; replaces ambient client state."""

    coordinates: Coordinates
    unit: UnitPreference = UnitPreference.IMPERIAL


class WeatherOrchestrator:
    def __init__(
        self,
        forecast: ForecastFetcher,
        alerts: AlertAggregator | None,
        resolver: GeocodeResolver | None = None,
        cache: ResponseCache | None = None,
    ) -> None:
        self.forecast = forecast
        self.alerts = alerts
        self.resolver = resolver
        self.cache = cache

    async def get_weather(self, context: RequestContext) -> AggregatedWeather:
        if self.cache is None:
            return await self._aggregate(context)
        # Payloads embed their coordinates, so the key must too
        key = make_key("weather", context.coordinates, context.unit)
        return await self.cache.get_or_fetch(key, lambda: self._aggregate(context))

    async def search_places(self, text: str, preferred_country: str | None = None) -> SearchOutcome:
        if self.resolver is None:
            raise RuntimeError("No geocode resolver configured")
        if self.cache is None or not text.strip():
            return await self.resolver.forward_search(text, preferred_country)
        key = make_key("geocode", f"{text}|{preferred_country or ''}")
        outcome = self.cache.get(key)
        if outcome is None:
            outcome = await self.resolver.forward_search(text, preferred_country)
            # Zero-match outcomes are answers, but cheap to redo; only keep hits
            if outcome.status is SearchStatus.OK:
                self.cache.set(key, outcome)
        return outcome

    async def resolve_place(self, text: str, preferred_country: str | None = None) -> PlaceCandidate:
        """Best candidate for free text; anything short of a clean match is "City not found"."""
        outcome = await self.search_places(text, preferred_country)
        if outcome.status is not SearchStatus.OK or outcome.best is None:
            logger.info("Place not resolved", query=text, status=outcome.status.value)
            raise PlaceNotFoundError(text)
        return outcome.best

    async def _aggregate(self, context: RequestContext) -> AggregatedWeather:
        coords, unit = context.coordinates, context.unit
        forecast_task = asyncio.create_task(self.forecast.fetch(coords, unit))
        alerts_task = asyncio.create_task(self._collect_alerts(coords))
        try:
            bundle = await forecast_task
            report = await alerts_task
        finally:
            for task in (forecast_task, alerts_task):
                if not task.done():
                    task.cancel()

        return AggregatedWeather(
            coordinates=coords,
            unit=unit,
            units=tokens_for(unit).labels,
            timezone=bundle.timezone,
            current=bundle.current,
            hourly=bundle.hourly,
            daily=bundle.daily,
            alerts=report.alerts,
            alerts_degraded=report.diagnostics.degraded,
            alert_diagnostics=report.diagnostics,
        )

    async def _collect_alerts(self, coords: Coordinates) -> AlertReport:
        if self.alerts is None:
            return AlertReport(diagnostics=AlertDiagnostics(degraded=True, failures=["disabled"]))
        try:
            return await self.alerts.collect(coords)
        except Exception as e:
            # The alert path must never fail the response
            logger.error("Alert aggregation failed", error=str(e), exc_info=True)
            return AlertReport(diagnostics=AlertDiagnostics(degraded=True, failures=["aggregator"]))


class WeatherSession:
    """
    Holds the "current result" for one viewer.

    Each ``request`` takes a new monotonically increasing token and cancels
    the in-flight predecessor. Only the holder of the latest token may write
    ``current``; superseded requests resolve to ``None``.
    """

    def __init__(self, orchestrator: WeatherOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.current: AggregatedWeather | None = None
        self.error: SkywatchError | None = None
        self._token = 0
        self._inflight: asyncio.Task[AggregatedWeather] | None = None

    @property
    def token(self) -> int:
        return self._token

    def is_current(self, token: int) -> bool:
        return token == self._token

    async def request(self, context: RequestContext) -> AggregatedWeather | None:
        self._token += 1
        token = self._token
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

        task = asyncio.create_task(self.orchestrator.get_weather(context))
        self._inflight = task
        try:
            result = await task
        except asyncio.CancelledError:
            this = asyncio.current_task()
            own_cancel = this is not None and this.cancelling() > 0
            if not own_cancel and not self.is_current(token):
                logger.info("Superseded request cancelled", token=token)
                return None
            raise
        except SkywatchError as e:
            if not self.is_current(token):
                logger.info("Discarding stale failure", token=token, error=str(e))
                return None
            self.error = e
            raise

        if not self.is_current(token):
            logger.info("Discarding stale result", token=token, latest=self._token)
            return None
        self.current = result
        self.error = None
        return result
