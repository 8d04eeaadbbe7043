import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from skywatch.alerts import AlertAggregator
from skywatch.cache import ResponseCache
from skywatch.errors import ForecastUnavailableError, PlaceNotFoundError
from skywatch.forecast import ForecastFetcher
from skywatch.geocode import GeocodeResolver
from skywatch.models import (
    Alert,
    AlertDiagnostics,
    AlertReport,
    Coordinates,
    CurrentConditions,
    DailySeries,
    ForecastBundle,
    HourlySeries,
    PlaceCandidate,
    SearchOutcome,
    SearchStatus,
    UnitPreference,
)
from skywatch.orchestrator import RequestContext, WeatherOrchestrator, WeatherSession

PLACE_A = Coordinates(latitude=34.7304, longitude=-86.5861)
PLACE_B = Coordinates(latitude=40.7128, longitude=-74.0060)


def bundle(temperature: float = 72.0) -> ForecastBundle:
    return ForecastBundle(
        current=CurrentConditions(time="2025-06-01T14:00", temperature=temperature),
        hourly=HourlySeries(),
        daily=DailySeries(),
        timezone="America/Chicago",
    )


def report(*ids: str, degraded: bool = False) -> AlertReport:
    return AlertReport(
        alerts=[Alert(id=i, event="Heat Advisory") for i in ids],
        diagnostics=AlertDiagnostics(paths=["point"], point_count=len(ids), degraded=degraded),
    )


@pytest.fixture
def forecast():
    mock = MagicMock(spec=ForecastFetcher)
    mock.fetch = AsyncMock(return_value=bundle())
    return mock


@pytest.fixture
def alerts():
    mock = MagicMock(spec=AlertAggregator)
    mock.collect = AsyncMock(return_value=report("urn:1"))
    return mock


@pytest.mark.asyncio
async def test_assembles_response(forecast, alerts):
    orchestrator = WeatherOrchestrator(forecast, alerts)

    result = await orchestrator.get_weather(RequestContext(PLACE_A, UnitPreference.IMPERIAL))

    assert result.current.temperature == 72.0
    assert [a.id for a in result.alerts] == ["urn:1"]
    assert result.units.temperature == "°F"
    assert result.alerts_degraded is False
    forecast.fetch.assert_awaited_once_with(PLACE_A, UnitPreference.IMPERIAL)
    alerts.collect.assert_awaited_once_with(PLACE_A)


@pytest.mark.asyncio
async def test_forecast_and_alerts_run_concurrently(forecast, alerts):
    forecast_started = asyncio.Event()
    alerts_started = asyncio.Event()

    async def slow_forecast(coords, unit):
        forecast_started.set()
        # Only completes if alerts were started without waiting for us
        await asyncio.wait_for(alerts_started.wait(), timeout=1)
        return bundle()

    async def slow_alerts(coords):
        alerts_started.set()
        await asyncio.wait_for(forecast_started.wait(), timeout=1)
        return report()

    forecast.fetch.side_effect = slow_forecast
    alerts.collect.side_effect = slow_alerts
    orchestrator = WeatherOrchestrator(forecast, alerts)

    result = await orchestrator.get_weather(RequestContext(PLACE_A))

    assert result.alerts == []


@pytest.mark.asyncio
async def test_forecast_failure_fails_request(forecast, alerts):
    forecast.fetch.side_effect = ForecastUnavailableError("forecast", 500, "oops")
    orchestrator = WeatherOrchestrator(forecast, alerts)

    with pytest.raises(ForecastUnavailableError):
        await orchestrator.get_weather(RequestContext(PLACE_A))


@pytest.mark.asyncio
async def test_alert_crash_degrades_instead_of_failing(forecast, alerts):
    alerts.collect.side_effect = RuntimeError("unexpected")
    orchestrator = WeatherOrchestrator(forecast, alerts)

    result = await orchestrator.get_weather(RequestContext(PLACE_A))

    assert result.alerts == []
    assert result.alerts_degraded is True
    assert result.alert_diagnostics.failures == ["aggregator"]


@pytest.mark.asyncio
async def test_degraded_alert_report_is_flagged(forecast, alerts):
    alerts.collect.return_value = report(degraded=True)
    orchestrator = WeatherOrchestrator(forecast, alerts)

    result = await orchestrator.get_weather(RequestContext(PLACE_A))

    assert result.alerts_degraded is True


@pytest.mark.asyncio
async def test_cache_hit_skips_upstreams(forecast, alerts):
    orchestrator = WeatherOrchestrator(forecast, alerts, cache=ResponseCache(ttl=600))
    context = RequestContext(PLACE_A, UnitPreference.IMPERIAL)

    first = await orchestrator.get_weather(context)
    second = await orchestrator.get_weather(context)

    assert first == second
    assert forecast.fetch.await_count == 1
    assert alerts.collect.await_count == 1


@pytest.mark.asyncio
async def test_units_are_cached_separately(forecast, alerts):
    orchestrator = WeatherOrchestrator(forecast, alerts, cache=ResponseCache(ttl=600))

    imperial = await orchestrator.get_weather(RequestContext(PLACE_A, UnitPreference.IMPERIAL))
    metric = await orchestrator.get_weather(RequestContext(PLACE_A, UnitPreference.METRIC))

    assert imperial.units.temperature == "°F"
    assert metric.units.temperature == "°C"
    assert forecast.fetch.await_count == 2


@pytest.mark.asyncio
async def test_failures_are_not_cached(forecast, alerts):
    forecast.fetch.side_effect = [ForecastUnavailableError("forecast", 503), bundle()]
    orchestrator = WeatherOrchestrator(forecast, alerts, cache=ResponseCache(ttl=600))
    context = RequestContext(PLACE_A)

    with pytest.raises(ForecastUnavailableError):
        await orchestrator.get_weather(context)
    result = await orchestrator.get_weather(context)

    assert result.current.temperature == 72.0


@pytest.mark.asyncio
async def test_search_places_caches_hits_only(forecast, alerts):
    resolver = MagicMock(spec=GeocodeResolver)
    resolver.forward_search = AsyncMock(
        side_effect=[
            SearchOutcome(query="Nowhere", status=SearchStatus.NO_MATCH),
            SearchOutcome(query="Nowhere", status=SearchStatus.NO_MATCH),
        ]
    )
    orchestrator = WeatherOrchestrator(forecast, alerts, resolver=resolver, cache=ResponseCache(ttl=600))

    await orchestrator.search_places("Nowhere")
    await orchestrator.search_places("Nowhere")

    assert resolver.forward_search.await_count == 2


@pytest.mark.asyncio
async def test_cache_is_keyed_by_coordinates(forecast, alerts):
    orchestrator = WeatherOrchestrator(forecast, alerts, cache=ResponseCache(ttl=600))

    first = await orchestrator.get_weather(RequestContext(PLACE_A))
    second = await orchestrator.get_weather(RequestContext(PLACE_B))
    again = await orchestrator.get_weather(RequestContext(PLACE_A))

    assert first.coordinates == PLACE_A
    assert second.coordinates == PLACE_B
    assert again is first
    assert forecast.fetch.await_count == 2


@pytest.mark.asyncio
async def test_resolve_place_returns_best_candidate(forecast, alerts):
    resolver = MagicMock(spec=GeocodeResolver)
    resolver.forward_search = AsyncMock(
        return_value=SearchOutcome(
            query="Huntsville, AL",
            status=SearchStatus.OK,
            candidates=[PlaceCandidate(name="Huntsville", latitude=34.73, longitude=-86.59, admin1="Alabama")],
        )
    )
    orchestrator = WeatherOrchestrator(forecast, alerts, resolver=resolver)

    candidate = await orchestrator.resolve_place("Huntsville, AL", preferred_country="US")

    assert candidate.coordinates == Coordinates(latitude=34.73, longitude=-86.59)
    resolver.forward_search.assert_awaited_once_with("Huntsville, AL", "US")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [SearchStatus.NO_MATCH, SearchStatus.NO_MATCH_IN_REGION])
async def test_resolve_place_without_clean_match(forecast, alerts, status):
    resolver = MagicMock(spec=GeocodeResolver)
    resolver.forward_search = AsyncMock(
        return_value=SearchOutcome(
            query="Huntsville, WY",
            status=status,
            candidates=[PlaceCandidate(name="Huntsville", latitude=34.73, longitude=-86.59)],
        )
    )
    orchestrator = WeatherOrchestrator(forecast, alerts, resolver=resolver)

    with pytest.raises(PlaceNotFoundError, match="City not found"):
        await orchestrator.resolve_place("Huntsville, WY")


@pytest.mark.asyncio
async def test_latest_request_wins(forecast, alerts):
    """Place A is slow, place B is issued before A resolves; only B is kept."""
    a_started = asyncio.Event()

    async def fetch(coords, unit):
        if coords == PLACE_A:
            a_started.set()
            await asyncio.sleep(10)
            return bundle(temperature=1.0)
        return bundle(temperature=2.0)

    forecast.fetch.side_effect = fetch
    session = WeatherSession(WeatherOrchestrator(forecast, alerts))

    request_a = asyncio.create_task(session.request(RequestContext(PLACE_A)))
    await a_started.wait()
    result_b = await session.request(RequestContext(PLACE_B))
    result_a = await request_a

    assert result_a is None
    assert result_b.current.temperature == 2.0
    assert session.current.coordinates == PLACE_B
    assert session.token == 2


@pytest.mark.asyncio
async def test_stale_result_resolving_late_is_discarded(forecast, alerts):
    """Even if A completes after B (cancellation ignored), A never overwrites B."""
    release_a = asyncio.Event()
    a_started = asyncio.Event()

    async def fetch(coords, unit):
        if coords == PLACE_A:
            a_started.set()
            try:
                await release_a.wait()
            except asyncio.CancelledError:
                # Simulate an upstream that ignores cancellation and still resolves
                await release_a.wait()
            return bundle(temperature=1.0)
        return bundle(temperature=2.0)

    forecast.fetch.side_effect = fetch
    session = WeatherSession(WeatherOrchestrator(forecast, alerts))

    request_a = asyncio.create_task(session.request(RequestContext(PLACE_A)))
    await a_started.wait()
    await session.request(RequestContext(PLACE_B))
    release_a.set()
    result_a = await request_a

    assert result_a is None
    assert session.current.current.temperature == 2.0


@pytest.mark.asyncio
async def test_session_records_current_failure(forecast, alerts):
    forecast.fetch.side_effect = ForecastUnavailableError("forecast", 500)
    session = WeatherSession(WeatherOrchestrator(forecast, alerts))

    with pytest.raises(ForecastUnavailableError):
        await session.request(RequestContext(PLACE_A))

    assert isinstance(session.error, ForecastUnavailableError)
    assert session.current is None
