import typing

import httpx
import structlog

from skywatch.config import Settings
from skywatch.errors import ForecastUnavailableError, UpstreamError
from skywatch.http import get_json
from skywatch.models import Coordinates, CurrentConditions, DailySeries, ForecastBundle, HourlySeries, UnitPreference
from skywatch.units import tokens_for

logger = structlog.get_logger("Forecast")

# Normalized field -> provider variable. Requested verbatim so every field is
# present in the response even when its value is null.
CURRENT_FIELDS = {
    "temperature": "temperature_2m",
    "apparent_temperature": "apparent_temperature",
    "humidity": "relative_humidity_2m",
    "precipitation": "precipitation",
    "wind_speed": "wind_speed_10m",
    "wind_gusts": "wind_gusts_10m",
    "weather_code": "weather_code",
    "uv_index": "uv_index",
    "is_day": "is_day",
}
HOURLY_FIELDS = {
    "temperature": "temperature_2m",
    "humidity": "relative_humidity_2m",
    "precipitation": "precipitation",
    "precipitation_probability": "precipitation_probability",
    "wind_speed": "wind_speed_10m",
    "wind_gusts": "wind_gusts_10m",
    "weather_code": "weather_code",
    "uv_index": "uv_index",
    "is_day": "is_day",
}
DAILY_FIELDS = {
    "temperature_max": "temperature_2m_max",
    "temperature_min": "temperature_2m_min",
    "precipitation_sum": "precipitation_sum",
    "weather_code": "weather_code",
    "uv_index_max": "uv_index_max",
    "sunrise": "sunrise",
    "sunset": "sunset",
}

_INT_FIELDS = {"weather_code"}
_BOOL_FIELDS = {"is_day"}
_TEXT_FIELDS = {"sunrise", "sunset"}


class ForecastFetcher:
    """Current, hourly and daily blocks from the numerical-forecast provider in one call."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings

    def build_params(self, coords: Coordinates, unit: UnitPreference) -> dict[str, typing.Any]:
        return {
            "latitude": coords.latitude,
            "longitude": coords.longitude,
            "timezone": "auto",
            "current": ",".join(CURRENT_FIELDS.values()),
            "hourly": ",".join(HOURLY_FIELDS.values()),
            "daily": ",".join(DAILY_FIELDS.values()),
            "forecast_hours": self.settings.hourly_hours,
            "forecast_days": self.settings.daily_days,
            **tokens_for(unit).as_params(),
        }

    async def fetch(self, coords: Coordinates, unit: UnitPreference) -> ForecastBundle:
        try:
            data = await get_json(
                self.client,
                self.settings.forecast_url,
                provider="forecast",
                params=self.build_params(coords, unit),
                retries=self.settings.retry_attempts,
                backoff=self.settings.retry_backoff,
            )
        except UpstreamError as e:
            raise ForecastUnavailableError.wrap(e) from e

        if not isinstance(data, dict):
            raise ForecastUnavailableError("forecast", 200, "Unexpected response shape")
        missing = [block for block in ("current", "hourly", "daily") if not isinstance(data.get(block), dict)]
        if missing:
            raise ForecastUnavailableError("forecast", 200, f"Response lacks {', '.join(missing)} block")

        bundle = ForecastBundle(
            current=parse_current(data["current"]),
            hourly=HourlySeries(**parse_series(data["hourly"], HOURLY_FIELDS, self.settings.hourly_hours)),
            daily=DailySeries(**parse_series(data["daily"], DAILY_FIELDS, self.settings.daily_days)),
            timezone=data.get("timezone"),
        )
        logger.info("Forecast fetched", unit=unit.value, hours=len(bundle.hourly), days=len(bundle.daily))
        return bundle


def _coerce(field: str, value: typing.Any) -> typing.Any:
    if value is None:
        return None
    try:
        if field in _BOOL_FIELDS:
            return bool(int(value))
        if field in _INT_FIELDS:
            return int(value)
        if field in _TEXT_FIELDS:
            return str(value)
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_current(block: dict[str, typing.Any]) -> CurrentConditions:
    values = {field: _coerce(field, block.get(source)) for field, source in CURRENT_FIELDS.items()}
    return CurrentConditions(time=block.get("time"), **values)


def parse_series(block: dict[str, typing.Any], fields: dict[str, str], horizon: int) -> dict[str, list[typing.Any]]:
    """Turn provider parallel arrays into aligned columns, padding short ones with None."""
    times = [str(t) for t in (block.get("time") or [])][:horizon]
    size = len(times)
    columns: dict[str, list[typing.Any]] = {"time": times}
    for field, source in fields.items():
        raw = block.get(source) or []
        column = [_coerce(field, v) for v in raw[:size]]
        column.extend([None] * (size - len(column)))
        columns[field] = column
    return columns
