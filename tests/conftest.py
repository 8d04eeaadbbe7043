import typing
from collections.abc import Callable

import httpx
import pytest
from skywatch.config import Settings

Handler = Callable[[httpx.Request], httpx.Response]

FORECAST_URL = "https://forecast.test/v1/forecast"
SEARCH_URL = "https://geocode.test/v1/search"
REVERSE_URL = "https://reverse.test/reverse"
ALERTS_URL = "https://alerts.test"
IP_URL = "https://ip.test/json/"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        preferences_path=tmp_path / "preferences.json",
        forecast_url=FORECAST_URL,
        geocode_search_url=SEARCH_URL,
        reverse_geocode_url=REVERSE_URL,
        alerts_base_url=ALERTS_URL,
        ip_geolocation_url=IP_URL,
        nws_user_agent="skywatch-tests (ops@example.com)",
        retry_attempts=2,
        retry_backoff=0.0,
    )


class Upstream:
    """Routes requests by URL prefix to canned handlers and records every call."""

    def __init__(self) -> None:
        self.routes: list[tuple[str, Handler]] = []
        self.calls: list[httpx.Request] = []

    def on(self, prefix: str, handler: Handler | dict[str, typing.Any] | list[typing.Any]) -> None:
        if not callable(handler):
            payload = handler
            handler = lambda request: httpx.Response(200, json=payload)  # noqa: E731
        self.routes.append((prefix, handler))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = str(request.url)
        # Longest prefix wins so /points and /alerts/active can coexist
        for prefix, handler in sorted(self.routes, key=lambda r: len(r[0]), reverse=True):
            if url.startswith(prefix):
                return handler(request)
        return httpx.Response(404, text=f"no route for {url}")

    def calls_to(self, prefix: str) -> list[httpx.Request]:
        return [r for r in self.calls if str(r.url).startswith(prefix)]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def forecast_payload() -> dict[str, typing.Any]:
    """Provider payload with humidity deliberately absent from the current block."""
    hours = [f"2025-06-01T{h:02d}:00" for h in range(24)] + [f"2025-06-02T{h:02d}:00" for h in range(24)]
    days = [f"2025-06-0{d}" for d in range(1, 8)]
    return {
        "latitude": 34.73,
        "longitude": -86.59,
        "timezone": "America/Chicago",
        "current": {
            "time": "2025-06-01T14:00",
            "temperature_2m": 88.2,
            "apparent_temperature": 93.1,
            "precipitation": 0.0,
            "wind_speed_10m": 7.4,
            "wind_gusts_10m": 15.0,
            "weather_code": 2,
            "uv_index": 8.35,
            "is_day": 1,
        },
        "hourly": {
            "time": hours,
            "temperature_2m": [70.0 + i * 0.5 for i in range(48)],
            "relative_humidity_2m": [60] * 48,
            "precipitation": [0.0] * 48,
            "precipitation_probability": [10] * 48,
            "wind_speed_10m": [5.0] * 48,
            "wind_gusts_10m": [9.0] * 48,
            "weather_code": [1] * 48,
            "uv_index": [None] * 48,
            "is_day": [0] * 6 + [1] * 14 + [0] * 28,
        },
        "daily": {
            "time": days,
            "temperature_2m_max": [90.0, 91.0, 89.5, 87.0, 85.0, 86.0, 88.0],
            "temperature_2m_min": [70.0, 71.0, 69.5, 67.0, 65.0, 66.0, 68.0],
            "precipitation_sum": [0.0, 0.1, 0.5, 0.0, 0.0, 0.2, 0.0],
            "weather_code": [2, 3, 61, 1, 0, 80, 2],
            "uv_index_max": [9.1, 8.7, 5.0, 9.5, 9.9, 7.0, 8.8],
            "sunrise": [f"{d}T05:38" for d in days],
            "sunset": [f"{d}T19:58" for d in days],
        },
    }


def feature(alert_id: str | None, event: str = "Heat Advisory", **props: typing.Any) -> dict[str, typing.Any]:
    properties = {
        "event": event,
        "headline": f"{event} issued",
        "severity": "Moderate",
        "description": "Hot.",
        "instruction": "Drink water.",
        "areaDesc": "Madison, AL",
        **props,
    }
    body: dict[str, typing.Any] = {"type": "Feature", "properties": properties}
    if alert_id is not None:
        body["id"] = alert_id
    return body


def alerts_payload(*features: dict[str, typing.Any]) -> dict[str, typing.Any]:
    return {"type": "FeatureCollection", "features": list(features)}


def points_payload(forecast_zone: str = "ALZ006", county: str = "ALC089") -> dict[str, typing.Any]:
    return {
        "properties": {
            "forecastZone": f"https://api.weather.gov/zones/forecast/{forecast_zone}",
            "county": f"https://api.weather.gov/zones/county/{county}",
            "fireWeatherZone": f"https://api.weather.gov/zones/fire/{forecast_zone}",
        }
    }


def query(request: httpx.Request) -> dict[str, str]:
    return dict(request.url.params)
