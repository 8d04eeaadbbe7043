"""Hazard alert aggregation with point -> zone fallback.

The alert path is never fatal: every upstream failure degrades to "no alerts
from this path" and is recorded in the diagnostics.
"""

import asyncio
import typing
import uuid

import httpx
import structlog

from skywatch.config import Settings
from skywatch.errors import UpstreamError
from skywatch.http import get_json
from skywatch.models import Alert, AlertDiagnostics, AlertReport, Coordinates

logger = structlog.get_logger("Alerts")

# Zone references carried by the point metadata document
ZONE_PROPERTIES = ("forecastZone", "county", "fireWeatherZone")


def _point(coords: Coordinates) -> str:
    return f"{coords.latitude:.4f},{coords.longitude:.4f}"


def zone_id_from_ref(ref: typing.Any) -> str | None:
    """'https://api.weather.gov/zones/forecast/ALZ006' -> 'ALZ006'."""
    if not isinstance(ref, str) or not ref.strip():
        return None
    return ref.rstrip("/").rsplit("/", 1)[-1] or None


def parse_alert(feature: typing.Any) -> Alert | None:
    if not isinstance(feature, dict):
        return None
    props = feature.get("properties") or {}
    alert_id = feature.get("id") or props.get("id")
    synthetic = not alert_id
    if synthetic:
        alert_id = f"synthetic-{uuid.uuid4().hex}"
    return Alert(
        id=str(alert_id),
        event=props.get("event") or "Weather Alert",
        headline=props.get("headline"),
        severity=props.get("severity"),
        effective=props.get("effective") or props.get("onset"),
        expires=props.get("ends") or props.get("expires"),
        description=props.get("description") or "",
        instruction=props.get("instruction") or "",
        area_desc=props.get("areaDesc") or "",
        synthetic_id=synthetic,
    )


class AlertMerger:
    """Accumulates alerts keyed by provider id; first occurrence wins."""

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self.duplicates = 0

    def add(self, alerts: typing.Iterable[Alert]) -> None:
        for alert in alerts:
            if alert.id in self._alerts:
                self.duplicates += 1
                continue
            self._alerts[alert.id] = alert

    @property
    def alerts(self) -> list[Alert]:
        return list(self._alerts.values())


class AlertAggregator:
    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings
        self.headers = {
            "User-Agent": settings.require_user_agent(),
            "Accept": "application/geo+json",
        }

    async def collect(self, coords: Coordinates) -> AlertReport:
        merger = AlertMerger()
        failures: list[str] = []
        paths = ["point"]

        point_alerts = await self._query_alerts({"point": _point(coords)}, "point", failures)
        merger.add(point_alerts)

        zone_ids: list[str] = []
        zone_count = 0
        if not point_alerts:
            paths.append("zone")
            zone_ids = await self._resolve_zones(coords, failures)
            if zone_ids:
                results = await asyncio.gather(
                    *(self._query_alerts({"zone": zone}, f"zone:{zone}", failures) for zone in zone_ids)
                )
                for alerts in results:
                    zone_count += len(alerts)
                    merger.add(alerts)

        diagnostics = AlertDiagnostics(
            paths=paths,
            point_count=len(point_alerts),
            zone_ids=zone_ids,
            zone_count=zone_count,
            duplicates_dropped=merger.duplicates,
            failures=failures,
            degraded=bool(failures),
        )
        logger.info(
            "Alerts collected",
            alerts=len(merger.alerts),
            paths=paths,
            point_count=diagnostics.point_count,
            zone_count=zone_count,
            degraded=diagnostics.degraded,
        )
        return AlertReport(alerts=merger.alerts, diagnostics=diagnostics)

    async def _query_alerts(self, params: dict[str, str], label: str, failures: list[str]) -> list[Alert]:
        try:
            data = await self._get(f"{self.settings.alerts_base_url}/alerts/active", params)
        except UpstreamError as e:
            logger.warning("Alert query degraded", path=label, error=str(e))
            failures.append(label)
            return []
        features = data.get("features") if isinstance(data, dict) else None
        alerts = [parse_alert(f) for f in features or []]
        return [a for a in alerts if a is not None]

    async def _resolve_zones(self, coords: Coordinates, failures: list[str]) -> list[str]:
        try:
            data = await self._get(f"{self.settings.alerts_base_url}/points/{_point(coords)}")
        except UpstreamError as e:
            logger.warning("Zone metadata degraded", error=str(e))
            failures.append("zones")
            return []
        props = (data.get("properties") if isinstance(data, dict) else None) or {}
        zones: list[str] = []
        for key in ZONE_PROPERTIES:
            zone = zone_id_from_ref(props.get(key))
            if zone and zone not in zones:
                zones.append(zone)
        return zones

    async def _get(self, url: str, params: dict[str, str] | None = None) -> typing.Any:
        return await get_json(
            self.client,
            url,
            provider="alerts",
            params=params,
            headers=self.headers,
            retries=self.settings.retry_attempts,
            backoff=self.settings.retry_backoff,
        )
