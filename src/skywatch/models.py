"""Normalized data model exchanged between the aggregation core and its callers.

Numeric weather fields are optional everywhere: an upstream omission stays
``None`` and must never be coerced to zero.
"""

import math
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from skywatch.errors import InvalidInputError


class UnitPreference(StrEnum):
    IMPERIAL = "imperial"
    METRIC = "metric"

    @classmethod
    def parse(cls, value: str | None) -> "UnitPreference":
        if value is None or value == "":
            return cls.IMPERIAL
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidInputError(f"Unknown unit system: {value!r}") from None


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    @classmethod
    def parse(cls, lat: str | float | None, lon: str | float | None) -> "Coordinates":
        """Validate raw (usually query-string) values before anything touches the network."""
        if lat is None or lon is None or lat == "" or lon == "":
            raise InvalidInputError("Latitude and longitude are required")
        try:
            lat_num = float(lat)
            lon_num = float(lon)
        except (TypeError, ValueError):
            raise InvalidInputError("Invalid latitude or longitude") from None
        if not (math.isfinite(lat_num) and math.isfinite(lon_num)):
            raise InvalidInputError("Invalid latitude or longitude")
        if not (-90 <= lat_num <= 90 and -180 <= lon_num <= 180):
            raise InvalidInputError("Invalid latitude or longitude")
        return cls(latitude=lat_num, longitude=lon_num)


class PlaceIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    admin1: str | None = None
    country: str | None = None

    @property
    def label(self) -> str:
        return ", ".join(part for part in (self.name, self.admin1) if part)


UNKNOWN_PLACE = PlaceIdentity(name="Unknown location")


def place_label(place: PlaceIdentity | None) -> str:
    if place is None:
        return "Loading location..."
    return place.label


class CurrentConditions(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: str | None = None
    temperature: float | None = None
    apparent_temperature: float | None = None
    humidity: float | None = None
    precipitation: float | None = None
    wind_speed: float | None = None
    wind_gusts: float | None = None
    weather_code: int | None = None
    uv_index: float | None = None
    is_day: bool | None = None


class _ParallelSeries(BaseModel):
    """Series stored as index-aligned arrays keyed by ``time``."""

    model_config = ConfigDict(frozen=True)

    time: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_alignment(self) -> "_ParallelSeries":
        expected = len(self.time)
        for name in type(self).model_fields:
            if name == "time":
                continue
            values = getattr(self, name)
            if len(values) != expected:
                raise ValueError(f"{name} has {len(values)} entries, expected {expected}")
        return self

    def __len__(self) -> int:
        return len(self.time)


class HourlySeries(_ParallelSeries):
    temperature: list[float | None] = Field(default_factory=list)
    humidity: list[float | None] = Field(default_factory=list)
    precipitation: list[float | None] = Field(default_factory=list)
    precipitation_probability: list[float | None] = Field(default_factory=list)
    wind_speed: list[float | None] = Field(default_factory=list)
    wind_gusts: list[float | None] = Field(default_factory=list)
    weather_code: list[int | None] = Field(default_factory=list)
    uv_index: list[float | None] = Field(default_factory=list)
    is_day: list[bool | None] = Field(default_factory=list)


class DailySeries(_ParallelSeries):
    temperature_max: list[float | None] = Field(default_factory=list)
    temperature_min: list[float | None] = Field(default_factory=list)
    precipitation_sum: list[float | None] = Field(default_factory=list)
    weather_code: list[int | None] = Field(default_factory=list)
    uv_index_max: list[float | None] = Field(default_factory=list)
    sunrise: list[str | None] = Field(default_factory=list)
    sunset: list[str | None] = Field(default_factory=list)


class ForecastBundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: CurrentConditions
    hourly: HourlySeries
    daily: DailySeries
    timezone: str | None = None


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    event: str
    headline: str | None = None
    severity: str | None = None
    effective: str | None = None
    expires: str | None = None
    description: str = ""
    instruction: str = ""
    area_desc: str = ""
    # Synthesized ids cannot be matched against later responses
    synthetic_id: bool = False


class AlertDiagnostics(BaseModel):
    model_config = ConfigDict(frozen=True)

    paths: list[str] = Field(default_factory=list)
    point_count: int = 0
    zone_ids: list[str] = Field(default_factory=list)
    zone_count: int = 0
    duplicates_dropped: int = 0
    failures: list[str] = Field(default_factory=list)
    degraded: bool = False


class AlertReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    alerts: list[Alert] = Field(default_factory=list)
    diagnostics: AlertDiagnostics = Field(default_factory=AlertDiagnostics)


class UnitLabels(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: str
    wind_speed: str
    precipitation: str


class AggregatedWeather(BaseModel):
    """The unit of exchange with the presentation layer. Never mutated once built."""

    model_config = ConfigDict(frozen=True)

    coordinates: Coordinates
    unit: UnitPreference
    units: UnitLabels
    timezone: str | None = None
    current: CurrentConditions
    hourly: HourlySeries
    daily: DailySeries
    alerts: list[Alert] = Field(default_factory=list)
    alerts_degraded: bool = False
    alert_diagnostics: AlertDiagnostics = Field(default_factory=AlertDiagnostics)


class PlaceCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    latitude: float
    longitude: float
    country_code: str | None = None
    country: str | None = None
    admin1: str | None = None
    population: int | None = None

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.latitude, longitude=self.longitude)

    @property
    def place(self) -> PlaceIdentity:
        return PlaceIdentity(name=self.name, admin1=self.admin1, country=self.country_code)


class SearchStatus(StrEnum):
    OK = "ok"
    NO_MATCH = "no_match"
    NO_MATCH_IN_REGION = "no_match_in_region"


class SearchOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    status: SearchStatus
    candidates: list[PlaceCandidate] = Field(default_factory=list)
    region_hint: str | None = None

    @property
    def best(self) -> PlaceCandidate | None:
        return self.candidates[0] if self.candidates else None

    @property
    def needs_choice(self) -> bool:
        return len(self.candidates) > 1


class LocationSource(StrEnum):
    EXPLICIT = "explicit"
    DEVICE = "device"
    IP = "ip"
    LAST_KNOWN = "last_known"
    DEFAULT = "default"


class LocationFix(BaseModel):
    model_config = ConfigDict(frozen=True)

    coordinates: Coordinates
    place: PlaceIdentity | None = None
    source: LocationSource
    accuracy_m: float | None = None
    warnings: list[str] = Field(default_factory=list)
    # Surfaced when device geolocation failed but a later stage succeeded
    geolocation_error: str | None = None
    geolocation_failure: str | None = None
