"""Single source of truth for provider unit tokens.

Every upstream call site derives its unit parameters from ``tokens_for`` so
current, hourly, daily and cached data within one response never mix systems.
"""

from dataclasses import dataclass

from skywatch.models import UnitLabels, UnitPreference


@dataclass(frozen=True)
class UnitTokens:
    temperature_unit: str
    wind_speed_unit: str
    precipitation_unit: str
    labels: UnitLabels

    def as_params(self) -> dict[str, str]:
        return {
            "temperature_unit": self.temperature_unit,
            "wind_speed_unit": self.wind_speed_unit,
            "precipitation_unit": self.precipitation_unit,
        }


_TOKENS: dict[UnitPreference, UnitTokens] = {
    UnitPreference.IMPERIAL: UnitTokens(
        temperature_unit="fahrenheit",
        wind_speed_unit="mph",
        precipitation_unit="inch",
        labels=UnitLabels(temperature="°F", wind_speed="mph", precipitation="in"),
    ),
    UnitPreference.METRIC: UnitTokens(
        temperature_unit="celsius",
        wind_speed_unit="kmh",
        precipitation_unit="mm",
        labels=UnitLabels(temperature="°C", wind_speed="km/h", precipitation="mm"),
    ),
}


def tokens_for(unit: UnitPreference | str) -> UnitTokens:
    return _TOKENS[UnitPreference(unit)]
