"""Shareable view state carried in a URL query string."""

from urllib.parse import parse_qs, urlencode

from pydantic import BaseModel, ConfigDict

from skywatch.errors import InvalidInputError
from skywatch.models import Coordinates, UnitPreference


class ShareState(BaseModel):
    model_config = ConfigDict(frozen=True)

    coordinates: Coordinates | None = None
    unit: UnitPreference | None = None

    def to_query(self) -> str:
        params: dict[str, str] = {}
        if self.coordinates is not None:
            params["lat"] = f"{self.coordinates.latitude:.4f}"
            params["lon"] = f"{self.coordinates.longitude:.4f}"
        if self.unit is not None:
            params["unit"] = self.unit.value
        return urlencode(params)

    @classmethod
    def from_query(cls, query: str) -> "ShareState":
        """Parse leniently: unusable values are dropped rather than rejected."""
        values = parse_qs(query.lstrip("?"))
        lat = values.get("lat", [None])[0]
        lon = values.get("lon", [None])[0]
        coords = None
        if lat is not None and lon is not None:
            try:
                coords = Coordinates.parse(lat, lon)
            except InvalidInputError:
                coords = None
        unit = None
        raw_unit = values.get("unit", [None])[0]
        if raw_unit:
            try:
                unit = UnitPreference.parse(raw_unit)
            except InvalidInputError:
                unit = None
        return cls(coordinates=coords, unit=unit)
