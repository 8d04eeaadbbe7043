"""Forward and reverse geocoding with region-hint disambiguation."""

import re
import typing

import httpx
import structlog
from pydantic import ValidationError

from skywatch.config import Settings
from skywatch.errors import UpstreamError
from skywatch.http import get_json
from skywatch.models import (
    UNKNOWN_PLACE,
    Coordinates,
    PlaceCandidate,
    PlaceIdentity,
    SearchOutcome,
    SearchStatus,
)

logger = structlog.get_logger("Geocode")

US_STATES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas", "CA": "California",
    "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware", "FL": "Florida", "GA": "Georgia",
    "HI": "Hawaii", "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi", "MO": "Missouri",
    "MT": "Montana", "NE": "Nebraska", "NV": "Nevada", "NH": "New Hampshire", "NJ": "New Jersey",
    "NM": "New Mexico", "NY": "New York", "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio",
    "OK": "Oklahoma", "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah", "VT": "Vermont",
    "VA": "Virginia", "WA": "Washington", "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
    "DC": "District of Columbia", "PR": "Puerto Rico",
}  # fmt: skip

_STATE_NAMES = {name.lower(): name for name in US_STATES.values()}
_POSTAL_CODE = re.compile(r"^[A-Z]{2}$")


class RegionQuery(typing.NamedTuple):
    name: str
    region: str | None


def split_region_hint(text: str) -> RegionQuery:
    """
    Separate a trailing region hint from a place query.

    Handles "city, ST", "city, region", "city ST" and "city state-name".
    Without a comma, only US postal codes (upper case) and full state names
    are treated as hints so multi-word place names stay intact.
    """
    text = " ".join(text.split())
    if "," in text:
        name, _, region = text.rpartition(",")
        name, region = name.strip(" ,"), region.strip()
        if name and region:
            return RegionQuery(name, region)
        return RegionQuery(name or region, None)

    if text.lower() in _STATE_NAMES:
        return RegionQuery(text, None)

    words = text.split(" ")
    for width in (3, 2, 1):
        if len(words) <= width:
            continue
        tail = " ".join(words[-width:])
        if tail.lower() in _STATE_NAMES or (width == 1 and _POSTAL_CODE.match(tail) and tail in US_STATES):
            return RegionQuery(" ".join(words[:-width]), tail)
    return RegionQuery(text, None)


def matches_region(candidate: PlaceCandidate, region: str) -> bool:
    wanted = region.strip().lower()
    state = US_STATES.get(region.strip().upper())
    admin1 = (candidate.admin1 or "").lower()
    if state is not None and admin1 == state.lower():
        return True
    if admin1 and admin1 == wanted:
        return True
    if candidate.country_code and candidate.country_code.lower() == wanted:
        return True
    return bool(candidate.country and candidate.country.lower() == wanted)


def rank_candidates(candidates: list[PlaceCandidate], preferred_country: str | None = None) -> list[PlaceCandidate]:
    """Same country as the previous place first, then highest population."""
    preferred = preferred_country.upper() if preferred_country else None

    def key(c: PlaceCandidate) -> tuple[int, int]:
        same_country = preferred is not None and (c.country_code or "").upper() == preferred
        return (0 if same_country else 1, -(c.population or 0))

    return sorted(candidates, key=key)


class GeocodeResolver:
    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings

    async def forward_search(self, text: str, preferred_country: str | None = None) -> SearchOutcome:
        """
        Resolve free text to ranked candidates.

        Upstream failures propagate; the caller decides how to report a failed
        search. A region hint with no matching candidate yields
        ``NO_MATCH_IN_REGION`` carrying the unfiltered candidates for display.
        """
        raw = (text or "").strip()
        if not raw:
            return SearchOutcome(query="", status=SearchStatus.NO_MATCH)

        query = split_region_hint(raw)
        data = await get_json(
            self.client,
            self.settings.geocode_search_url,
            provider="geocoding",
            params={"name": query.name, "count": self.settings.search_count, "language": "en", "format": "json"},
            retries=self.settings.retry_attempts,
            backoff=self.settings.retry_backoff,
        )
        candidates = _parse_candidates(data)
        logger.info("Forward search", query=raw, region=query.region, candidates=len(candidates))

        if not candidates:
            return SearchOutcome(query=raw, status=SearchStatus.NO_MATCH, region_hint=query.region)

        if query.region is None:
            return SearchOutcome(
                query=raw,
                status=SearchStatus.OK,
                candidates=rank_candidates(candidates, preferred_country),
            )

        in_region = [c for c in candidates if matches_region(c, query.region)]
        if not in_region:
            return SearchOutcome(
                query=raw,
                status=SearchStatus.NO_MATCH_IN_REGION,
                candidates=rank_candidates(candidates, preferred_country),
                region_hint=query.region,
            )
        return SearchOutcome(
            query=raw,
            status=SearchStatus.OK,
            candidates=rank_candidates(in_region, preferred_country),
            region_hint=query.region,
        )

    async def reverse_lookup(self, coords: Coordinates) -> PlaceIdentity:
        """Never raises: a failed lookup degrades to "Unknown location"."""
        try:
            data = await get_json(
                self.client,
                self.settings.reverse_geocode_url,
                provider="reverse-geocoding",
                params={"latitude": coords.latitude, "longitude": coords.longitude, "localityLanguage": "en"},
                retries=self.settings.retry_attempts,
                backoff=self.settings.retry_backoff,
            )
        except UpstreamError as e:
            logger.warning("Reverse lookup failed", error=str(e))
            return UNKNOWN_PLACE

        if not isinstance(data, dict):
            return UNKNOWN_PLACE
        name = data.get("city") or data.get("locality") or "Your area"
        try:
            return PlaceIdentity(
                name=name,
                admin1=data.get("principalSubdivision") or None,
                country=data.get("countryCode") or None,
            )
        except ValidationError as e:
            logger.warning("Reverse lookup returned malformed place", error=str(e))
            return UNKNOWN_PLACE


def _parse_candidates(data: typing.Any) -> list[PlaceCandidate]:
    results = data.get("results") if isinstance(data, dict) else None
    candidates: list[PlaceCandidate] = []
    for item in results or []:
        if item.get("latitude") is None or item.get("longitude") is None or not item.get("name"):
            continue
        candidates.append(
            PlaceCandidate(
                name=item["name"],
                latitude=item["latitude"],
                longitude=item["longitude"],
                country_code=item.get("country_code"),
                country=item.get("country"),
                admin1=item.get("admin1"),
                population=item.get("population"),
            )
        )
    return candidates
