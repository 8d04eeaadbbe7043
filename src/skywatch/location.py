"""Staged location acquisition.

Stages, first success wins: explicit coordinates, device geolocation
(low accuracy, then one high-accuracy retry on timeout/unavailable),
IP-based estimate, last known coordinates, configured default place.
"""

import asyncio
import typing
from dataclasses import dataclass

import httpx
import structlog
from pydantic import ValidationError

from skywatch.config import Settings
from skywatch.errors import GeolocationError, GeolocationFailure, InvalidInputError, UpstreamError
from skywatch.geocode import GeocodeResolver
from skywatch.http import get_json
from skywatch.models import UNKNOWN_PLACE, Coordinates, LocationFix, LocationSource, PlaceIdentity

logger = structlog.get_logger("Location")


@dataclass(frozen=True)
class PositionOptions:
    high_accuracy: bool
    timeout: float
    maximum_age: float


LOW_ACCURACY = PositionOptions(high_accuracy=False, timeout=8.0, maximum_age=300.0)
HIGH_ACCURACY = PositionOptions(high_accuracy=True, timeout=20.0, maximum_age=0.0)


@dataclass(frozen=True)
class DevicePosition:
    coordinates: Coordinates
    accuracy_m: float | None = None


class DeviceLocator(typing.Protocol):
    """Adapter over a device/browser geolocation API.

    Implementations return a position or raise ``GeolocationError``.
    """

    async def locate(self, options: PositionOptions) -> DevicePosition: ...


@dataclass(frozen=True)
class IpEstimate:
    coordinates: Coordinates
    place: PlaceIdentity | None


class IpLocator:
    """Approximate coordinates from the caller's network address."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings

    async def estimate(self) -> IpEstimate | None:
        try:
            data = await get_json(
                self.client,
                self.settings.ip_geolocation_url,
                provider="ip-geolocation",
                retries=self.settings.retry_attempts,
                backoff=self.settings.retry_backoff,
            )
        except UpstreamError as e:
            logger.warning("IP geolocation failed", error=str(e))
            return None
        if not isinstance(data, dict) or data.get("error"):
            logger.warning("IP geolocation returned no position", reason=str(data)[:200])
            return None
        try:
            coords = Coordinates.parse(data.get("latitude"), data.get("longitude"))
        except InvalidInputError:
            logger.warning("IP geolocation returned invalid coordinates")
            return None
        place = None
        if data.get("city"):
            try:
                place = PlaceIdentity(name=data["city"], admin1=data.get("region"), country=data.get("country_code"))
            except ValidationError:
                logger.warning("IP geolocation returned malformed place")
        return IpEstimate(coordinates=coords, place=place)


class LocationAcquisition:
    def __init__(
        self,
        settings: Settings,
        resolver: GeocodeResolver,
        ip_locator: IpLocator | None = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self.ip_locator = ip_locator

    async def acquire(
        self,
        explicit: Coordinates | None = None,
        device: DeviceLocator | None = None,
        last_known: Coordinates | None = None,
    ) -> LocationFix:
        if explicit is not None:
            logger.info("Using explicit coordinates")
            return LocationFix(coordinates=explicit, source=LocationSource.EXPLICIT)

        error: GeolocationError | None = None
        if device is None:
            error = GeolocationError(GeolocationFailure.UNSUPPORTED)
        else:
            try:
                position = await self._locate_device(device)
            except GeolocationError as e:
                error = e
            else:
                return await self._fix_from_device(position)

        logger.info("Device geolocation exhausted", failure=error.failure.value)
        surfaced = {"geolocation_error": error.actionable, "geolocation_failure": error.failure.value}

        if self.ip_locator is not None:
            estimate = await self.ip_locator.estimate()
            if estimate is not None:
                place = await self.resolver.reverse_lookup(estimate.coordinates)
                if place == UNKNOWN_PLACE and estimate.place is not None:
                    place = estimate.place
                return LocationFix(
                    coordinates=estimate.coordinates,
                    place=place,
                    source=LocationSource.IP,
                    warnings=["Location is approximate (estimated from network address)."],
                    **surfaced,
                )

        if last_known is not None:
            logger.info("Falling back to last known coordinates")
            return LocationFix(coordinates=last_known, source=LocationSource.LAST_KNOWN, **surfaced)

        logger.info("Falling back to default place", place=self.settings.default_place.label)
        return LocationFix(
            coordinates=self.settings.default_coordinates,
            place=self.settings.default_place,
            source=LocationSource.DEFAULT,
            **surfaced,
        )

    async def _locate_device(self, device: DeviceLocator) -> DevicePosition:
        try:
            return await self._attempt(device, LOW_ACCURACY)
        except GeolocationError as e:
            if not e.retryable:
                raise
            logger.info("Retrying device geolocation with high accuracy", failure=e.failure.value)
        return await self._attempt(device, HIGH_ACCURACY)

    async def _attempt(self, device: DeviceLocator, options: PositionOptions) -> DevicePosition:
        try:
            return await asyncio.wait_for(device.locate(options), timeout=options.timeout)
        except TimeoutError:
            raise GeolocationError(GeolocationFailure.TIMEOUT, "Device geolocation timed out") from None

    async def _fix_from_device(self, position: DevicePosition) -> LocationFix:
        warnings = []
        if position.accuracy_m is not None and position.accuracy_m > self.settings.accuracy_warning_m:
            warnings.append(
                f"Location accuracy is about {round(position.accuracy_m)} m; conditions may be for a nearby area."
            )
        place = await self.resolver.reverse_lookup(position.coordinates)
        return LocationFix(
            coordinates=position.coordinates,
            place=place,
            source=LocationSource.DEVICE,
            accuracy_m=position.accuracy_m,
            warnings=warnings,
        )
