import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from skywatch.errors import ConfigurationError
from skywatch.models import Coordinates, PlaceIdentity, UnitPreference

logger = logging.getLogger(__name__)

PREFERENCES_PATH = Path.home() / ".config" / "skywatch" / "preferences.json"


class Settings(BaseSettings):
    """
    Application configuration using Pydantic Settings.
    Reads from SKYWATCH_* environment variables and an optional .env file.
    """

    # Application Config
    log_level: str = "INFO"
    log_dir: str = "/var/log/skywatch"
    host: str = "0.0.0.0"
    port: int = 8000

    # Upstream providers
    forecast_url: str = "https://api.open-meteo.com/v1/forecast"
    geocode_search_url: str = "https://geocoding-api.open-meteo.com/v1/search"
    reverse_geocode_url: str = "https://api.bigdatacloud.net/data/reverse-geocode-client"
    alerts_base_url: str = "https://api.weather.gov"
    ip_geolocation_url: str = "https://ipapi.co/json/"

    # The alert feed rejects anonymous clients; this is the contact string it requires
    nws_user_agent: str = Field(default="", description="Identification header for the alert provider")

    # Network behaviour
    request_timeout: float = Field(default=5.0, gt=0, description="Seconds before an upstream call is abandoned")
    retry_attempts: int = Field(default=2, ge=0, le=5, description="Retries on network failure")
    retry_backoff: float = Field(default=0.25, ge=0, description="Base backoff in seconds")

    # Data shape
    cache_ttl: int = Field(default=600, ge=0, description="Response cache window in seconds")
    hourly_hours: int = Field(default=48, gt=0, le=384)
    daily_days: int = Field(default=7, gt=0, le=16)
    search_count: int = Field(default=10, gt=0, le=100)

    # Location acquisition
    accuracy_warning_m: float = Field(default=1000.0, gt=0)
    default_place_name: str = "Huntsville"
    default_place_admin1: str = "Alabama"
    default_place_country: str = "US"
    default_latitude: float = Field(default=34.7304, ge=-90, le=90)
    default_longitude: float = Field(default=-86.5861, ge=-180, le=180)
    preferences_path: Path = PREFERENCES_PATH

    model_config = SettingsConfigDict(env_prefix="SKYWATCH_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def require_user_agent(self) -> str:
        """Return the alert identification string or fail as a deployment problem."""
        value = self.nws_user_agent.strip()
        if not value:
            raise ConfigurationError("SKYWATCH_NWS_USER_AGENT is not configured (contact string required by the alert provider)")
        return value

    @property
    def default_place(self) -> PlaceIdentity:
        return PlaceIdentity(
            name=self.default_place_name,
            admin1=self.default_place_admin1,
            country=self.default_place_country,
        )

    @property
    def default_coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.default_latitude, longitude=self.default_longitude)


class SessionPreferences(BaseModel):
    """Per-user state that survives between sessions: unit choice and last place."""

    unit: UnitPreference = UnitPreference.IMPERIAL
    place: PlaceIdentity | None = None
    coordinates: Coordinates | None = None

    def save(self, path: Path | None = None) -> None:
        """Persist preferences to the JSON file."""
        target = path or PREFERENCES_PATH
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                json.dump(self.model_dump(mode="json", exclude_none=True), f, indent=2)
            logger.info(f"Preferences saved to {target}")
        except OSError as e:
            logger.error(f"Failed to save preferences: {e}")
            raise

    @classmethod
    def load(cls, path: Path | None = None) -> "SessionPreferences":
        """Load preferences, falling back to defaults when missing or unreadable."""
        source = path or PREFERENCES_PATH
        if not source.exists():
            return cls()
        try:
            with open(source, encoding="utf-8") as f:
                return cls.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load preferences {source}, using defaults: {e}")
            return cls()
