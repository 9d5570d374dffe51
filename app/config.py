# app/config.py
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve to the project root (one level up from app/)
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Runtime settings, read from the environment or a .env file at the project root."""

    database_url: str = f"sqlite:///{(BASE_DIR / 'growers.db').as_posix()}"
    log_level: str = "INFO"

    # Upstream grower API
    grower_api_url: str = "https://grower-gbs-prod.oceanspray.io/v1"
    grower_api_token: Optional[str] = None
    grower_api_timeout: float = 30.0

    # Geocoding providers
    census_url: str = "https://geocoding.geo.census.gov/geocoder/locations/onelineaddress"
    census_benchmark: str = "Public_AR_Current"
    nominatim_url: str = "https://nominatim.openstreetmap.org/search"
    geocoder_user_agent: str = "GrowerBedDatabase/1.0"
    geocode_country: str = "us"
    geocode_delay_seconds: float = 1.0  # Nominatim usage policy: at most 1 req/s
    geocode_timeout_seconds: float = 10.0

    data_dir: Path = BASE_DIR / "data"
    output_dir: Path = BASE_DIR / "output"

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
