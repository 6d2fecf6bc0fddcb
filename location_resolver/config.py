"""
Central configuration loaded from environment variables with sensible defaults.
Postgres credentials and the Nominatim identity come from env vars.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

DEFAULT_DATASET = str(Path(__file__).parent / "data" / "worldcities_sample.csv")


@dataclass(frozen=True)
class GazetteerConfig:
    # File path or http(s) URL of the world-cities table
    dataset: str = os.getenv("GAZETTEER_DATASET", DEFAULT_DATASET)
    delimiter: str = os.getenv("GAZETTEER_DELIMITER", ",")
    request_timeout: float = float(os.getenv("GAZETTEER_TIMEOUT", "30"))


@dataclass(frozen=True)
class GeocodingConfig:
    enabled: bool = os.getenv("GEOCODER_ENABLED", "true").lower() == "true"
    nominatim_url: str = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org")
    nominatim_user_agent: str = os.getenv(
        "NOMINATIM_USER_AGENT", "location-resolver/1.0 (+https://github.com/location-resolver)"
    )
    # Nominatim usage policy: at most one request per second
    min_interval_seconds: float = float(os.getenv("GEOCODER_MIN_INTERVAL", "1.0"))
    request_timeout: float = float(os.getenv("GEOCODER_TIMEOUT", "10"))


@dataclass(frozen=True)
class CacheConfig:
    backend: str = os.getenv("CACHE_BACKEND", "sqlite")  # memory | sqlite | postgres
    key_prefix: str = os.getenv("CACHE_KEY_PREFIX", "location_resolver_cache_")
    ttl_days: int = int(os.getenv("CACHE_TTL_DAYS", "30"))
    sqlite_path: str = os.getenv("CACHE_SQLITE_PATH", "location_cache.sqlite")
    # 0 = unbounded
    max_entries: int = int(os.getenv("CACHE_MAX_ENTRIES", "0"))


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = os.getenv("PG_HOST", "localhost")
    port: int = int(os.getenv("PG_PORT", "5432"))
    user: str = os.getenv("PG_USER", "location_resolver")
    password: str = os.getenv("PG_PASSWORD", "location_resolver")
    database: str = os.getenv("PG_DATABASE", "location_resolver")
    min_pool_size: int = int(os.getenv("PG_POOL_MIN", "1"))
    max_pool_size: int = int(os.getenv("PG_POOL_MAX", "5"))

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class SchedulerConfig:
    enabled: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    cleanup_interval_minutes: int = int(os.getenv("CACHE_CLEANUP_INTERVAL_MIN", "360"))


@dataclass(frozen=True)
class APIConfig:
    host: str = os.getenv("API_HOST", "0.0.0.0")
    port: int = int(os.getenv("API_PORT", "8000"))
    max_batch: int = int(os.getenv("API_MAX_BATCH", "1000"))


@dataclass(frozen=True)
class Settings:
    gazetteer: GazetteerConfig = field(default_factory=GazetteerConfig)
    geocoding: GeocodingConfig = field(default_factory=GeocodingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    env: str = os.getenv("APP_ENV", "development")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
