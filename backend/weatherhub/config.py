"""Application configuration using Pydantic Settings."""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings

# Resolve config: prefer system config (installed), fall back to repo .env (dev)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_SYSTEM_CONF = Path("/etc/weatherhub/weatherhub.conf")
_ENV_FILE = _SYSTEM_CONF if _SYSTEM_CONF.exists() else _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    # Database
    db_path: str = "weatherhub.db"
    # Full SQLAlchemy URL; overrides db_path when set
    db_url: str = ""

    @model_validator(mode="after")
    def _resolve_db_path(self) -> "Settings":
        """Make db_path absolute: relative to /var/lib/weatherhub if installed, else project root."""
        p = Path(self.db_path)
        if not p.is_absolute() and self.db_path != ":memory:":
            if _ENV_FILE == _SYSTEM_CONF:
                self.db_path = str(Path("/var/lib/weatherhub") / p)
            else:
                self.db_path = str(_PROJECT_ROOT / p)
        return self

    @property
    def database_url(self) -> str:
        if self.db_url:
            return self.db_url
        return f"sqlite:///{self.db_path}"

    # OpenWeatherMap
    owm_onecall_url: str = "https://api.openweathermap.org/data/3.0/onecall"
    owm_geocoding_url: str = "http://api.openweathermap.org/geo/1.0/direct"
    request_timeout: float = 30.0
    default_rate_limit_minutes: int = 10

    # Scheduled ingestion
    ingest_enabled: bool = False
    ingest_interval_sec: int = 60
    ingest_concurrency: int = 1

    # Retention windows applied while reconciling a fetch
    current_retention_hours: int = 1
    hourly_retention_hours: int = 48
    daily_retention_days: int = 8
    minutely_retention_hours: int = 2

    # Cleanup sweep defaults
    cleanup_days_old: int = 30
    minutely_cleanup_hours_old: int = 6

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_prefix": "WEATHERHUB_", "env_file": str(_ENV_FILE)}


settings = Settings()
