import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Pull a local .env into the environment (Docker passes real variables in)
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    user = os.getenv("POSTGRES_USER", "disaster_user")
    password = os.getenv("POSTGRES_PASSWORD", "secure_password_123")
    db_name = os.getenv("POSTGRES_DB", "disaster_db")
    # In Docker, the hostname is the service name ("db"), not "localhost"
    host = os.getenv("POSTGRES_HOST", "db")
    return f"postgresql://{user}:{password}@{host}/{db_name}"


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    port: int = 5000
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    # "database" tries Postgres first and falls back to fixtures; "memory" never touches a DB
    data_backend: str = "database"
    database_url: str = "postgresql://disaster_user:secure_password_123@db/disaster_db"

    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_vision_model: str = "gemini-1.5-flash"

    bluesky_identifier: Optional[str] = None
    bluesky_password: Optional[str] = None

    rate_limit_window_ms: int = 900_000
    rate_limit_max_requests: int = 100

    realtime_polling_enabled: bool = True
    realtime_poll_interval_seconds: float = 30.0
    cache_sweep_interval_seconds: float = 3600.0
    http_timeout_seconds: float = 5.0
    fema_lookback_days: int = 365

    cors_origins: list = field(default_factory=list)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_database(self) -> bool:
        return self.data_backend == "database"

    @property
    def allowed_origins(self) -> list:
        return [self.frontend_url, *self.cors_origins]


def load_settings() -> Settings:
    extra_origins = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "").split(",")
        if origin.strip()
    ]

    return Settings(
        environment=os.getenv("ENVIRONMENT", "development"),
        port=int(os.getenv("PORT", "5000")),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        data_backend=os.getenv("DATA_BACKEND", "database").lower(),
        database_url=_database_url(),
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
        gemini_vision_model=os.getenv("GEMINI_VISION_MODEL", "gemini-1.5-flash"),
        bluesky_identifier=os.getenv("BLUESKY_IDENTIFIER") or None,
        bluesky_password=os.getenv("BLUESKY_PASSWORD") or None,
        rate_limit_window_ms=int(os.getenv("RATE_LIMIT_WINDOW_MS", "900000")),
        rate_limit_max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100")),
        realtime_polling_enabled=_env_bool("REALTIME_POLLING_ENABLED", True),
        realtime_poll_interval_seconds=float(os.getenv("REALTIME_POLL_INTERVAL_SECONDS", "30")),
        cache_sweep_interval_seconds=float(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "3600")),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "5")),
        fema_lookback_days=int(os.getenv("FEMA_LOOKBACK_DAYS", "365")),
        cors_origins=extra_origins,
    )
