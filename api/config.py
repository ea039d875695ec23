from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://haultrack:haultrack@db:5432/haultrack"
    REDIS_URL: str = "redis://redis:6379/0"
    GEOAPIFY_API_KEY: str | None = None
    LOG_LEVEL: str = "INFO"

    # Active tracker cache
    TRACKER_IDLE_TIMEOUT_SEC: int = 3600
    TRACKER_SWEEP_INTERVAL_SEC: int = 300

    # Geocoding backfill must never hold up a route transition
    GEOCODE_TIMEOUT_SEC: float = 5.0

    # Block route completion while stops are still Pending / In Progress
    REQUIRE_RESOLVED_STOPS_ON_COMPLETE: bool = False

    class Config:
        env_file = ".env"
        extra = "allow"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
