"""
FormStock Service — Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "formstock-service"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── JWT (issued by the external identity provider) ───────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str | None = None

    # ── PostgreSQL ────────────────────────────────────────────
    POSTGRES_HOST: str = "formstock-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "formstock_db"
    POSTGRES_USER: str = "formstock_user"
    POSTGRES_PASSWORD: str = "formstock_pass"
    DATABASE_URL: str | None = None  # full override, e.g. sqlite+aiosqlite:///./dev.db

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis ─────────────────────────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_URL: str | None = None  # full override, e.g. rediss://cache.internal:6380/0

    @property
    def redis_url(self) -> str:
        if self.REDIS_URL:
            return self.REDIS_URL
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Version-conflict retries ──────────────────────────────
    OPT_LOCK_MAX_RETRIES: int = 5
    OPT_LOCK_BASE_DELAY_MS: int = 50      # doubled per attempt
    OPT_LOCK_MAX_DELAY_MS: int = 1000
    OPT_LOCK_JITTER_MS: int = 50

    # ── Stock Policy ──────────────────────────────────────────
    STOCK_ATOMIC_UPDATES: bool = True           # False forces the version-checked fallback
    STOCK_RESTORE_CAP_AT_INITIAL: bool = True   # restore never lifts current above initial
    STOCK_RESERVE_MAX_ATTEMPTS: int = 5

    # ── Redis Caches ──────────────────────────────────────────
    STOCK_CACHE_ENABLED: bool = True
    STOCK_CACHE_TTL_SECONDS: int = 10
    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400

    # ── Analytics ─────────────────────────────────────────────
    ANALYTICS_TOP_ITEMS: int = 5
    ANALYTICS_RECENT_RESPONSES: int = 10

    # ── HTTP ──────────────────────────────────────────────────
    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0
    LOG_LEVEL: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
