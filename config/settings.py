"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Legal Case Marketplace"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_BATCH_LOCK_TTL: int = 1800    # 30 minutes

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── RazorpayX Payouts ────────────────────────────────────
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    RAZORPAY_ACCOUNT_NUMBER: str = ""
    RAZORPAYX_BASE_URL: str = "https://api.razorpay.com/v1"
    PAYOUT_GATEWAY_TIMEOUT_SECONDS: float = 15.0
    PAYOUT_GATEWAY_FAIL_MAX: int = 5
    PAYOUT_GATEWAY_RESET_TIMEOUT: int = 60
    PAYOUT_DEFAULT_MODE: str = "NEFT"

    # ── Frontend ─────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Business Config ──────────────────────────────────────
    COMMISSION_RATE_MIN: int = 10
    COMMISSION_RATE_MAX: int = 30
    DEFAULT_COMMISSION_RATE: int = 20
    PREFERRED_TIER_MAX_RATE: int = 15
    CASE_DEADLINE_DAYS_URGENT: int = 3
    CASE_DEADLINE_DAYS_NORMAL: int = 5
    CASE_ACCEPTANCE_TIMEOUT_HOURS: int = 24
    DECLINE_RATE_FLAG_THRESHOLD: float = 0.30
    LOW_RATING_FLAG_MIN_COUNT: int = 10
    LOW_RATING_FLAG_THRESHOLD: float = 3.5
    PERFORMANCE_TREND_MONTHS: int = 6
    PAYOUT_AUTO_CONFIRM_DAYS: int = 7

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
