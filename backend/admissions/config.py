"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Admissions & Enrollment Payments API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"   # development | test | production

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'admissions.db'}"

    # --- Payment Gateway (Paystack) ---
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_WEBHOOK_SECRET: str = ""
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    # Accept unsigned webhooks when no secret is set. Ignored in production.
    WEBHOOK_ALLOW_UNSIGNED: bool = False

    # --- Payments ---
    FRONTEND_URL: str = "http://localhost:3000"
    DEFAULT_CURRENCY: str = "NGN"
    PAYMENT_EXPIRY_HOURS: int = 24
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 0   # 0 = lazy expiry only
    EXPIRY_SWEEP_BATCH_SIZE: int = 100

    # --- Security ---
    RATE_LIMIT_MAX_KEYS: int = 10_000
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
