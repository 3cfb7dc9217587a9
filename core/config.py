# ==================================================================================
# core/config.py — FastAPI Configuration (Stripe Connect + SendGrid + Pydantic v2)
# ==================================================================================
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError
from typing import Optional
import sys


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./wineclub.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: Optional[str] = None
    MAIL_FROM: Optional[str] = None  # Example: "Wine Club <no-reply@example.com>"

    # -----------------------------------------
    # FRONTEND & BACKEND CONFIG (local dev defaults)
    # -----------------------------------------
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"

    # ------------------------
    # STRIPE / CONNECT CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_API_VERSION: Optional[str] = None

    @property
    def STRIPE_CONFIGURED(self) -> bool:
        """False when the key is missing or still a build placeholder"""
        key = self.STRIPE_SECRET_KEY or ""
        return bool(key) and "placeholder" not in key

    @property
    def ONBOARDING_REFRESH_URL(self) -> str:
        return f"{self.FRONTEND_URL}/onboarding/connect"

    @property
    def ONBOARDING_RETURN_URL(self) -> str:
        return f"{self.FRONTEND_URL}/onboarding/return"

    @property
    def DASHBOARD_URL(self) -> str:
        return f"{self.FRONTEND_URL}/app"

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production' | 'test'
    DEBUG: bool = True

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    print(f"🌍 Environment: {settings.ENVIRONMENT}, Debug: {settings.DEBUG}")
except ValidationError as e:
    print("❌ Environment configuration error — missing or invalid settings!")
    print(e)
    sys.exit(1)
