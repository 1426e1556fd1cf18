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
    APP_NAME: str = "CRM Identity Verification API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'kyc_compliance.db'}"

    # --- Verification Provider (NuFi) ---
    NUFI_API_KEYS: str = ""                 # Comma-separated, tried in order
    NUFI_BASE_URL: str = "https://nufi.azure-api.net"
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    # --- Watchlist Screening ---
    WATCHLIST_MIN_NAME_LENGTH: int = 3

    # --- Evidence Storage ---
    EVIDENCE_DIR: str = str(BASE_DIR / "data" / "evidence")
    EVIDENCE_BASE_URL: str = "http://localhost:8000/evidence"

    # --- Public Verification Links ---
    PUBLIC_RATE_LIMIT_REQUESTS: int = 20
    PUBLIC_RATE_LIMIT_WINDOW: int = 60

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def provider_api_keys(self) -> list[str]:
        """Service-wide provider keys, used when a tenant has none of its own."""
        return [k.strip() for k in self.NUFI_API_KEYS.split(",") if k.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
