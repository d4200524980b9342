"""
Laundry Portal - Configuration Settings
"""

from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "FreshFold Laundry"
    APP_DESCRIPTION: str = "Laundry pickup and delivery portal"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Backend REST API (the only place a backend URL may come from)
    API_BASE_URL: str = "http://localhost:5000/api"
    API_TIMEOUT_SECONDS: float = 15.0

    # Security
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    SESSION_EXPIRE_MINUTES: int = 60 * 24  # 24 hours

    # Booking draft store
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/portal.db"
    DRAFT_TTL_HOURS: int = 24

    # Business rules mirrored for display (backend is authoritative)
    REFUND_APPROVAL_LIMIT: float = 500.0
    EXPRESS_MULTIPLIER: float = 1.5
    DEFAULT_TIME_SLOTS: list[str] = [
        "09:00-11:00",
        "11:00-13:00",
        "13:00-15:00",
        "15:00-17:00",
        "17:00-19:00",
    ]

    # Lists
    DEFAULT_PAGE_SIZE: int = 20
    AUDIT_PAGE_SIZE: int = 50

    # Timezone
    TIMEZONE: str = "Asia/Kolkata"  # IST

    # Optional support contact shown on public pages
    SUPPORT_PHONE: Optional[str] = None

    @model_validator(mode="after")
    def validate_secret_key(self):
        """Refuse to start with the default secret key in production."""
        if not self.DEBUG and self.SECRET_KEY == "dev-secret-key-change-in-production":
            raise ValueError(
                "SECRET_KEY must be changed from the default value in production. "
                "Set a strong, unique SECRET_KEY in your .env file."
            )
        return self

    @property
    def api_base_url(self) -> str:
        """Base URL without a trailing slash."""
        return self.API_BASE_URL.rstrip("/")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Create settings instance
settings = Settings()


# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE_DIR = Path(__file__).parent
TEMPLATES_DIR = PACKAGE_DIR / "templates"
STATIC_DIR = PACKAGE_DIR / "static"
DATA_DIR = PROJECT_ROOT / "data"
