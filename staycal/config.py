from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./staycal.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Calendar
    # ==============================================
    # Listings without their own timezone fall back to this one
    default_timezone: str = Field(default="Europe/London", alias="DEFAULT_TIMEZONE")
    default_currency: str = Field(default="GBP", alias="DEFAULT_CURRENCY")

    # Largest window the guest availability endpoint will expand
    max_availability_days: int = Field(default=120, alias="MAX_AVAILABILITY_DAYS")

    # Pan gesture threshold: one day column in px
    timeline_day_width_px: int = Field(default=72, alias="TIMELINE_DAY_WIDTH_PX")
    timeline_slot_minutes: int = Field(default=30, alias="TIMELINE_SLOT_MINUTES")

    # ==============================================
    # Rate limiting (slowapi)
    # ==============================================
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")

    # ==============================================
    # External feeds (iCal)
    # ==============================================
    ical_timeout_seconds: int = Field(default=20, alias="ICAL_TIMEOUT_SECONDS")

    # ==============================================
    # Quoting
    # ==============================================
    service_fee_rate: float = Field(default=0.06, alias="SERVICE_FEE_RATE")
    card_percent_fee: float = Field(default=0.029, alias="CARD_PERCENT_FEE")
    card_fixed_fee_minor: int = Field(default=20, alias="CARD_FIXED_FEE_MINOR")

    @field_validator('default_timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA zone names at startup"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator('card_percent_fee')
    @classmethod
    def validate_card_fee(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("CARD_PERCENT_FEE must be in [0, 1)")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        origins = []
        seen = set()
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in seen:
                seen.add(origin)
                origins.append(origin)

        return origins or ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
