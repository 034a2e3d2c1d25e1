"""Application configuration management."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Application
    app_name: str = Field(default="SiteTrack", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Conversation
    default_currency: str = Field(default="UGX", alias="DEFAULT_CURRENCY")
    dashboard_url: str = Field(default="https://app.sitetrack.example", alias="DASHBOARD_URL")
    budget_warning_ratio: float = Field(default=0.8, ge=0.0, le=1.0, alias="BUDGET_WARNING_RATIO")
    category_keywords_path: Optional[str] = Field(default=None, alias="CATEGORY_KEYWORDS_PATH")

    # AI fallback extraction
    ai_fallback_enabled: bool = Field(default=False, alias="AI_FALLBACK_ENABLED")
    ai_fallback_threshold: float = Field(default=0.7, ge=0.0, le=1.0, alias="AI_FALLBACK_THRESHOLD")
    ai_clarification_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, alias="AI_CLARIFICATION_THRESHOLD"
    )
    ai_extractor_url: str = Field(default="http://localhost:8080", alias="AI_EXTRACTOR_URL")
    ai_extractor_timeout: float = Field(default=5.0, alias="AI_EXTRACTOR_TIMEOUT")

    @field_validator("ai_extractor_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """The extraction call must stay bounded."""
        if v <= 0 or v > 5.0:
            raise ValueError("AI_EXTRACTOR_TIMEOUT must be in (0, 5] seconds")
        return v

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()


# Global settings instance
settings = Settings()
