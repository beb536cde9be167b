"""
Product Category Engine - Configuration Management with pydantic-settings

Provides validated, type-safe configuration from environment variables.
All settings can be overridden via environment variables or .env file.
"""
from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with validation.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # ===================
    # Application Settings
    # ===================
    PROJECT_NAME: str = "Product Category Engine"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="deployment environment")

    # ===================
    # Database Settings
    # ===================
    DATABASE_URL: str = Field(
        default="sqlite:///./product_categories.db",
        description="SQLAlchemy database URL"
    )
    DB_ECHO: bool = Field(default=False, description="Log every SQL statement")

    @property
    def database_url(self) -> str:
        """Database URL used to build the engine."""
        return self.DATABASE_URL

    # ===================
    # CORS Settings
    # ===================
    ALLOWED_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse comma-separated string to list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ===================
    # Redis / Category Cache
    # ===================
    REDIS_URL: Optional[str] = Field(
        default=None,
        description="Redis URL for the category cache (unset disables caching)"
    )
    CACHE_PREFIX: Optional[str] = Field(
        default=None,
        description="Cache key prefix (defaults to pc_{environment}_)"
    )
    CACHE_TTL_SECONDS: int = Field(default=3600, ge=1, description="Category cache TTL")
    CACHE_SOCKET_TIMEOUT: float = Field(default=5.0, description="Redis socket timeout in seconds")

    @property
    def cache_prefix(self) -> str:
        """Key prefix isolating cache entries per environment."""
        if self.CACHE_PREFIX:
            return self.CACHE_PREFIX
        return f"pc_{self.ENVIRONMENT.lower()}_"

    # ===================
    # Category Tree Rules
    # ===================
    CATEGORY_MAX_DEPTH: int = Field(
        default=10,
        ge=0,
        description="Deepest depth a category may sit at (root = 0)"
    )
    CATEGORY_PER_PAGE_DEFAULT: int = Field(default=20, ge=1)
    CATEGORY_PER_PAGE_MAX: int = Field(default=100, ge=1, description="Upper bound for per_page")
    CATEGORY_SLUG_RETRY_MAX: int = Field(default=3, ge=1, description="Numbered slug attempts before timestamp suffix")

    # ===================
    # Administrative Tooling
    # ===================
    BACKFILL_CHUNK_SIZE: int = Field(default=1000, ge=1, le=10000)
    SEED_CHUNK_SIZE: int = Field(default=2000, ge=1)
    SEED_PREVIEW_MAX_NODES: int = Field(default=50, ge=1)

    # ===================
    # Logging Settings
    # ===================
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log format: json or text")
    LOG_FILE: Optional[str] = Field(default=None, description="Log file path (optional)")
    AUDIT_LOG_FILE: Optional[str] = Field(default="./logs/audit.log", description="Audit log file path")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process.
    """
    return Settings()


settings = get_settings()
