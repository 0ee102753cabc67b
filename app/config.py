from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application Config
    PROJECT_NAME: str = Field(default="BloodStock Ledger API")
    PROJECT_DESCRIPTION: str = Field(
        default="Blood stock ledger and request fulfillment service"
    )
    VERSION: str = Field(default="1.0.0")
    API_PREFIX: str = Field(default="/api")
    DOCS_URL: str = Field(default="/docs")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=True)

    # Database
    DATABASE_URL: str = Field(default="")
    DATABASE_POOL_SIZE: int = Field(default=5)
    DATABASE_MAX_OVERFLOW: int = Field(default=10)
    DATABASE_POOL_RECYCLE: int = Field(default=1800)

    # Development database fallback
    DEV_DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./db.sqlite3")

    # CORS Configuration
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost",
        ]
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=True)
    LOG_DIR: str = Field(default="logs")

    # Admin back-office
    ENABLE_ADMIN: bool = Field(default=True)
    ADMIN_PATH: str = Field(default="/admin")

    # Stock ledger defaults
    DEFAULT_MINIMUM_THRESHOLD: int = Field(default=10, ge=0)
    DEFAULT_CRITICAL_THRESHOLD: int = Field(default=5, ge=0)
    HISTORY_PAGE_SIZE: int = Field(default=20, ge=1, le=100)

    # Donations
    DONATION_SHELF_LIFE_DAYS: int = Field(default=35, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def model_post_init(self, __context) -> None:
        """Post-initialization validation and setup"""
        # Handle CORS origins from comma-separated string
        if isinstance(self.BACKEND_CORS_ORIGINS, str):
            self.BACKEND_CORS_ORIGINS = [
                origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",")
            ]

        if self.ENVIRONMENT.lower() == "production":
            if not self.DATABASE_URL:
                raise ValueError("DATABASE_URL must be set in production!")
        elif not self.DATABASE_URL:
            self.DATABASE_URL = self.DEV_DATABASE_URL

        if self.DEFAULT_CRITICAL_THRESHOLD >= self.DEFAULT_MINIMUM_THRESHOLD:
            self.DEFAULT_CRITICAL_THRESHOLD = max(0, self.DEFAULT_MINIMUM_THRESHOLD - 1)


# Instantiate settings
settings = Settings()
