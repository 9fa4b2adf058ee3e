from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Static files are always mounted under this prefix; only the root directory is configurable.
UPLOAD_URL_PREFIX = "/uploads"


class Settings(BaseSettings):
    """Server settings loaded from the environment with `.env` overrides."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Service Configuration
    SERVICE_NAME: str = "http-bootstrap"
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    HOST: str = "0.0.0.0"
    PORT: Optional[int] = None

    # Rate Limiting Configuration
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_MS: int = Field(default=60000, gt=0)
    RATE_LIMIT_MAX: int = Field(default=100, gt=0)
    RATE_LIMIT_MAX_BUCKETS: int = Field(default=10000, gt=0)
    RATE_LIMIT_SWEEP_INTERVAL_MS: int = Field(default=60000, gt=0)

    # Static Files Configuration
    UPLOAD_DIR: str = "uploads"

    # CORS Configuration
    CORS_ENABLED: bool = True
    CORS_ORIGINS: List[str] = ["*"]
    CORS_METHODS: List[str] = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
    CORS_HEADERS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = False

    # Request Configuration
    MAX_REQUEST_BODY_SIZE: int = Field(default=102400, gt=0)
    REQUEST_TIMEOUT: Optional[float] = 30

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"


def get_settings() -> Settings:
    return Settings()
