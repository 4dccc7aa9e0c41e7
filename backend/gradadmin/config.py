from typing import Any, List

from pydantic_settings import BaseSettings


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from a comma-separated string or a list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        return [origin.strip() for origin in v.split(",") if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings, overridable through environment variables or .env"""

    APP_NAME: str = "Graduate Program Administration"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    DATABASE_URL: str = "sqlite:///./gradadmin.db"

    HOST: str = "127.0.0.1"
    PORT: int = 8000

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Comma-separated list of allowed origins
    CORS_ORIGINS: str = "*"

    # Sheets with more data rows than this are imported as a background job.
    IMPORT_SYNC_MAX_ROWS: int = 200
    # Header and instruction rows at the top of every upload sheet.
    IMPORT_PREAMBLE_ROWS: int = 2

    AUDIT_ACTOR: str = "admin"

    @property
    def cors_origins_list(self) -> List[str]:
        return parse_cors_origins(self.CORS_ORIGINS)

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
