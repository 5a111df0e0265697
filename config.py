"""
Runtime configuration for Krishi Mitra

Settings are read from the environment (and .env) once, at startup, and
handed to the storage factory and the app. Nothing else reads os.environ.
"""
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration, read from environment variables / .env."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # --- Database (MongoDB) ---
    database_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("MONGODB_URI", "DATABASE_URL", "database_url"))
    database_name: str = "krishi_mitra"
    # fail at startup instead of falling back to in-memory storage
    require_database: bool = False
    db_timeout_ms: int = 5000

    # --- API ---
    environment: str = Field("production", validation_alias=AliasChoices("APP_ENV", "environment"))
    log_level: str = "INFO"
    port: int = 8000

    # --- External services ---
    openweather_api_key: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev")
