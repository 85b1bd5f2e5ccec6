"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "SportApp Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str  # postgres connection string for asyncpg
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20
    db_command_timeout: float = 30.0

    # --- Auth ---
    jwt_secret: str  # shared with the auth service that issues tokens
    jwt_algorithm: str = "HS256"

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    # --- Offline sync ---
    sync_batch_size: int = 50
    sync_batch_timeout_seconds: float = 25.0  # stays under the client's request timeout
    sync_conflict_list_limit: int = 10
    sync_cleanup_default_days: int = 7

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
