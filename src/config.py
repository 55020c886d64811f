"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Weighttrack"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str  # postgres connection string for asyncpg
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20

    # --- Primary auth (Supabase-issued JWTs) ---
    supabase_jwt_secret: str
    supabase_jwt_audience: str = "authenticated"

    # --- Withings ---
    withings_client_id: str
    withings_client_secret: str
    withings_redirect_uri: str  # must exactly match the URI registered with Withings
    withings_api_base: str = "https://wbsapi.withings.net"
    withings_authorize_url: str = "https://account.withings.com/oauth2_user/authorize2"
    withings_scope: str = "user.info,user.metrics"
    withings_http_timeout_seconds: float = 30.0
    withings_state_ttl_seconds: int = 600  # lifetime of the signed OAuth state

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
