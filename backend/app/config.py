"""
Vitals Dashboard Configuration
==============================
All environment variables in one place. Pydantic Settings validates
types at startup so misconfigurations fail fast.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Loaded from environment variables or a .env file."""

    # --- Oura Ring API ---
    oura_client_id: str = ""
    oura_client_secret: str = ""
    oura_redirect_uri: str = "http://localhost:8000/api/v1/oura/oauth/callback"
    oura_api_base_url: str = "https://api.ouraring.com"
    oura_token_url: str = "https://api.ouraring.com/oauth/token"
    oura_authorize_url: str = "https://cloud.ouraring.com/oauth/authorize"
    oura_scopes: str = "email personal daily heartrate workout session"
    # Seconds before an upstream call is abandoned
    oura_timeout_seconds: float = 10.0

    # --- Session credentials ---
    jwt_secret_key: str = "change-this-secret-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24
    # Lifetime of the credential handed to the client after the OAuth callback
    oauth_completion_minutes: int = 5

    # --- Single authorized principal ---
    allowed_email: str = "owner@example.com"
    dashboard_password: str = ""
    two_factor_ttl_minutes: int = 10

    # --- App settings ---
    frontend_url: str = "http://localhost:3000"
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
