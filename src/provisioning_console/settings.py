"""
provisioning_console.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide env-driven settings for the API, the provider clients and the ledger.
- Hide secrets from repr/logging (JWT secret, provider API key).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    One settings object, read from `PROV_*` environment variables.
    Defaults target a local provider stack on port 54321.
    """

    model_config = SettingsConfigDict(env_prefix="PROV_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "provisioning-console"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Console API auth (bearer tokens presented by console callers)
    jwt_alg: str = "HS256"
    jwt_issuer: str = "provisioning-console"
    jwt_audience: str = "provisioning-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    # Provisioning ledger
    database_url: str = "sqlite+aiosqlite:///./provisioning.db"

    # Identity provider + directory store
    identity_base_url: str = "http://localhost:54321"
    directory_base_url: str = "http://localhost:54321"
    provider_api_key: str = Field(default="", repr=False)
    http_timeout_seconds: float = 10.0
    directory_write_timeout_seconds: float = 15.0
    directory_procedure: str = "create_user_in_public"

    # Session handling
    session_expiry_margin_seconds: int = 10
    role_catalog_ttl_seconds: float = 300.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# The identity provider and directory store usually share one host (and one API
# key) but are configured separately so either can be pointed elsewhere.
