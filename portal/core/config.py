from functools import lru_cache
import os
from typing import List, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    debug: bool = True
    project_name: str = "Portal Admin API"
    environment: str = "development"

    # Raw CORS origins string - read from env
    cors_origins_raw: Optional[str] = Field(
        default=None,
        alias="CORS_ORIGINS"
    )

    @computed_field
    @property
    def backend_cors_origins(self) -> List[str]:
        """Parse CORS_ORIGINS from environment variable (comma-separated string)."""
        raw = self.cors_origins_raw
        if not raw:
            raw = os.environ.get("CORS_ORIGINS") or os.environ.get("BACKEND_CORS_ORIGINS") or ""

        if not raw or not raw.strip():
            return []

        origins = []
        for origin in raw.split(","):
            origin = origin.strip()
            if origin:
                # Normalize protocol to lowercase (Https -> https, Http -> http)
                if origin.lower().startswith("https://"):
                    origin = "https://" + origin[8:]
                elif origin.lower().startswith("http://"):
                    origin = "http://" + origin[7:]
                origins.append(origin)
        return origins

    database_url: str  # Required - no default, must be set in .env

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 12

    # Admin access restrictions
    admin_allowed_email_domains_raw: Optional[str] = Field(
        default=None,
        alias="ADMIN_ALLOWED_EMAIL_DOMAINS",
    )
    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"  # e.g. redis://cache:6379/0 for multi-worker deployments

    # Failed sign-in lockout, per email
    login_lockout_attempts: int = 5
    login_lockout_minutes: int = 15
    login_attempt_window_minutes: int = 60

    # Impersonation
    impersonation_default_duration_minutes: int = 60
    impersonation_min_duration_minutes: int = 1
    impersonation_max_duration_minutes: int = 480  # 8 hours
    impersonation_max_active_per_admin: int = 3  # 0 disables the check
    impersonation_sweep_interval_minutes: int = 5

    # Admin session idle timeout (in-memory tracker)
    session_timeout_minutes: int = 30
    session_warning_minutes: int = 5

    # Audit log. Clearing is a maintenance/test-only capability; production stays append-only.
    audit_clear_enabled: bool = False

    scheduler_enabled: bool = True

    @computed_field
    @property
    def admin_allowed_email_domains(self) -> List[str]:
        """Domains allowed to sign in to the admin portal. Empty means no restriction."""
        raw = self.admin_allowed_email_domains_raw or ""
        return [d.strip().lower().lstrip("@") for d in raw.split(",") if d.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
