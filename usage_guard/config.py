"""Configuration management for the usage guard.

Centralizes all environment variable access for better testability and maintainability.
"""

import os
from typing import Optional

DEFAULT_TELEMETRY_SALT = "magic_ai_wizard_default_salt"


def _env(name: str) -> Optional[str]:
    """Read an environment variable, treating blank values as unset."""
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Config:
    """Application configuration loaded from environment variables."""

    # Supabase configuration
    @staticmethod
    def supabase_url() -> Optional[str]:
        """Get Supabase project URL from environment."""
        return _env("SUPABASE_URL")

    @staticmethod
    def supabase_service_role_key() -> Optional[str]:
        """Get Supabase service role key from environment."""
        return _env("SUPABASE_SERVICE_ROLE_KEY")

    @staticmethod
    def supabase_jwt_secret() -> Optional[str]:
        """Get Supabase JWT secret for local token verification."""
        return _env("SUPABASE_JWT_SECRET")

    # Identity
    @staticmethod
    def telemetry_salt() -> str:
        """Get the salt used when hashing client IPs."""
        return _env("TELEMETRY_SALT") or DEFAULT_TELEMETRY_SALT

    # Reset boundary
    @staticmethod
    def usage_reset_tz() -> str:
        """Get the IANA timezone name used for the daily reset boundary."""
        return _env("USAGE_RESET_TZ") or "UTC"

    @staticmethod
    def usage_reset_hour_local() -> int:
        """Get the local hour (0-23) at which daily usage resets."""
        return _env_int("USAGE_RESET_HOUR_LOCAL", 0)

    # Telemetry
    @staticmethod
    def cost_table_json() -> Optional[str]:
        """Get the optional JSON cost table override."""
        return _env("COST_TABLE_JSON")

    @staticmethod
    def telemetry_queue_size() -> int:
        """Get the maximum number of buffered telemetry events."""
        return max(1, _env_int("TELEMETRY_QUEUE_SIZE", 1000))

    @staticmethod
    def anomaly_unit_threshold() -> int:
        """Get the single-call unit cost that raises an anomaly flag."""
        return max(1, _env_int("ANOMALY_UNIT_THRESHOLD", 50))

    # Rate limiting
    @staticmethod
    def rate_limit_backend() -> str:
        """Get the burst limiter backend ("memory" or "supabase")."""
        return (_env("RATE_LIMIT_BACKEND") or "memory").lower()

    @staticmethod
    def rate_limit_max_buckets() -> int:
        """Get the bound on in-memory rate limit buckets."""
        return max(100, _env_int("RATE_LIMIT_MAX_BUCKETS", 10000))

    # Environment
    @staticmethod
    def is_production() -> bool:
        """Check whether debug details must be hidden from responses."""
        app_env = (_env("APP_ENV") or "").lower()
        vercel_env = (_env("VERCEL_ENV") or "").lower()
        return "production" in (app_env, vercel_env)

    # Helper methods
    @staticmethod
    def is_configured() -> bool:
        """Check if all required configuration is present."""
        return all([
            Config.supabase_url(),
            Config.supabase_service_role_key(),
        ])

    @staticmethod
    def get_missing_config() -> list[str]:
        """Get list of missing required configuration keys."""
        missing = []
        if not Config.supabase_url():
            missing.append("SUPABASE_URL")
        if not Config.supabase_service_role_key():
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        return missing


# Singleton instance for easy access
config = Config()
