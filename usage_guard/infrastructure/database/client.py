"""Supabase client singleton for the usage guard.

One service-role client per process; serverless cold starts pay for it once.
"""

from typing import Optional

from supabase import Client, ClientOptions, create_client

from usage_guard.config import config
from usage_guard.core.logging import logger


class SupabaseClient:
    """Singleton Supabase client with lazy initialization."""

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None

    def __new__(cls):
        """Ensure only one instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def client(self) -> Client:
        """Get Supabase client, initializing if needed.

        Raises:
            RuntimeError: if SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is missing
        """
        if self._client is None:
            url = config.supabase_url()
            key = config.supabase_service_role_key()

            if not url or not key:
                raise RuntimeError(
                    "Supabase not configured. Set SUPABASE_URL and "
                    "SUPABASE_SERVICE_ROLE_KEY environment variables."
                )

            # Service-role client: never persist or refresh an end-user session
            options = ClientOptions(persist_session=False, auto_refresh_token=False)
            self._client = create_client(url, key, options=options)
            logger.info("supabase_client_initialized", url=url)

        return self._client

    def is_configured(self) -> bool:
        """Check if Supabase is properly configured."""
        return config.is_configured()

    @classmethod
    def reset(cls) -> None:
        """Drop the cached client (configuration changed, or between tests)."""
        if cls._instance is not None:
            cls._instance._client = None
