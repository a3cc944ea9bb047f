"""
Supabase client construction for the credit store.

Key principles:
- Credit ledger RPCs use the service role against SECURITY DEFINER functions
- Every PostgREST call carries the credit store timeout
"""

from typing import Tuple
from supabase import create_client, Client, ClientOptions
import structlog

from alset.core.settings import settings

logger = structlog.get_logger(__name__)


def _get_supabase_config() -> Tuple[str, str, str]:
    """
    Retrieve Supabase connection details from settings and ensure they exist.
    """
    url = settings.supabase_url
    anon = settings.supabase_anon_key
    service_key = settings.supabase_service_role_key

    missing = [
        name
        for name, value in (
            ("SUPABASE_URL", url),
            ("SUPABASE_ANON_KEY", anon),
            ("SUPABASE_SERVICE_ROLE_KEY", service_key),
        )
        if not value
    ]

    if missing:
        joined = ", ".join(missing)
        raise RuntimeError(
            f"Supabase configuration missing required values: {joined}. "
            "Ensure .env is populated or environment variables are set."
        )

    return url, anon, service_key


def _client_options() -> ClientOptions:
    return ClientOptions(
        postgrest_client_timeout=settings.credit_store_timeout_seconds,
        auto_refresh_token=False,
        persist_session=False,
    )



def service_client() -> Client:
    """
    Create a service role Supabase client.

    This client bypasses RLS. It is only handed to the credit store, whose
    RPCs are SECURITY DEFINER functions that perform the guarded balance
    update and the ledger insert in a single transaction.

    Returns:
        Supabase client with service role permissions
    """
    url, _, service_key = _get_supabase_config()

    client = create_client(url, service_key, options=_client_options())

    logger.debug("Created service role Supabase client")
    return client
