"""Supabase client singleton for database operations."""

from functools import lru_cache
from typing import Any

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client, create_client

from src.core.config import get_settings

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


@lru_cache
def get_supabase_client() -> Client:
    """Get cached Supabase client singleton for database operations.

    Uses the secret key for backend operations, which bypasses RLS at the
    PostgREST level. Only use it for server-side operations where the
    caller has already been authorized.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


def is_unique_violation(error: Exception) -> bool:
    """Check whether a PostgREST error is a unique constraint violation."""
    return isinstance(error, PostgrestAPIError) and error.code == UNIQUE_VIOLATION


async def check_database_connection() -> dict[str, Any]:
    """Check if database connection is healthy.

    Performs a simple query to verify database connectivity.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client = get_supabase_client()
        client.table("ticket_types").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
