"""
Advisor Sync - Supabase Client.

Low-level database access. All remote queries go through here.
"""

from supabase import Client, create_client

from advisor_sync.config import settings

# Singleton client instance
_client: Client | None = None


def get_client() -> Client:
    """
    Get the Supabase client.

    Uses singleton pattern to reuse connection.
    """
    global _client

    if _client is None:
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise RuntimeError(
                "Supabase is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        _client = create_client(
            settings.supabase_url,
            settings.supabase_anon_key,
        )

    return _client
