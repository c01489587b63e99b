"""
Auth providers.

The engine only needs to know who the current user is. Synchronization
is a no-op whenever current_user_id() returns None.
"""

import logging
from typing import Protocol, runtime_checkable

from supabase import Client

logger = logging.getLogger(__name__)


@runtime_checkable
class AuthProvider(Protocol):
    def current_user_id(self) -> str | None:
        ...


class StaticAuthProvider:
    """Fixed user (CLI runs, tests). None means signed out."""

    def __init__(self, user_id: str | None = None):
        self.user_id = user_id

    def current_user_id(self) -> str | None:
        return self.user_id

    def sign_in(self, user_id: str) -> None:
        self.user_id = user_id

    def sign_out(self) -> None:
        self.user_id = None


class SupabaseAuthProvider:
    """Reads the user from the Supabase client's current session."""

    def __init__(self, client: Client):
        self.client = client

    def current_user_id(self) -> str | None:
        try:
            session = self.client.auth.get_session()
        except Exception as e:
            logger.warning(f"Failed to read auth session: {e}")
            return None
        if session is None or session.user is None:
            return None
        return session.user.id

