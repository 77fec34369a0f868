"""
Supabase client wrapper for server-side operations.

Uses the service role key; every query issued through it must filter by
user_id itself (see yusrai.db.automation_store).
"""
import os
from typing import Optional
from supabase import create_client, Client


class SupabaseClient:
    """Singleton Supabase client wrapper."""

    _instance: Optional['SupabaseClient'] = None
    _client: Optional[Client] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            supabase_url = os.getenv("SUPABASE_URL")
            service_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

            if not supabase_url:
                raise ValueError("SUPABASE_URL environment variable is required")
            if not service_key:
                raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")

            try:
                self._client = create_client(supabase_url, service_key)
            except Exception as e:
                raise ValueError(f"Failed to create Supabase client: {str(e)}")

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized. Check environment variables.")
        return self._client

    def table(self, name: str):
        """Shortcut for a PostgREST table query builder."""
        return self.client.table(name)

    def invoke_function(self, function_name: str, body: dict) -> object:
        """Invoke an edge function with a JSON body and return its raw response."""
        return self.client.functions.invoke(function_name, invoke_options={"body": body})


def get_supabase() -> SupabaseClient:
    """Get the Supabase client singleton."""
    return SupabaseClient()
