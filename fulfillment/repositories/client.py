"""
Supabase client initialization.

This module contains *only* the database connection setup. The client is
created from Settings and handed to SupabaseFulfillmentStore; there is no
module-level client object.
"""

from __future__ import annotations

# The dependency is `supabase` (supabase-py): `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]

from fulfillment.config import Settings


def create_supabase_client(settings: Settings) -> Client:
    if not settings.supabase_url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )
    if not settings.supabase_key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )
    return create_client(settings.supabase_url, settings.supabase_key)


__all__ = ["create_supabase_client"]
