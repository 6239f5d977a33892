"""
Supabase client configuration and utilities
"""
from supabase import create_client, Client
from typing import Optional
import logging

from app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Supabase client manager"""

    client: Optional[Client] = None


supabase_client = SupabaseClient()


def get_supabase(settings: Optional[Settings] = None) -> Client:
    """Get or create Supabase client"""
    settings = settings or default_settings
    if supabase_client.client is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set for direct data access")
        try:
            supabase_client.client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_KEY
            )
            logger.info("✅ Connected to Supabase")
        except Exception as e:
            logger.error(f"❌ Failed to connect to Supabase: {e}")
            raise

    return supabase_client.client
