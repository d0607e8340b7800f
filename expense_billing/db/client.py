"""
Supabase access for the webhook service and operator scripts.

Everything here runs with the service role key: webhooks carry no user
session, so Row Level Security does not apply to these writes.
"""

import os
from functools import lru_cache

from supabase import Client, create_client

from ..errors import ConfigurationError
from .repository import SupabaseBillingRepository


@lru_cache()
def get_admin_client() -> Client:
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get("SUPABASE_SERVICE_KEY")
    if not url or not key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    return create_client(url, key)


def get_billing_repository() -> SupabaseBillingRepository:
    """Repository over the cached service-role client."""
    return SupabaseBillingRepository(get_admin_client())
