from .schema import SCHEMA_SQL, INDEXES_SQL, BILLING_TABLES
from .repository import BillingRepository, SupabaseBillingRepository
from .client import get_admin_client, get_billing_repository
from .postgres import get_postgres_connection, get_database_url, missing_tables

__all__ = [
    "SCHEMA_SQL",
    "INDEXES_SQL",
    "BILLING_TABLES",
    "BillingRepository",
    "SupabaseBillingRepository",
    "get_admin_client",
    "get_billing_repository",
    "get_postgres_connection",
    "get_database_url",
    "missing_tables",
]
