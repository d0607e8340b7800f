"""
Direct Postgres access: the shared replay store and schema setup.

PostgREST cannot report whether an insert-if-absent wrote a row, so the
processed_webhook_events table is reached over psycopg2 instead.

DSN lookup order: DATABASE_URL, SUPABASE_DB_URL, then the Supabase
transaction pooler built from SUPABASE_URL + SUPABASE_DB_PASSWORD.
"""

import logging
import os
import re
from typing import Iterable, List, Optional

import psycopg2
from psycopg2.extensions import connection

from ..errors import ConfigurationError


logger = logging.getLogger(__name__)

PROJECT_REF = re.compile(r"https://([^.]+)\.supabase\.co")
POOLER_PORT = 6543


def _pooler_url() -> Optional[str]:
    supabase_url = os.environ.get("SUPABASE_URL", "")
    password = os.environ.get("SUPABASE_DB_PASSWORD")
    match = PROJECT_REF.match(supabase_url)
    if not (match and password):
        return None

    region = os.environ.get("SUPABASE_DB_REGION", "us-east-1")
    return (
        f"postgresql://postgres.{match.group(1)}:{password}"
        f"@aws-0-{region}.pooler.supabase.com:{POOLER_PORT}/postgres"
    )


def get_database_url() -> str:
    """
    Raises:
        ConfigurationError: no DSN can be derived from the environment
    """
    url = os.environ.get("DATABASE_URL") or os.environ.get("SUPABASE_DB_URL") or _pooler_url()
    if not url:
        raise ConfigurationError(
            "Direct database access needs DATABASE_URL, SUPABASE_DB_URL, "
            "or SUPABASE_URL + SUPABASE_DB_PASSWORD"
        )
    return url


def get_postgres_connection() -> connection:
    conn = psycopg2.connect(get_database_url())
    logger.info("Opened direct Postgres connection")
    return conn


def missing_tables(conn: connection, tables: Iterable[str]) -> List[str]:
    """Tables from `tables` that do not exist in the public schema."""
    wanted = list(tables)
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = ANY(%s)
            """,
            (wanted,),
        )
        present = {row[0] for row in cur.fetchall()}
    return [table for table in wanted if table not in present]
