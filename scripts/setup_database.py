#!/usr/bin/env python3
"""
Billing schema setup.

Usage:
    python scripts/setup_database.py            - Print the SQL for the Supabase SQL editor
    python scripts/setup_database.py --apply    - Run the SQL over DATABASE_URL
    python scripts/setup_database.py --check    - Report billing tables that are missing

The organizations table usually exists already; CREATE TABLE IF NOT EXISTS
leaves it untouched, but it must have a unique stripe_customer_id column.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv


def print_sql():
    from expense_billing.db import INDEXES_SQL, SCHEMA_SQL

    for title, sql in (("SCHEMA", SCHEMA_SQL), ("INDEXES", INDEXES_SQL)):
        print(f"-- {'=' * 56}")
        print(f"-- {title}")
        print(f"-- {'=' * 56}")
        print(sql)

    print("-- Then fill in stripe_product_id and the price ids on subscription_plans")
    print("-- and point the Stripe webhook endpoint at /webhooks/stripe.")


def apply_sql():
    from expense_billing.db import INDEXES_SQL, SCHEMA_SQL, get_postgres_connection

    conn = get_postgres_connection()
    try:
        with conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
                cur.execute(INDEXES_SQL)
    finally:
        conn.close()
    print("✓ Billing schema applied")


def check_tables() -> int:
    from expense_billing.db import BILLING_TABLES, get_postgres_connection, missing_tables

    conn = get_postgres_connection()
    try:
        missing = missing_tables(conn, BILLING_TABLES)
    finally:
        conn.close()

    for table in BILLING_TABLES:
        mark = "✗" if table in missing else "✓"
        print(f"  {mark} {table}")
    return 1 if missing else 0


def main():
    parser = argparse.ArgumentParser(description="Billing schema setup")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--apply", action="store_true", help="Execute the schema over a direct connection")
    mode.add_argument("--check", action="store_true", help="List missing billing tables")
    args = parser.parse_args()

    load_dotenv()

    if args.apply:
        apply_sql()
    elif args.check:
        return check_tables()
    else:
        print_sql()
    return 0


if __name__ == "__main__":
    sys.exit(main())
