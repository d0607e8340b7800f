#!/usr/bin/env python3
"""
Operator utilities for billing reconciliation.

Commands:
    python scripts/admin.py stats              - Subscription and invoice counts
    python scripts/admin.py alerts             - Recent webhook security alerts
    python scripts/admin.py audit ORG_ID       - Audit trail for an organization
    python scripts/admin.py resync SUB_ID      - Reconcile a subscription from Stripe

Unresolvable customers/plans are acknowledged to Stripe and only leave an
alert row. Check `alerts`, fix the mapping, then `resync` the subscription.
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv


def get_repository():
    """Get repository over the service role client."""
    load_dotenv()

    from expense_billing.db import get_billing_repository

    return get_billing_repository()


def cmd_stats(repository, args):
    """Show subscription statistics."""
    client = repository.client
    print("\n📊 Billing Statistics")
    print("=" * 40)

    for status in ["trialing", "active", "past_due", "canceled", "unpaid"]:
        result = (
            client.table("organization_subscriptions")
            .select("id", count="exact")
            .eq("status", status)
            .execute()
        )
        print(f"  {status:10} {result.count or 0:5}")

    invoices = client.table("subscription_invoices").select("id", count="exact").execute()
    open_invoices = (
        client.table("subscription_invoices")
        .select("id", count="exact")
        .eq("status", "open")
        .execute()
    )
    print(f"Invoices: {invoices.count or 0} ({open_invoices.count or 0} open)")


def _print_entries(entries):
    for entry in entries:
        created = (entry.get("created_at") or "")[:19]
        org = entry.get("organization_id") or "-"
        details = json.dumps(entry.get("action_details") or {}, default=str)
        print(f"  {created}  {entry['action']:40} {org}")
        print(f"      {details[:120]}")


def cmd_alerts(repository, args):
    """List recent security alerts (rejections and unresolvable references)."""
    from expense_billing.lib.audit import SECURITY_ALERT_PREFIX

    print("\n🚨 Recent Security Alerts")
    print("=" * 60)
    entries = repository.list_audit_entries(action_prefix=SECURITY_ALERT_PREFIX, limit=args.limit)
    if not entries:
        print("  None")
    _print_entries(entries)


def cmd_audit(repository, args):
    """Show the audit trail for one organization."""
    print(f"\n📜 Audit Trail: {args.organization_id}")
    print("=" * 60)
    _print_entries(repository.list_audit_entries(organization_id=args.organization_id, limit=args.limit))


def cmd_resync(repository, args):
    """Pull a subscription from Stripe and reconcile it."""
    from expense_billing.lib import AuditLogger, EntityResolver, ReconciliationService
    from expense_billing.lib.resync import resync_subscription

    resolver = EntityResolver(repository, free_plan_name=os.environ.get("FREE_PLAN_NAME", "free"))
    service = ReconciliationService(repository, resolver, AuditLogger(repository))

    payload = resync_subscription(args.subscription_id, service)
    print(f"✓ {payload.id} reconciled (status: {payload.status})")


def main():
    parser = argparse.ArgumentParser(description="Billing admin utilities")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Stats command
    subparsers.add_parser("stats", help="Show subscription statistics")

    # Alerts command
    alerts_parser = subparsers.add_parser("alerts", help="List recent security alerts")
    alerts_parser.add_argument("--limit", type=int, default=20)

    # Audit command
    audit_parser = subparsers.add_parser("audit", help="Show an organization's audit trail")
    audit_parser.add_argument("organization_id", help="Organization ID")
    audit_parser.add_argument("--limit", type=int, default=50)

    # Resync command
    resync_parser = subparsers.add_parser("resync", help="Reconcile a subscription from Stripe")
    resync_parser.add_argument("subscription_id", help="Stripe subscription ID (sub_...)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    repository = get_repository()

    commands = {
        "stats": cmd_stats,
        "alerts": cmd_alerts,
        "audit": cmd_audit,
        "resync": cmd_resync,
    }

    commands[args.command](repository, args)


if __name__ == "__main__":
    main()
