"""
Persistence for billing reconciliation.

Only idempotent operations are exposed: reads, upserts keyed by a unique
column, and conditional updates. Handlers never insert subscriptions or
invoices blindly, which is what makes redelivered events safe.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from ..errors import PersistenceError


logger = logging.getLogger(__name__)

ORGANIZATIONS = "organizations"
PLANS = "subscription_plans"
SUBSCRIPTIONS = "organization_subscriptions"
INVOICES = "subscription_invoices"
AUDIT_LOG = "subscription_audit_log"

PLAN_COLUMNS = "id, name, stripe_product_id, stripe_monthly_price_id, stripe_annual_price_id"
SUBSCRIPTION_COLUMNS = (
    "id, organization_id, plan_id, stripe_subscription_id, stripe_customer_id, "
    "status, billing_cycle, current_period_start, current_period_end, "
    "trial_start, trial_end, cancel_at_period_end, canceled_at"
)


class BillingRepository(ABC):
    """What reconciliation needs from the data store."""

    @abstractmethod
    def get_organization_by_customer(self, stripe_customer_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def get_plan(self, plan_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def get_plan_by_name(self, name: str) -> Optional[dict]:
        ...

    @abstractmethod
    def get_plan_by_product(self, stripe_product_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def get_plan_by_price(self, stripe_price_id: str) -> Optional[dict]:
        """Match either the monthly or the annual price id."""

    @abstractmethod
    def get_subscription_by_stripe_id(self, stripe_subscription_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def get_subscription_by_organization(self, organization_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def upsert_subscription(self, row: dict) -> None:
        """Insert or update the single subscription row of row['organization_id']."""

    @abstractmethod
    def update_subscription(
        self, organization_id: str, updates: dict, only_if_status: Optional[str] = None
    ) -> None:
        """Update the organization's row; with only_if_status, only rows in that status."""

    @abstractmethod
    def get_invoice(self, stripe_invoice_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def upsert_invoice(self, row: dict) -> None:
        """Insert or update the invoice keyed by row['stripe_invoice_id']."""

    @abstractmethod
    def insert_audit_entry(self, row: dict) -> None:
        ...

    @abstractmethod
    def list_audit_entries(
        self,
        organization_id: Optional[str] = None,
        action_prefix: Optional[str] = None,
        limit: int = 50,
    ) -> List[dict]:
        ...


def _first(result) -> Optional[dict]:
    return result.data[0] if result.data else None


class SupabaseBillingRepository(BillingRepository):
    """BillingRepository over the Supabase (PostgREST) admin client."""

    def __init__(self, client: Client):
        self.client = client

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error(f"Persistence failure during {action}: {e}")
            raise PersistenceError(f"{action} failed: {e}") from e

    def get_organization_by_customer(self, stripe_customer_id: str) -> Optional[dict]:
        query = (
            self.client.table(ORGANIZATIONS)
            .select("id, stripe_customer_id")
            .eq("stripe_customer_id", stripe_customer_id)
            .limit(1)
        )
        return _first(self._execute(query, "organization lookup"))

    def get_plan(self, plan_id: str) -> Optional[dict]:
        query = self.client.table(PLANS).select(PLAN_COLUMNS).eq("id", plan_id).limit(1)
        return _first(self._execute(query, "plan lookup"))

    def get_plan_by_name(self, name: str) -> Optional[dict]:
        query = self.client.table(PLANS).select(PLAN_COLUMNS).eq("name", name).limit(1)
        return _first(self._execute(query, "plan lookup by name"))

    def get_plan_by_product(self, stripe_product_id: str) -> Optional[dict]:
        query = (
            self.client.table(PLANS)
            .select(PLAN_COLUMNS)
            .eq("stripe_product_id", stripe_product_id)
            .limit(1)
        )
        return _first(self._execute(query, "plan lookup by product"))

    def get_plan_by_price(self, stripe_price_id: str) -> Optional[dict]:
        query = (
            self.client.table(PLANS)
            .select(PLAN_COLUMNS)
            .or_(
                f"stripe_monthly_price_id.eq.{stripe_price_id},"
                f"stripe_annual_price_id.eq.{stripe_price_id}"
            )
            .limit(1)
        )
        return _first(self._execute(query, "plan lookup by price"))

    def get_subscription_by_stripe_id(self, stripe_subscription_id: str) -> Optional[dict]:
        query = (
            self.client.table(SUBSCRIPTIONS)
            .select(SUBSCRIPTION_COLUMNS)
            .eq("stripe_subscription_id", stripe_subscription_id)
            .limit(1)
        )
        return _first(self._execute(query, "subscription lookup"))

    def get_subscription_by_organization(self, organization_id: str) -> Optional[dict]:
        query = (
            self.client.table(SUBSCRIPTIONS)
            .select(SUBSCRIPTION_COLUMNS)
            .eq("organization_id", organization_id)
            .limit(1)
        )
        return _first(self._execute(query, "subscription lookup by organization"))

    def upsert_subscription(self, row: dict) -> None:
        query = self.client.table(SUBSCRIPTIONS).upsert(row, on_conflict="organization_id")
        self._execute(query, "subscription upsert")

    def update_subscription(
        self, organization_id: str, updates: dict, only_if_status: Optional[str] = None
    ) -> None:
        query = self.client.table(SUBSCRIPTIONS).update(updates).eq("organization_id", organization_id)
        if only_if_status is not None:
            query = query.eq("status", only_if_status)
        self._execute(query, "subscription update")

    def get_invoice(self, stripe_invoice_id: str) -> Optional[dict]:
        query = (
            self.client.table(INVOICES)
            .select("id, stripe_invoice_id, status, amount_paid_cents, paid_at")
            .eq("stripe_invoice_id", stripe_invoice_id)
            .limit(1)
        )
        return _first(self._execute(query, "invoice lookup"))

    def upsert_invoice(self, row: dict) -> None:
        query = self.client.table(INVOICES).upsert(row, on_conflict="stripe_invoice_id")
        self._execute(query, "invoice upsert")

    def insert_audit_entry(self, row: dict) -> None:
        self._execute(self.client.table(AUDIT_LOG).insert(row), "audit insert")

    def list_audit_entries(
        self,
        organization_id: Optional[str] = None,
        action_prefix: Optional[str] = None,
        limit: int = 50,
    ) -> List[dict]:
        query = self.client.table(AUDIT_LOG).select(
            "id, organization_id, action, action_details, is_system, created_at"
        )
        if organization_id:
            query = query.eq("organization_id", organization_id)
        if action_prefix:
            query = query.like("action", f"{action_prefix}%")
        query = query.order("created_at", desc=True).limit(limit)
        return self._execute(query, "audit listing").data or []
