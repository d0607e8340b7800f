"""
Maps Stripe references onto internal organizations and plans.

Resolution order is always metadata first, lookup second. Checkout sets
organization_id/plan_id metadata, so lookups only matter for objects
created outside our checkout flow (dashboard, API scripts).
"""

import logging
from typing import Optional

from ..errors import UnresolvableReferenceError
from ..models import BillingCycle, SubscriptionStatus


logger = logging.getLogger(__name__)


STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete": SubscriptionStatus.ACTIVE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def map_status(external_status: Optional[str]) -> SubscriptionStatus:
    """Translate a Stripe subscription status. Unknown values map to active."""
    status = STATUS_MAP.get(external_status or "")
    if status is None:
        logger.warning(f"Unrecognized subscription status {external_status!r}, defaulting to active")
        return SubscriptionStatus.ACTIVE
    return status


class EntityResolver:
    def __init__(self, repository, free_plan_name: str = "free"):
        self.repository = repository
        self.free_plan_name = free_plan_name

    def resolve_organization(self, customer_id: Optional[str], metadata: Optional[dict] = None) -> str:
        """
        Find the organization an event belongs to.

        Raises:
            UnresolvableReferenceError: neither metadata nor customer match
        """
        organization_id = (metadata or {}).get("organization_id")
        if organization_id:
            return organization_id

        if customer_id:
            organization = self.repository.get_organization_by_customer(customer_id)
            if organization:
                return organization["id"]

        raise UnresolvableReferenceError(
            "organization", customer_id, f"No organization found for Stripe customer {customer_id}"
        )

    def resolve_plan(
        self,
        price_id: Optional[str],
        product_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        """
        Find the plan for a subscription line item.

        Order: metadata plan_id, product id, then either price id.

        Raises:
            UnresolvableReferenceError: no plan matches
        """
        plan_id = (metadata or {}).get("plan_id")
        if plan_id:
            plan = self.repository.get_plan(plan_id)
            if plan:
                return plan
            logger.warning(f"Metadata plan_id {plan_id} does not exist, falling back to price lookup")

        plan = None
        if product_id:
            plan = self.repository.get_plan_by_product(product_id)
        if plan is None and price_id:
            plan = self.repository.get_plan_by_price(price_id)

        if plan is None:
            raise UnresolvableReferenceError(
                "plan", price_id, f"No matching plan found for Stripe price {price_id}"
            )
        return plan

    @staticmethod
    def billing_cycle(plan: dict, price_id: Optional[str]) -> BillingCycle:
        annual_price_id = plan.get("stripe_annual_price_id")
        if price_id and annual_price_id == price_id:
            return BillingCycle.ANNUAL
        return BillingCycle.MONTHLY

    def free_plan(self) -> dict:
        plan = self.repository.get_plan_by_name(self.free_plan_name)
        if plan is None:
            raise UnresolvableReferenceError(
                "plan", self.free_plan_name, f"Free plan {self.free_plan_name!r} is not configured"
            )
        return plan

    def existing_subscription_organization(self, subscription) -> str:
        """
        Organization for an event about an existing Stripe subscription.

        The stored row is authoritative; metadata and customer are fallbacks
        for rows that were never created.
        """
        existing = self.repository.get_subscription_by_stripe_id(subscription.id)
        if existing:
            return existing["organization_id"]
        return self.resolve_organization(subscription.customer, subscription.metadata)
