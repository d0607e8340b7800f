"""
Manual reconciliation from Stripe.

Webhooks whose customer or plan could not be resolved are acknowledged
and only leave a security_alert_webhook_missing_* audit row. Once the
mapping is fixed (customer id linked, plan price ids filled in), an
operator pulls the subscription's current state from Stripe and runs it
through the normal update handler.
"""

import logging
import os
from typing import Optional

import stripe

from ..models import SubscriptionPayload
from .reconciliation import ReconciliationService


logger = logging.getLogger(__name__)


def fetch_subscription(subscription_id: str, api_key: Optional[str] = None) -> SubscriptionPayload:
    """Retrieve a subscription from Stripe as a webhook-shaped payload."""
    stripe.api_key = api_key or os.environ.get("STRIPE_SECRET_KEY")
    if not stripe.api_key:
        raise ValueError("STRIPE_SECRET_KEY must be set to resync from Stripe")

    subscription = stripe.Subscription.retrieve(subscription_id)
    return SubscriptionPayload.model_validate(subscription.to_dict())


def resync_subscription(
    subscription_id: str,
    service: ReconciliationService,
    api_key: Optional[str] = None,
) -> SubscriptionPayload:
    """
    Reconcile one subscription with Stripe's current state.

    Creates the row if it was never created, otherwise updates it.
    Unresolvable references raise instead of being swallowed - the
    operator is the one who needs to see them.
    """
    payload = fetch_subscription(subscription_id, api_key)
    logger.info(f"Resyncing {subscription_id} (status={payload.status}, customer={payload.customer})")

    if payload.status in ("canceled", "incomplete_expired"):
        service.subscription_deleted(payload)
    else:
        service.subscription_updated(payload)
    return payload
