"""
Reconciliation handlers - one per Stripe event type.

Subscription lifecycle:
    trialing -> active -> past_due -> (active | canceled | unpaid)
    active -> canceled (deletion event, immediate)
    active + cancel_at_period_end (deferred, status unchanged until deletion)

A deleted subscription is not removed: the organization's row is
rewritten to the free plan.

Every write is keyed by a unique column (organization_id for
subscriptions, stripe_invoice_id for invoices), so a redelivered event
converges on the same rows even after its replay guard entry expired.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Callable, Optional

from ..errors import UnresolvableReferenceError
from ..models import (
    InvoicePayload,
    InvoiceStatus,
    SubscriptionPayload,
    SubscriptionStatus,
)
from .audit import AuditLogger
from .resolver import EntityResolver, map_status


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(timestamp: Optional[int]) -> Optional[str]:
    """Unix seconds to ISO-8601 UTC, None stays None."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class ReconciliationService:
    """Applies Stripe events to organization subscriptions and invoices."""

    def __init__(
        self,
        repository,
        resolver: EntityResolver,
        audit: AuditLogger,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.resolver = resolver
        self.audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Subscription events
    # ------------------------------------------------------------------

    def subscription_created(self, subscription: SubscriptionPayload) -> None:
        logger.info(f"Subscription created: {subscription.id}")

        organization_id = self.resolver.resolve_organization(
            subscription.customer, subscription.metadata
        )

        try:
            plan = self.resolver.resolve_plan(
                subscription.price_id, subscription.product_id, subscription.metadata
            )
        except UnresolvableReferenceError as e:
            e.details.update({
                "organization_id": organization_id,
                "stripe_price_id": subscription.price_id,
            })
            raise

        status = map_status(subscription.status)
        billing_cycle = self.resolver.billing_cycle(plan, subscription.price_id)

        self.repository.upsert_subscription({
            "organization_id": organization_id,
            "plan_id": plan["id"],
            "stripe_subscription_id": subscription.id,
            "stripe_customer_id": subscription.customer,
            "status": status.value,
            "billing_cycle": billing_cycle.value,
            "current_period_start": to_iso(subscription.current_period_start),
            "current_period_end": to_iso(subscription.current_period_end),
            "trial_start": to_iso(subscription.trial_start),
            "trial_end": to_iso(subscription.trial_end),
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "canceled_at": to_iso(subscription.canceled_at),
        })

        self.audit.record(
            "subscription_created",
            {
                "stripe_subscription_id": subscription.id,
                "plan_id": plan["id"],
                "status": status.value,
                "billing_cycle": billing_cycle.value,
            },
            organization_id=organization_id,
        )

    def subscription_updated(self, subscription: SubscriptionPayload) -> None:
        logger.info(f"Subscription updated: {subscription.id}")

        existing = self.repository.get_subscription_by_stripe_id(subscription.id)
        if existing is None:
            # Creation event missed or still in flight
            logger.info(f"No existing subscription for {subscription.id}, treating as new")
            self.subscription_created(subscription)
            return

        status = map_status(subscription.status)
        updates = {
            "status": status.value,
            "current_period_start": to_iso(subscription.current_period_start),
            "current_period_end": to_iso(subscription.current_period_end),
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "canceled_at": to_iso(subscription.canceled_at),
        }

        plan_changed = False
        if subscription.price_id:
            try:
                plan = self.resolver.resolve_plan(subscription.price_id, subscription.product_id)
            except UnresolvableReferenceError:
                logger.warning(
                    f"Price {subscription.price_id} matches no plan, keeping plan {existing['plan_id']}"
                )
            else:
                updates["billing_cycle"] = self.resolver.billing_cycle(plan, subscription.price_id).value
                if plan["id"] != existing["plan_id"]:
                    updates["plan_id"] = plan["id"]
                    plan_changed = True

        self.repository.update_subscription(existing["organization_id"], updates)

        if plan_changed:
            action = "plan_changed"
        elif status.value != existing["status"]:
            action = "status_changed"
        else:
            action = "subscription_updated"

        self.audit.record(
            action,
            {
                "stripe_subscription_id": subscription.id,
                "previous_status": existing["status"],
                "new_status": status.value,
                "previous_plan_id": existing["plan_id"],
                "plan_id": updates.get("plan_id", existing["plan_id"]),
                "cancel_at_period_end": subscription.cancel_at_period_end,
            },
            organization_id=existing["organization_id"],
            subscription_id=existing.get("id"),
        )

    def subscription_deleted(self, subscription: SubscriptionPayload) -> None:
        logger.info(f"Subscription deleted: {subscription.id}")

        organization_id = self.resolver.existing_subscription_organization(subscription)

        current = self.repository.get_subscription_by_organization(organization_id)
        current_stripe_id = current.get("stripe_subscription_id") if current else None
        if current_stripe_id and current_stripe_id != subscription.id:
            # The organization already moved on to a newer subscription
            logger.warning(
                f"Ignoring deletion of {subscription.id}: organization {organization_id} "
                f"is on {current_stripe_id}"
            )
            return

        free_plan = self.resolver.free_plan()

        self.repository.upsert_subscription({
            "organization_id": organization_id,
            "plan_id": free_plan["id"],
            "status": SubscriptionStatus.ACTIVE.value,
            "stripe_subscription_id": None,
            "billing_cycle": None,
            "current_period_start": self._clock().isoformat(),
            "current_period_end": None,
            "cancel_at_period_end": False,
            "canceled_at": None,
        })

        self.audit.record(
            "subscription_ended",
            {
                "stripe_subscription_id": subscription.id,
                "previous_plan_id": current.get("plan_id") if current else None,
                "downgraded_to": free_plan.get("name", self.resolver.free_plan_name),
            },
            organization_id=organization_id,
            subscription_id=current.get("id") if current else None,
        )

    def trial_will_end(self, subscription: SubscriptionPayload) -> None:
        logger.info(f"Trial ending soon: {subscription.id}")

        organization_id = self.resolver.existing_subscription_organization(subscription)

        days_remaining = 0
        if subscription.trial_end:
            seconds_left = subscription.trial_end - self._clock().timestamp()
            days_remaining = math.ceil(seconds_left / SECONDS_PER_DAY)

        # Email is sent by the notification service reading the audit trail
        self.audit.record(
            "trial_ending_soon",
            {
                "stripe_subscription_id": subscription.id,
                "trial_end": to_iso(subscription.trial_end),
                "days_remaining": days_remaining,
            },
            organization_id=organization_id,
        )

    # ------------------------------------------------------------------
    # Invoice events
    # ------------------------------------------------------------------

    def _invoice_row(self, invoice: InvoicePayload, organization_id: str, subscription: Optional[dict]) -> dict:
        row = {
            "organization_id": organization_id,
            "stripe_invoice_id": invoice.id,
            "currency": invoice.currency,
            "invoice_date": to_iso(invoice.created),
            "due_date": to_iso(invoice.due_date),
            "hosted_invoice_url": invoice.hosted_invoice_url,
        }
        if subscription:
            row["subscription_id"] = subscription["id"]
        if invoice.payment_intent:
            row["stripe_payment_intent_id"] = invoice.payment_intent
        return row

    def _already_paid(self, invoice: InvoicePayload) -> Optional[dict]:
        stored = self.repository.get_invoice(invoice.id)
        if stored and stored.get("status") == InvoiceStatus.PAID.value:
            return stored
        return None

    def invoice_paid(self, invoice: InvoicePayload) -> None:
        logger.info(f"Invoice paid: {invoice.id}")

        organization_id = self.resolver.resolve_organization(invoice.customer, invoice.metadata)
        subscription = self.repository.get_subscription_by_organization(organization_id)
        previously_paid = self._already_paid(invoice)

        row = self._invoice_row(invoice, organization_id, subscription)
        row.update({
            "stripe_charge_id": invoice.charge,
            "amount_cents": invoice.amount_paid,
            "amount_paid_cents": invoice.amount_paid,
            "status": InvoiceStatus.PAID.value,
            "paid_at": (
                previously_paid["paid_at"]
                if previously_paid and previously_paid.get("paid_at")
                else self._clock().isoformat()
            ),
            "invoice_pdf_url": invoice.invoice_pdf,
            "line_items": invoice.line_items(),
        })
        self.repository.upsert_invoice(row)

        # Only payment heals past_due short of a fresh subscription.updated
        self.repository.update_subscription(
            organization_id,
            {"status": SubscriptionStatus.ACTIVE.value},
            only_if_status=SubscriptionStatus.PAST_DUE.value,
        )

        self.audit.record(
            "payment_succeeded",
            {
                "invoice_id": invoice.id,
                "amount": invoice.amount_paid,
                "currency": invoice.currency,
                "recovered_from_past_due": bool(
                    subscription and subscription.get("status") == SubscriptionStatus.PAST_DUE.value
                ),
            },
            organization_id=organization_id,
            subscription_id=subscription["id"] if subscription else None,
        )

    def invoice_payment_failed(self, invoice: InvoicePayload) -> None:
        logger.info(f"Payment failed: {invoice.id}")

        organization_id = self.resolver.resolve_organization(invoice.customer, invoice.metadata)
        subscription = self.repository.get_subscription_by_organization(organization_id)

        self.repository.update_subscription(
            organization_id, {"status": SubscriptionStatus.PAST_DUE.value}
        )

        row = self._invoice_row(invoice, organization_id, subscription)
        row["amount_cents"] = invoice.amount_due
        if not self._already_paid(invoice):
            row["status"] = InvoiceStatus.OPEN.value
            row["amount_paid_cents"] = 0
        self.repository.upsert_invoice(row)

        self.audit.record(
            "payment_failed",
            {
                "invoice_id": invoice.id,
                "amount": invoice.amount_due,
                "currency": invoice.currency,
            },
            organization_id=organization_id,
            subscription_id=subscription["id"] if subscription else None,
        )

    def invoice_finalized(self, invoice: InvoicePayload) -> None:
        logger.info(f"Invoice finalized: {invoice.id}")

        organization_id = self.resolver.resolve_organization(invoice.customer, invoice.metadata)
        subscription = self.repository.get_subscription_by_organization(organization_id)

        row = self._invoice_row(invoice, organization_id, subscription)
        row.update({
            "amount_cents": invoice.amount_due,
            "invoice_pdf_url": invoice.invoice_pdf,
            "line_items": invoice.line_items(),
        })
        if not self._already_paid(invoice):
            row["status"] = InvoiceStatus.OPEN.value
            row["amount_paid_cents"] = 0
        self.repository.upsert_invoice(row)

        self.audit.record(
            "invoice_finalized",
            {
                "invoice_id": invoice.id,
                "amount": invoice.amount_due,
                "currency": invoice.currency,
                "line_item_count": len(invoice.lines),
            },
            organization_id=organization_id,
            subscription_id=subscription["id"] if subscription else None,
        )
