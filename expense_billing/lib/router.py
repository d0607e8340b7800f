"""
Event routing.

A static table maps each event type to the payload model it is validated
against and the ReconciliationService method that handles it. Adding an
event type is one ROUTES entry.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

from pydantic import ValidationError

from ..errors import MalformedEventError
from ..models import (
    CustomerPayload,
    InvoicePayload,
    SubscriptionPayload,
    TypedEvent,
    WebhookEnvelope,
)
from ..models.schemas import StripeObject
from .reconciliation import ReconciliationService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    payload_model: Type[StripeObject]
    handler: Optional[Callable]  # ReconciliationService method; None = acknowledged no-op


ROUTES: Dict[str, Route] = {
    # Subscription lifecycle
    "customer.subscription.created": Route(SubscriptionPayload, ReconciliationService.subscription_created),
    "customer.subscription.updated": Route(SubscriptionPayload, ReconciliationService.subscription_updated),
    "customer.subscription.deleted": Route(SubscriptionPayload, ReconciliationService.subscription_deleted),
    "customer.subscription.trial_will_end": Route(SubscriptionPayload, ReconciliationService.trial_will_end),
    # Payments
    "invoice.paid": Route(InvoicePayload, ReconciliationService.invoice_paid),
    "invoice.payment_failed": Route(InvoicePayload, ReconciliationService.invoice_payment_failed),
    "invoice.finalized": Route(InvoicePayload, ReconciliationService.invoice_finalized),
    # Customers are linked during checkout
    "customer.created": Route(CustomerPayload, None),
    "customer.updated": Route(CustomerPayload, None),
}


class EventRouter:
    def __init__(self, service: ReconciliationService, routes: Optional[Dict[str, Route]] = None):
        self.service = service
        self.routes = routes if routes is not None else ROUTES

    def parse(self, envelope: WebhookEnvelope) -> Optional[TypedEvent]:
        """
        Validate the payload for the envelope's event type.

        Returns None for event types with no route.

        Raises:
            MalformedEventError: payload does not match the event's model
        """
        route = self.routes.get(envelope.type)
        if route is None:
            return None

        try:
            payload = route.payload_model.model_validate(envelope.data.object)
        except ValidationError as e:
            raise MalformedEventError(
                f"Invalid {envelope.type} payload: {e.error_count()} validation error(s)"
            ) from e

        return TypedEvent(id=envelope.id, type=envelope.type, payload=payload)

    def dispatch(self, event: TypedEvent) -> None:
        route = self.routes[event.type]
        if route.handler is None:
            logger.info(f"Acknowledged {event.type} ({event.id}), no action needed")
            return
        route.handler(self.service, event.payload)
