from .schemas import (
    SubscriptionStatus,
    BillingCycle,
    InvoiceStatus,
    SubscriptionPayload,
    InvoicePayload,
    CustomerPayload,
    WebhookEnvelope,
    TypedEvent,
)

__all__ = [
    "SubscriptionStatus",
    "BillingCycle",
    "InvoiceStatus",
    "SubscriptionPayload",
    "InvoicePayload",
    "CustomerPayload",
    "WebhookEnvelope",
    "TypedEvent",
]
