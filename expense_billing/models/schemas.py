"""
Data models for the billing webhook service.
Webhook payloads are validated here before any handler sees them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubscriptionStatus(str, Enum):
    """Internal subscription states."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class InvoiceStatus(str, Enum):
    OPEN = "open"
    PAID = "paid"


def _unwrap_list(value: Any) -> Any:
    # Stripe sends lists as {"object": "list", "data": [...]}
    if isinstance(value, dict) and "data" in value:
        return value["data"]
    return value


class StripeObject(BaseModel):
    """Base for Stripe payloads - unknown fields are kept, not rejected."""
    model_config = ConfigDict(extra="allow")


class Price(StripeObject):
    id: str
    product: Optional[str] = None


class SubscriptionItem(StripeObject):
    price: Price


class SubscriptionPayload(StripeObject):
    """data.object of customer.subscription.* events."""
    id: str
    customer: str
    status: Optional[str] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    items: List[SubscriptionItem] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("items", mode="before")
    @classmethod
    def _items_list(cls, value):
        return _unwrap_list(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value):
        return value or {}

    @property
    def price_id(self) -> Optional[str]:
        return self.items[0].price.id if self.items else None

    @property
    def product_id(self) -> Optional[str]:
        return self.items[0].price.product if self.items else None


class InvoiceLine(StripeObject):
    description: Optional[str] = None
    amount: int = 0


class InvoicePayload(StripeObject):
    """data.object of invoice.* events."""
    id: str
    customer: str
    subscription: Optional[str] = None
    amount_due: int = 0
    amount_paid: int = 0
    currency: str = "usd"
    status: Optional[str] = None
    payment_intent: Optional[str] = None
    charge: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    invoice_pdf: Optional[str] = None
    created: Optional[int] = None
    due_date: Optional[int] = None
    lines: List[InvoiceLine] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("lines", mode="before")
    @classmethod
    def _lines_list(cls, value):
        return _unwrap_list(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value):
        return value or {}

    def line_items(self) -> List[dict]:
        return [{"description": line.description, "amount": line.amount} for line in self.lines]


class CustomerPayload(StripeObject):
    id: str


class EventData(BaseModel):
    object: Dict[str, Any]


class WebhookEnvelope(BaseModel):
    """Outer shape every Stripe event shares."""
    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    data: EventData


@dataclass(frozen=True)
class TypedEvent:
    """An envelope whose payload has been validated for its event type."""
    id: str
    type: str
    payload: StripeObject
