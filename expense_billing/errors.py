"""
Error taxonomy for webhook processing.

Each error carries the HTTP status the webhook route answers with.
UnresolvableReferenceError is the exception: it is reported as an alert
and acknowledged with 200 so the provider stops retrying.
"""

from typing import Optional


class ConfigurationError(RuntimeError):
    """Required configuration is missing at startup."""


class WebhookError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class AuthenticationError(WebhookError):
    """Signature header missing."""
    status_code = 400


class MalformedEventError(WebhookError):
    """Envelope or payload failed to parse."""
    status_code = 400


class VerificationError(WebhookError):
    status_code = 401

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code


class ReplayError(WebhookError):
    status_code = 409

    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} already processed")
        self.event_id = event_id


class UnresolvableReferenceError(WebhookError):
    status_code = 200

    def __init__(
        self,
        kind: str,
        reference: Optional[str],
        message: str = "",
        details: Optional[dict] = None,
    ):
        super().__init__(message or f"No {kind} found for {reference}")
        self.kind = kind
        self.reference = reference
        self.details = details or {}


class PersistenceError(WebhookError):
    status_code = 500
