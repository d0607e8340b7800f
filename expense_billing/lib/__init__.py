from .signature import verify_signature, VerificationResult, VerificationErrorCode
from .replay import ReplayGuard, ReplayStore, InMemoryReplayStore, PostgresReplayStore
from .resolver import EntityResolver, map_status
from .audit import AuditLogger
from .reconciliation import ReconciliationService
from .router import EventRouter, ROUTES
from .webhooks import WebhookProcessor, WebhookOutcome, create_webhook_processor

__all__ = [
    "verify_signature",
    "VerificationResult",
    "VerificationErrorCode",
    "ReplayGuard",
    "ReplayStore",
    "InMemoryReplayStore",
    "PostgresReplayStore",
    "EntityResolver",
    "map_status",
    "AuditLogger",
    "ReconciliationService",
    "EventRouter",
    "ROUTES",
    "WebhookProcessor",
    "WebhookOutcome",
    "create_webhook_processor",
]
