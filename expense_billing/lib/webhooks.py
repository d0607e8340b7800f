"""
Webhook processing pipeline.

    raw body + signature header
      -> signature verification      (401 on failure)
      -> envelope + payload parsing  (400 on failure)
      -> replay guard                (409 on repeat)
      -> router -> handler           (200, or 500 for the provider to retry)

Security rejections are written to the audit trail before the error is
raised. Unresolvable customers/plans are alerted and acknowledged so the
provider does not retry an event that can never succeed.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from pydantic import ValidationError

from ..errors import (
    AuthenticationError,
    MalformedEventError,
    ReplayError,
    UnresolvableReferenceError,
    VerificationError,
)
from ..models import WebhookEnvelope
from .audit import AuditLogger
from .reconciliation import ReconciliationService
from .replay import ReplayGuard, ReplayStore
from .resolver import EntityResolver
from .router import EventRouter
from .signature import verify_signature


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    handled: bool = True
    resolved: bool = True

    def body(self) -> dict:
        body = {"received": True}
        if not self.handled:
            body["handled"] = False
        if not self.resolved:
            body["resolved"] = False
        return body


class WebhookProcessor:
    def __init__(
        self,
        secret: str,
        router: EventRouter,
        replay_guard: ReplayGuard,
        audit: AuditLogger,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("Webhook secret is required")
        self.secret = secret
        self.router = router
        self.replay_guard = replay_guard
        self.audit = audit
        self._clock = clock

    def process(
        self,
        payload: Union[bytes, str],
        signature: Optional[str],
        client_ip: str = "unknown",
    ) -> WebhookOutcome:
        """
        Run one delivery through the pipeline.

        Raises:
            AuthenticationError: no signature header
            VerificationError: signature or timestamp invalid
            MalformedEventError: body is not a valid event
            ReplayError: event id already processed
            PersistenceError: data store failure (guard entry released)
        """
        if not signature:
            self.audit.security_alert("webhook_missing_signature", {
                "has_signature": False,
                "ip": client_ip,
            })
            raise AuthenticationError("Missing signature")

        result = verify_signature(payload, signature, self.secret, now=self._clock())
        if not result.valid:
            self.audit.security_alert("webhook_verification_failed", {
                "error_code": result.error_code.value,
                "error_message": result.error_message,
                "ip": client_ip,
            })
            raise VerificationError(result.error_code.value, result.error_message)

        try:
            envelope = WebhookEnvelope.model_validate_json(payload)
        except ValidationError as e:
            raise MalformedEventError(f"Invalid event envelope: {e.error_count()} validation error(s)") from e

        event = self.router.parse(envelope)

        if self.replay_guard.check_and_mark(envelope.id):
            self.audit.security_alert("webhook_replay_attack", {
                "event_id": envelope.id,
                "event_type": envelope.type,
                "ip": client_ip,
            })
            raise ReplayError(envelope.id)

        logger.info(f"Processing webhook: {envelope.type} ({envelope.id})")

        if event is None:
            logger.info(f"Unhandled event type: {envelope.type} ({envelope.id})")
            return WebhookOutcome(envelope.id, envelope.type, handled=False)

        try:
            self.router.dispatch(event)
        except UnresolvableReferenceError as e:
            self.audit.security_alert(f"webhook_missing_{e.kind}", {
                "event_id": envelope.id,
                "event_type": envelope.type,
                "reference": e.reference,
                "reason": e.message,
                **e.details,
            })
            return WebhookOutcome(envelope.id, envelope.type, resolved=False)
        except Exception:
            # Let the provider's retry through the guard
            self.replay_guard.release(envelope.id)
            raise

        return WebhookOutcome(envelope.id, envelope.type)


def create_webhook_processor(
    secret: str,
    repository,
    replay_store: Optional[ReplayStore] = None,
    free_plan_name: str = "free",
) -> WebhookProcessor:
    """Wire the pipeline around a repository."""
    audit = AuditLogger(repository)
    resolver = EntityResolver(repository, free_plan_name=free_plan_name)
    service = ReconciliationService(repository, resolver, audit)
    return WebhookProcessor(
        secret=secret,
        router=EventRouter(service),
        replay_guard=ReplayGuard(store=replay_store),
        audit=audit,
    )
