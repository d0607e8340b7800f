"""
Webhook handlers.
Only Stripe billing webhooks - subscription and invoice state for
organizations is managed here and nowhere else.

Handles:
- customer.subscription.created / updated / deleted / trial_will_end
- invoice.paid / payment_failed / finalized

Status codes tell Stripe what to do next: 2xx stops retries, 4xx is a
rejection, 5xx is retried (safe because every write is idempotent).
"""

import logging
import threading
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ...config import get_settings
from ...db import get_billing_repository, get_database_url, get_postgres_connection
from ...errors import (
    AuthenticationError,
    MalformedEventError,
    ReplayError,
    VerificationError,
)
from ...lib import PostgresReplayStore, WebhookProcessor, create_webhook_processor


logger = logging.getLogger(__name__)

router = APIRouter()


def _build_webhook_processor() -> WebhookProcessor:
    settings = get_settings()
    replay_store = None
    if settings.replay_store == "postgres":
        get_database_url()  # ConfigurationError without a DSN
        replay_store = PostgresReplayStore(get_postgres_connection)

    return create_webhook_processor(
        secret=settings.webhook_secret,
        repository=get_billing_repository(),
        replay_store=replay_store,
        free_plan_name=settings.free_plan_name,
    )


_processor: Optional[WebhookProcessor] = None
_processor_lock = threading.Lock()


def get_webhook_processor() -> WebhookProcessor:
    """
    The process-wide processor. Its replay guard must be shared by all
    requests, and FastAPI resolves this dependency in the threadpool, so
    construction happens once under a lock.
    """
    global _processor
    with _processor_lock:
        if _processor is None:
            _processor = _build_webhook_processor()
        return _processor


def _client_ip(request: Request) -> str:
    return (
        request.headers.get("cf-connecting-ip")
        or request.headers.get("x-forwarded-for")
        or (request.client.host if request.client else None)
        or "unknown"
    )


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Handle Stripe webhook events.

    The raw body is verified before it is parsed; the synchronous
    pipeline runs in the threadpool so deliveries are processed
    concurrently.

    Responses:
    - 200: accepted (including unknown event types and unresolvable customers)
    - 400: missing signature or malformed event
    - 401: signature verification failed
    - 409: event already processed
    - 500: processing failed, Stripe will retry
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        outcome = await run_in_threadpool(processor.process, payload, signature, _client_ip(request))
    except AuthenticationError:
        return JSONResponse(status_code=400, content={"error": "Missing signature"})
    except MalformedEventError as e:
        return JSONResponse(status_code=400, content={"error": "Invalid payload", "message": e.message})
    except VerificationError as e:
        return JSONResponse(status_code=401, content={"error": "Invalid signature", "code": e.code})
    except ReplayError:
        return JSONResponse(
            status_code=409,
            content={"error": "Event already processed", "code": "replay_detected"},
        )
    except Exception:
        logger.exception("Webhook processing failed")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return outcome.body()
