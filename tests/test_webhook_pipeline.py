#!/usr/bin/env python3
"""
Webhook Endpoint Test

Validates the HTTP contract of POST /webhooks/stripe:
- 200 accepted (also unknown types and unresolvable customers)
- 400 missing signature / malformed event
- 401 failed verification, with the error code
- 409 replayed event id
- 500 persistence failure, retry accepted afterwards
- 405 for anything but POST

Uses FastAPI's TestClient with the processor dependency overridden to run
against the in-memory repository.

Usage:
    pytest tests/test_webhook_pipeline.py -v
"""

import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from expense_billing.api.routes import webhooks
from expense_billing.config import Settings, get_settings
from expense_billing.errors import ConfigurationError, ReplayError
from expense_billing.lib import (
    AuditLogger,
    EntityResolver,
    EventRouter,
    ReconciliationService,
    ReplayGuard,
    WebhookProcessor,
)
from mock_billing import (
    NOW,
    WEBHOOK_SECRET,
    event_body,
    invoice_object,
    seeded_repository,
    sign,
    subscription_object,
)


URL = "/webhooks/stripe"
CREATED_EVENT = event_body("evt_1", "customer.subscription.created", subscription_object())


def make_processor(repo):
    audit = AuditLogger(repo)
    service = ReconciliationService(
        repo,
        EntityResolver(repo),
        audit,
        clock=lambda: datetime.fromtimestamp(NOW, tz=timezone.utc),
    )
    return WebhookProcessor(
        secret=WEBHOOK_SECRET,
        router=EventRouter(service),
        replay_guard=ReplayGuard(clock=lambda: NOW),
        audit=audit,
        clock=lambda: NOW,
    )


@pytest.fixture
def repo():
    return seeded_repository()


@pytest.fixture
def processor(repo):
    return make_processor(repo)


@pytest.fixture
def client(processor):
    app = FastAPI()
    app.include_router(webhooks.router, prefix="/webhooks")
    app.dependency_overrides[webhooks.get_webhook_processor] = lambda: processor
    return TestClient(app)


def post(client, body, signature=None, **headers):
    if signature is None:
        signature = sign(body)
    if signature:
        headers["stripe-signature"] = signature
    return client.post(URL, content=body, headers=headers)


def reconciliation_actions(repo):
    return [a for a in repo.actions() if not a.startswith("security_alert_")]


# =============================================================================
# Accepted
# =============================================================================

def test_subscription_created_accepted(client, repo):
    response = post(client, CREATED_EVENT)
    assert response.status_code == 200
    assert response.json() == {"received": True}

    row = repo.subscriptions["org_42"]
    assert (row["plan_id"], row["status"], row["billing_cycle"]) == ("pro", "trialing", "monthly")
    assert reconciliation_actions(repo) == ["subscription_created"]


def test_replay_rejected_without_side_effects(client, repo):
    assert post(client, CREATED_EVENT).status_code == 200
    row_before = dict(repo.subscriptions["org_42"])

    response = post(client, CREATED_EVENT)
    assert response.status_code == 409
    assert response.json()["code"] == "replay_detected"
    assert repo.subscriptions["org_42"] == row_before
    assert reconciliation_actions(repo) == ["subscription_created"]
    assert repo.actions()[-1] == "security_alert_webhook_replay_attack"


def test_created_then_updated_one_row(client, repo):
    updated = event_body(
        "evt_2", "customer.subscription.updated", subscription_object(status="active")
    )
    assert post(client, CREATED_EVENT).status_code == 200
    assert post(client, updated).status_code == 200
    assert len(repo.subscriptions) == 1
    assert repo.subscriptions["org_42"]["status"] == "active"


def test_unknown_event_type_acknowledged(client, repo):
    body = event_body("evt_9", "charge.dispute.created", {"id": "dp_1"})
    response = post(client, body)
    assert response.status_code == 200
    assert response.json() == {"received": True, "handled": False}
    assert repo.audit_log == []


def test_customer_events_are_noops(client, repo):
    body = event_body("evt_c", "customer.updated", {"id": "cus_1"})
    response = post(client, body)
    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert repo.audit_log == []


def test_unresolvable_customer_acknowledged_with_alert(client, repo):
    body = event_body("evt_3", "invoice.paid", invoice_object(customer="cus_ghost"))
    response = post(client, body)

    assert response.status_code == 200
    assert response.json() == {"received": True, "resolved": False}
    assert repo.invoices == {}
    alert = repo.audit_log[-1]
    assert alert["action"] == "security_alert_webhook_missing_organization"
    assert alert["organization_id"] is None
    assert alert["action_details"]["reference"] == "cus_ghost"


def test_unresolvable_plan_alert(client, repo):
    obj = subscription_object(items=[{"price": {"id": "price_ghost"}}])
    response = post(client, event_body("evt_4", "customer.subscription.created", obj))
    assert response.status_code == 200
    alert = repo.audit_log[-1]
    assert alert["action"] == "security_alert_webhook_missing_plan"
    assert alert["action_details"]["organization_id"] == "org_42"


# =============================================================================
# Rejected
# =============================================================================

def test_missing_signature(client, repo):
    response = post(client, CREATED_EVENT, signature="")
    assert response.status_code == 400
    assert repo.actions() == ["security_alert_webhook_missing_signature"]
    assert repo.subscriptions == {}


@pytest.mark.parametrize("signature, code", [
    (sign(CREATED_EVENT, secret="whsec_wrong"), "invalid_signature"),
    (sign(CREATED_EVENT, timestamp=NOW - 301), "timestamp_expired"),
    ("v1=abc", "missing_parts"),
])
def test_verification_failures(client, repo, processor, signature, code):
    response = post(client, CREATED_EVENT, signature=signature)
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature", "code": code}
    assert repo.actions() == ["security_alert_webhook_verification_failed"]
    assert repo.audit_log[0]["action_details"]["error_code"] == code
    # Unauthenticated requests never reach the guard
    assert not processor.replay_guard.is_replay("evt_1")


def test_tampered_body(client, repo):
    tampered = CREATED_EVENT.replace(b"trialing", b"active__")
    response = post(client, tampered, signature=sign(CREATED_EVENT))
    assert response.status_code == 401
    assert repo.subscriptions == {}


def test_malformed_json(client):
    body = b"{not json"
    assert post(client, body).status_code == 400


def test_malformed_payload_not_marked(client, processor):
    obj = subscription_object()
    del obj["customer"]
    body = event_body("evt_5", "customer.subscription.created", obj)
    response = post(client, body)
    assert response.status_code == 400
    assert not processor.replay_guard.is_replay("evt_5")


def test_persistence_failure_then_retry(client, repo):
    repo.failing.add("upsert_subscription")
    response = post(client, CREATED_EVENT)
    assert response.status_code == 500
    assert repo.subscriptions == {}

    repo.failing.clear()
    response = post(client, CREATED_EVENT)
    assert response.status_code == 200
    assert repo.subscriptions["org_42"]["plan_id"] == "pro"


def test_get_not_allowed(client):
    assert client.get(URL).status_code == 405


# =============================================================================
# Concurrency
# =============================================================================

def test_concurrent_duplicate_deliveries(processor, repo):
    outcomes = []
    barrier = threading.Barrier(8)

    def deliver():
        barrier.wait()
        try:
            processor.process(CREATED_EVENT, sign(CREATED_EVENT))
            outcomes.append("ok")
        except ReplayError:
            outcomes.append("replay")

    threads = [threading.Thread(target=deliver) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("replay") == 7
    assert len(repo.subscriptions) == 1
    assert reconciliation_actions(repo) == ["subscription_created"]


def test_processor_built_once_across_threads(monkeypatch):
    built = []

    def slow_create(secret, repository, replay_store=None, free_plan_name="free"):
        time.sleep(0.2)
        built.append(secret)
        return make_processor(repository)

    monkeypatch.setattr(webhooks, "_processor", None)
    monkeypatch.setattr(webhooks, "get_settings", lambda: Settings(webhook_secret=WEBHOOK_SECRET))
    monkeypatch.setattr(webhooks, "get_billing_repository", seeded_repository)
    monkeypatch.setattr(webhooks, "create_webhook_processor", slow_create)

    resolved = []
    barrier = threading.Barrier(2)

    def resolve():
        barrier.wait()
        resolved.append(webhooks.get_webhook_processor())

    threads = [threading.Thread(target=resolve) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(built) == 1
    assert resolved[0] is resolved[1]
    assert resolved[0].replay_guard is resolved[1].replay_guard


# =============================================================================
# Startup
# =============================================================================

def test_missing_secret_is_fatal(monkeypatch):
    from expense_billing.api import main

    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
    get_settings.cache_clear()
    try:
        with pytest.raises(ConfigurationError):
            with TestClient(main.app):
                pass
    finally:
        get_settings.cache_clear()


def test_app_starts_with_secret(monkeypatch):
    from expense_billing.api import main

    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    get_settings.cache_clear()
    try:
        with TestClient(main.app) as app_client:
            assert app_client.get("/health").json()["status"] == "healthy"
    finally:
        get_settings.cache_clear()


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
