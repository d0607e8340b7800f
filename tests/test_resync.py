#!/usr/bin/env python3
"""
Stripe Resync Test

Validates manual reconciliation of one subscription:
1. Live subscription -> created/updated through the normal handlers
2. Canceled subscription -> organization moved to the free plan
3. No Stripe API key -> refused before any call

Stripe calls are mocked.

Usage:
    pytest tests/test_resync.py -v
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from expense_billing.lib import AuditLogger, EntityResolver, ReconciliationService
from expense_billing.lib.resync import fetch_subscription, resync_subscription
from mock_billing import NOW, seeded_repository, subscription_object


def make_service():
    repo = seeded_repository()
    service = ReconciliationService(
        repo,
        EntityResolver(repo),
        AuditLogger(repo),
        clock=lambda: datetime.fromtimestamp(NOW, tz=timezone.utc),
    )
    return service, repo


def stripe_subscription(**overrides):
    obj = subscription_object(
        object="subscription",
        items={"object": "list", "data": [{"id": "si_1", "price": {"id": "price_monthly", "product": "prod_pro"}}]},
        **overrides,
    )
    mock = MagicMock()
    mock.to_dict.return_value = obj
    return mock


def test_fetch_subscription_validates_payload():
    with patch("stripe.Subscription.retrieve", return_value=stripe_subscription()) as retrieve:
        payload = fetch_subscription("sub_1", api_key="sk_test_123")

    retrieve.assert_called_once_with("sub_1")
    assert payload.id == "sub_1"
    assert payload.price_id == "price_monthly"
    assert payload.product_id == "prod_pro"


def test_resync_creates_missing_row():
    service, repo = make_service()
    with patch("stripe.Subscription.retrieve", return_value=stripe_subscription(status="active")):
        resync_subscription("sub_1", service, api_key="sk_test_123")

    row = repo.subscriptions["org_42"]
    assert row["plan_id"] == "pro"
    assert row["status"] == "active"
    assert repo.actions() == ["subscription_created"]


def test_resync_updates_existing_row():
    service, repo = make_service()
    with patch("stripe.Subscription.retrieve", return_value=stripe_subscription(status="trialing")):
        resync_subscription("sub_1", service, api_key="sk_test_123")
    with patch("stripe.Subscription.retrieve", return_value=stripe_subscription(status="past_due")):
        resync_subscription("sub_1", service, api_key="sk_test_123")

    assert len(repo.subscriptions) == 1
    assert repo.subscriptions["org_42"]["status"] == "past_due"
    assert repo.actions() == ["subscription_created", "status_changed"]


@pytest.mark.parametrize("status", ["canceled", "incomplete_expired"])
def test_resync_ended_subscription(status):
    service, repo = make_service()
    with patch("stripe.Subscription.retrieve", return_value=stripe_subscription(status=status)):
        resync_subscription("sub_1", service, api_key="sk_test_123")

    assert repo.subscriptions["org_42"]["plan_id"] == "plan_free"
    assert repo.actions() == ["subscription_ended"]


def test_resync_requires_api_key(monkeypatch):
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    monkeypatch.setattr("stripe.api_key", None)
    with patch("stripe.Subscription.retrieve") as retrieve:
        with pytest.raises(ValueError):
            fetch_subscription("sub_1")
    retrieve.assert_not_called()


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
