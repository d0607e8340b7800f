"""
Append-only audit trail for billing.

Every reconciliation action and every rejected webhook ends up in
subscription_audit_log. Rows are never updated or deleted.
"""

import json
import logging
from typing import Optional

from ..errors import PersistenceError


logger = logging.getLogger(__name__)

SECURITY_ALERT_PREFIX = "security_alert_"


class AuditLogger:
    def __init__(self, repository):
        self.repository = repository

    def record(
        self,
        action: str,
        details: dict,
        organization_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> None:
        """
        Write one reconciliation audit entry.

        Failures propagate: the webhook answers 500 and the provider
        retries the whole (idempotent) event.
        """
        self.repository.insert_audit_entry({
            "organization_id": organization_id,
            "subscription_id": subscription_id,
            "action": action,
            "action_details": details,
            "performed_by": None,
            "is_system": True,
            "is_super_admin": False,
        })
        logger.info(f"Audit: {action} (organization={organization_id})")

    def security_alert(self, alert_type: str, details: dict) -> None:
        """
        Log and persist a security alert. Alerts have no organization.

        A failed insert is logged but does not change the response of the
        request being rejected.
        """
        logger.error(f"[SECURITY ALERT] {alert_type}: {json.dumps(details, default=str)}")

        try:
            self.repository.insert_audit_entry({
                "organization_id": None,
                "subscription_id": None,
                "action": f"{SECURITY_ALERT_PREFIX}{alert_type}",
                "action_details": details,
                "performed_by": None,
                "is_system": True,
                "is_super_admin": False,
            })
        except PersistenceError:
            logger.exception(f"Failed to persist security alert {alert_type}")
