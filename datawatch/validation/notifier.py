from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from datawatch.validation.evaluators import ViolationDescriptor
from datawatch.validation.transports import AlertTransport, ViolationAlert

if TYPE_CHECKING:
    from datawatch.store import SqlStore


logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE_NAME = "Workspace"


class NotificationStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class ViolationNotifier:
    """Send one alert per failed rule evaluation. Never retries, never raises."""

    def __init__(self, store: SqlStore, transport: AlertTransport) -> None:
        self._store = store
        self.transport = transport

    def notify(self, rule: dict[str, Any], descriptor: ViolationDescriptor) -> NotificationStatus:
        if not rule.get("notify_on_failure"):
            return NotificationStatus.SKIPPED

        logger.warning('Validation violation for rule "%s": %s', rule["name"], descriptor.type)

        recipients = [email for email in rule.get("notify_emails") or [] if email]
        if not recipients:
            return NotificationStatus.SKIPPED

        workspace_name = self._store.get_workspace_name(rule["workspace_id"]) or DEFAULT_WORKSPACE_NAME
        alert = ViolationAlert(
            to=recipients,
            rule_name=rule["name"],
            severity=rule["severity"],
            workspace_name=workspace_name,
            field_path=rule["field_path"],
            expected_value=descriptor.expected_value,
            actual_value=descriptor.actual_value,
            violation_type=descriptor.type,
        )
        try:
            delivered = self.transport.send_violation_alert(alert)
        except Exception:
            logger.warning("Alert transport raised for rule %s", rule["id"], exc_info=True)
            delivered = False

        if not delivered:
            logger.warning("Failed to deliver validation notification for rule %s", rule["id"])
            return NotificationStatus.FAILED
        return NotificationStatus.SENT
