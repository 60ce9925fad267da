"""Outbound delivery of violation alerts (email and Slack)."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Protocol

import requests

from datawatch.config import Settings


logger = logging.getLogger(__name__)

SLACK_TIMEOUT_SECONDS = 10
SMTP_TIMEOUT_SECONDS = 15


@dataclass(frozen=True)
class ViolationAlert:
    to: list[str]
    rule_name: str
    severity: str
    workspace_name: str
    field_path: str
    expected_value: str | None
    actual_value: Any
    violation_type: str

    @property
    def subject(self) -> str:
        return f"Data validation alert: {self.rule_name}"

    def render_text(self) -> str:
        return "\n".join(
            [
                f"Workspace: {self.workspace_name}",
                f"Rule: {self.rule_name}",
                f"Severity: {self.severity}",
                f"Violation: {self.violation_type}",
                f"Field: {self.field_path}",
                f"Expected: {self.expected_value if self.expected_value is not None else '-'}",
                f"Actual: {self.actual_value if self.actual_value is not None else '-'}",
            ]
        )


class AlertTransport(Protocol):
    def send_violation_alert(self, alert: ViolationAlert) -> bool: ...


class NullTransport:
    def send_violation_alert(self, alert: ViolationAlert) -> bool:
        logger.info("No alert transport configured; dropping alert for %s", alert.rule_name)
        return False


class SmtpEmailTransport:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        sender: str = "alerts@datawatch.local",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender

    def build_message(self, alert: ViolationAlert) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = alert.subject
        message["From"] = self.sender
        message["To"] = ", ".join(alert.to)
        message.set_content(alert.render_text())
        return message

    def send_violation_alert(self, alert: ViolationAlert) -> bool:
        message = self.build_message(alert)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", message["To"], exc)
            return False
        return True


class SlackWebhookTransport:
    def __init__(self, webhook_url: str, session: requests.Session | None = None) -> None:
        self.webhook_url = webhook_url
        self._session = session or requests.Session()

    def build_payload(self, alert: ViolationAlert) -> dict[str, Any]:
        return {"text": f"*{alert.subject}* ({alert.severity})\n{alert.render_text()}"}

    def send_violation_alert(self, alert: ViolationAlert) -> bool:
        try:
            response = self._session.post(
                self.webhook_url,
                json=self.build_payload(alert),
                timeout=SLACK_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Slack delivery failed: %s", exc)
            return False
        return True


@dataclass
class FanOutTransport:
    """Deliver through every transport; succeeds if at least one did."""

    transports: list[AlertTransport] = field(default_factory=list)

    def send_violation_alert(self, alert: ViolationAlert) -> bool:
        results = [transport.send_violation_alert(alert) for transport in self.transports]
        return any(results)


def build_transport(settings: Settings) -> AlertTransport:
    transports: list[AlertTransport] = []
    if settings.smtp_host:
        transports.append(
            SmtpEmailTransport(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                sender=settings.smtp_from,
            )
        )
    if settings.slack_webhook_url:
        transports.append(SlackWebhookTransport(settings.slack_webhook_url))
    if not transports:
        return NullTransport()
    if len(transports) == 1:
        return transports[0]
    return FanOutTransport(transports)
