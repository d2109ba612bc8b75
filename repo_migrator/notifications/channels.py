"""
Alert delivery channels.

Every channel renders the alert title, severity, timestamp and all of its
data fields, then hands the result to one transport: the terminal, a Slack or
Teams incoming webhook, or an SMTP server.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import click
import requests

from repo_migrator.constants import SEVERITY_COLORS
from repo_migrator.core.config import (
    AlertingConfig,
    EmailChannelConfig,
    WebhookChannelConfig,
)
from repo_migrator.exceptions import ChannelDeliveryError
from repo_migrator.types import Alert, DeliveryResult, Severity
from repo_migrator.utils.logging import log_with_context

_CONSOLE_COLORS = {
    Severity.CRITICAL: "red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
    Severity.INFO: "green",
}


def severity_color(severity: Severity) -> str:
    return SEVERITY_COLORS[severity.value]


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(v) for v in value)
    return str(value)


class AlertChannel:
    """Base class for alert transports.

    Subclasses implement :meth:`_send` and raise on failure; :meth:`deliver`
    turns that into a :class:`DeliveryResult` so one broken channel never
    stops the others.
    """

    name = "channel"

    def deliver(self, alert: Alert) -> DeliveryResult:
        try:
            self._send(alert)
        except Exception as e:
            error = ChannelDeliveryError(self.name, str(e))
            log_with_context(
                logging.ERROR,
                str(error),
                channel=self.name,
                alert_type=alert.type,
            )
            return DeliveryResult(channel=self.name, success=False, error=str(e))
        return DeliveryResult(channel=self.name, success=True)

    def _send(self, alert: Alert) -> None:
        raise NotImplementedError


class ConsoleChannel(AlertChannel):
    """Prints alerts to the terminal in the severity colour."""

    name = "console"

    def _send(self, alert: Alert) -> None:
        color = _CONSOLE_COLORS[alert.severity]
        stamp = alert.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
        click.echo(
            click.style(f"{alert.title} ", fg=color, bold=True)
            + f"{stamp}: {alert.message}",
            err=True,
        )
        for key, value in alert.data.items():
            click.echo(f"    {key}: {_format_value(value)}", err=True)


class _WebhookChannel(AlertChannel):
    def __init__(
        self,
        config: WebhookChannelConfig,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()

    def payload(self, alert: Alert) -> dict[str, Any]:
        raise NotImplementedError

    def _send(self, alert: Alert) -> None:
        response = self.session.post(
            self.config.webhook_url,
            json=self.payload(alert),
            timeout=self.config.timeout,
        )
        response.raise_for_status()


class SlackChannel(_WebhookChannel):
    """Posts to a Slack incoming webhook as a coloured attachment."""

    name = "slack"

    def payload(self, alert: Alert) -> dict[str, Any]:
        fields = [{"title": "Severity", "value": alert.severity.value, "short": True}]
        fields.extend(
            {"title": key, "value": _format_value(value), "short": True}
            for key, value in alert.data.items()
        )
        return {
            "attachments": [
                {
                    "color": severity_color(alert.severity),
                    "title": alert.title,
                    "text": alert.message,
                    "fields": fields,
                    "ts": int(alert.timestamp.timestamp()),
                    "footer": "repo-migrator",
                }
            ]
        }


class TeamsChannel(_WebhookChannel):
    """Posts to a Microsoft Teams incoming webhook as a MessageCard."""

    name = "teams"

    def payload(self, alert: Alert) -> dict[str, Any]:
        facts = [
            {"name": "Severity", "value": alert.severity.value},
            {"name": "Time", "value": alert.timestamp.isoformat()},
        ]
        facts.extend(
            {"name": key, "value": _format_value(value)}
            for key, value in alert.data.items()
        )
        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": severity_color(alert.severity).lstrip("#"),
            "summary": alert.title,
            "sections": [
                {
                    "activityTitle": alert.title,
                    "activitySubtitle": alert.message,
                    "facts": facts,
                    "markdown": True,
                }
            ],
        }


class EmailChannel(AlertChannel):
    """Submits alerts to an SMTP server as HTML mail."""

    name = "email"

    def __init__(self, config: EmailChannelConfig) -> None:
        self.config = config

    def render_html(self, alert: Alert) -> str:
        rows = [
            ("Severity", alert.severity.value),
            ("Time", alert.timestamp.isoformat()),
            *((key, _format_value(value)) for key, value in alert.data.items()),
        ]
        table = "\n".join(
            f"<tr><th align='left'>{html.escape(str(k))}</th>"
            f"<td>{html.escape(v)}</td></tr>"
            for k, v in rows
        )
        return (
            f"<html><body>"
            f"<h2 style='color:{severity_color(alert.severity)}'>"
            f"{html.escape(alert.title)}</h2>"
            f"<p>{html.escape(alert.message)}</p>"
            f"<table border='1' cellpadding='4' cellspacing='0'>\n{table}\n</table>"
            f"</body></html>"
        )

    def build_message(self, alert: Alert) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = f"{alert.title}: {alert.message}"[:200]
        message["From"] = self.config.from_address
        message["To"] = ", ".join(self.config.to_addresses)
        message.attach(MIMEText(alert.message, "plain"))
        message.attach(MIMEText(self.render_html(alert), "html"))
        return message

    def _send(self, alert: Alert) -> None:
        message = self.build_message(alert)
        with smtplib.SMTP(
            self.config.smtp_host, self.config.smtp_port, timeout=self.config.timeout
        ) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.username:
                smtp.login(self.config.username, self.config.password)
            smtp.send_message(message)


def build_channels(
    config: AlertingConfig, session: requests.Session | None = None
) -> list[AlertChannel]:
    """Instantiate every enabled channel."""
    channels: list[AlertChannel] = []
    if config.console.enabled:
        channels.append(ConsoleChannel())
    if config.slack.enabled:
        channels.append(SlackChannel(config.slack, session))
    if config.teams.enabled:
        channels.append(TeamsChannel(config.teams, session))
    if config.email.enabled:
        channels.append(EmailChannel(config.email))
    return channels
