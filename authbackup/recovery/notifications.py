"""Recovery notifications over webhook, Slack and email."""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Any, Dict, Iterable, Optional

import requests
from jinja2 import Environment, StrictUndefined, TemplateError

from authbackup.config.models import NotificationConfig

logger = logging.getLogger(__name__)

CHANNELS = ("webhook", "slack", "email")
REQUEST_TIMEOUT = 10


class NotificationError(Exception):
    """Raised internally when one channel cannot deliver."""

    pass


class Notifier:
    """Sends recovery messages. Delivery failures are logged and reported, never raised."""

    def __init__(self, config: NotificationConfig):
        """
        Initialize notifier.

        Args:
            config: Channel endpoints and SMTP settings
        """
        self.config = config
        self.jinja_env = Environment(undefined=StrictUndefined, autoescape=False)

    def render(self, template: str, context: Optional[Dict[str, Any]] = None) -> str:
        """
        Render a message template.

        Raises:
            jinja2.TemplateError: If the template is malformed or uses unknown names
        """
        return self.jinja_env.from_string(template).render(**(context or {}))

    def send(
        self,
        subject: str,
        message: str,
        channels: Iterable[str],
        recipients: Iterable[str] = (),
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, bool]:
        """
        Send a message to each channel.

        Args:
            subject: Short title
            message: Jinja2 template for the body
            channels: Channel names (webhook, slack, email)
            recipients: Email recipients
            context: Template variables

        Returns:
            Dict[str, bool]: Delivery result per channel
        """
        context = context or {}
        try:
            body = self.render(message, context)
        except TemplateError as e:
            logger.warning("Notification template error (%s); sending raw text", e)
            body = message

        results = {}
        for channel in channels:
            try:
                if channel == "webhook":
                    self._send_webhook(subject, body, context)
                elif channel == "slack":
                    self._send_slack(subject, body)
                elif channel == "email":
                    self._send_email(subject, body, list(recipients))
                else:
                    raise NotificationError(f"unknown channel '{channel}'")
                results[channel] = True
            except (NotificationError, requests.RequestException, smtplib.SMTPException, OSError) as e:
                logger.warning("Notification via %s failed: %s", channel, e)
                results[channel] = False

        return results

    def _send_webhook(self, subject: str, body: str, context: Dict[str, Any]) -> None:
        if not self.config.webhook_url:
            raise NotificationError("NOTIFY_WEBHOOK_URL is not configured")

        payload = {"subject": subject, "message": body, "context": _jsonable(context)}
        response = requests.post(self.config.webhook_url, json=payload, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()

    def _send_slack(self, subject: str, body: str) -> None:
        if not self.config.slack_webhook_url:
            raise NotificationError("SLACK_WEBHOOK_URL is not configured")

        response = requests.post(
            self.config.slack_webhook_url,
            json={"text": f"*{subject}*\n{body}"},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()

    def _send_email(self, subject: str, body: str, recipients: list) -> None:
        if not self.config.smtp_host:
            raise NotificationError("SMTP_HOST is not configured")
        if not recipients:
            raise NotificationError("no email recipients")

        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.config.email_from
        msg["To"] = ", ".join(recipients)

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=REQUEST_TIMEOUT) as server:
            if self.config.smtp_user and self.config.smtp_password:
                server.starttls()
                server.login(self.config.smtp_user, self.config.smtp_password)
            server.send_message(msg)


def _jsonable(context: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value if isinstance(value, (str, int, float, bool, type(None))) else str(value) for key, value in context.items()}
