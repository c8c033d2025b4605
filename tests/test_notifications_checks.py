"""Tests for recovery notifications, checks and the failover hook."""

import smtplib
import time
from unittest.mock import MagicMock, patch

import pytest
import requests
from jinja2 import TemplateError

from authbackup.config.models import NotificationConfig
from authbackup.recovery import CheckRegistry, FailoverHandler, Notifier, build_default_checks
from authbackup.recovery.models import CheckType, ValidationCheck
from authbackup.utils.errors import TransientDeliveryError


class TestNotifier:
    """Test notification delivery."""

    def setup_method(self):
        """Setup test environment."""
        self.notifier = Notifier(
            NotificationConfig(
                webhook_url="https://hooks.test/dr",
                slack_webhook_url="https://hooks.slack.test/T000",
                smtp_host="smtp.test",
                smtp_user="ops",
                smtp_password="pw",
            )
        )

    @patch("authbackup.recovery.notifications.requests.post")
    def test_webhook_payload(self, mock_post):
        """Test rendered body and context in the webhook payload."""
        delivered = self.notifier.send(
            "DR started", "Run {{ run_id }} started", ["webhook"], context={"run_id": "dr-1"}
        )

        assert delivered == {"webhook": True}
        payload = mock_post.call_args[1]["json"]
        assert payload["message"] == "Run dr-1 started"
        assert payload["context"] == {"run_id": "dr-1"}

    @patch("authbackup.recovery.notifications.requests.post")
    def test_slack_text(self, mock_post):
        """Test the Slack message layout."""
        self.notifier.send("DR failed", "Cause: disk full", ["slack"])

        assert mock_post.call_args[0][0] == "https://hooks.slack.test/T000"
        assert mock_post.call_args[1]["json"] == {"text": "*DR failed*\nCause: disk full"}

    @patch("authbackup.recovery.notifications.smtplib.SMTP")
    def test_email(self, mock_smtp):
        """Test SMTP delivery with login."""
        server = MagicMock()
        mock_smtp.return_value.__enter__.return_value = server

        delivered = self.notifier.send("DR", "body", ["email"], recipients=["oncall@example.com"])

        assert delivered == {"email": True}
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("ops", "pw")
        message = server.send_message.call_args[0][0]
        assert message["To"] == "oncall@example.com"

    @patch("authbackup.recovery.notifications.smtplib.SMTP")
    @patch("authbackup.recovery.notifications.requests.post")
    def test_failures_are_reported_not_raised(self, mock_post, mock_smtp):
        """Test per-channel failure results."""
        mock_post.side_effect = requests.ConnectionError("refused")
        mock_smtp.side_effect = smtplib.SMTPConnectError(421, "busy")

        delivered = self.notifier.send("DR", "body", ["webhook", "slack", "email", "pager"], recipients=["a@b.c"])

        assert delivered == {"webhook": False, "slack": False, "email": False, "pager": False}

    def test_unconfigured_channel(self):
        """Test that a missing endpoint is a failed delivery."""
        assert Notifier(NotificationConfig()).send("DR", "body", ["webhook", "email"]) == {
            "webhook": False,
            "email": False,
        }

    @patch("authbackup.recovery.notifications.requests.post")
    def test_bad_template_sent_raw(self, mock_post):
        """Test that a template error falls back to the raw text."""
        self.notifier.send("DR", "{{ missing }}", ["webhook"])

        assert mock_post.call_args[1]["json"]["message"] == "{{ missing }}"

    def test_render_strict(self):
        """Test that render raises on unknown names."""
        assert self.notifier.render("{{ plan_id }}", {"plan_id": "p"}) == "p"
        with pytest.raises(TemplateError):
            self.notifier.render("{{ plan_id }}")


class TestCheckRegistry:
    """Test named checks."""

    def setup_method(self):
        """Setup test environment."""
        self.registry = CheckRegistry()

    def test_unknown_check(self):
        outcome = self.registry.run(ValidationCheck("nope"))

        assert outcome.failed
        assert outcome.message == "unknown check"

    def test_exception_becomes_failure(self):
        """Test that a raising check is a failed outcome."""

        def broken():
            raise RuntimeError("boom")

        self.registry.register("broken", broken)

        outcome = self.registry.run(ValidationCheck("broken"))

        assert outcome.failed
        assert outcome.message == "RuntimeError: boom"

    def test_skipped_check(self):
        """Test that a check returning None is skipped, not failed."""
        self.registry.register("n/a", lambda: (None, "not configured"))

        outcome = self.registry.run(ValidationCheck("n/a"))

        assert outcome.skipped
        assert not outcome.failed
        assert not outcome.passed

    def test_timeout(self):
        """Test a check exceeding its limit."""
        self.registry.register("slow", lambda: time.sleep(0.5) or (True, "late"))

        outcome = self.registry.run(ValidationCheck("slow", timeout=0.05))

        assert outcome.failed
        assert "Timed out" in outcome.message

    def test_aliases_and_run_named(self):
        """Test alias registration and plan-level checks."""
        self.registry.register("database-connectivity", lambda: (True, "ok"), "database")

        outcomes = self.registry.run_named(["database"], CheckType.HEALTH)

        assert outcomes[0].passed
        assert outcomes[0].type == CheckType.HEALTH
        assert self.registry.names() == ["database", "database-connectivity"]


class TestDefaultChecks:
    """Test the built-in checks."""

    def test_store_checks(self, fake_stores):
        registry = build_default_checks(fake_stores)

        for name in ("database", "redis", "user-data", "session-data"):
            assert registry.run(ValidationCheck(name)).passed, name

    def test_api_check_skipped_without_url(self, fake_stores):
        outcome = build_default_checks(fake_stores).run(ValidationCheck("api"))

        assert outcome.skipped

    @patch("authbackup.recovery.checks.requests.get")
    def test_api_check(self, mock_get, fake_stores):
        mock_get.return_value = MagicMock(status_code=503)

        outcome = build_default_checks(fake_stores, "http://auth.test/health").run(ValidationCheck("api"))

        assert outcome.failed
        assert outcome.message == "GET http://auth.test/health -> 503"


class TestFailoverHandler:
    """Test the failover hook."""

    def test_without_webhook_is_recorded_only(self):
        record = FailoverHandler().execute("eu-west-1", "manual")

        assert record["completed"] is True
        assert record["delegated"] is False

    @patch("authbackup.recovery.failover.requests.post")
    def test_webhook_called(self, mock_post):
        record = FailoverHandler("https://dns.test/failover").execute("eu-west-1", "automatic", {"run_id": "dr-1"})

        payload = mock_post.call_args[1]["json"]
        assert payload["target_region"] == "eu-west-1"
        assert payload["metadata"] == {"run_id": "dr-1"}
        assert record["delegated"] is True

    @patch("authbackup.recovery.failover.requests.post")
    def test_webhook_failure(self, mock_post):
        mock_post.side_effect = requests.Timeout("timed out")

        with pytest.raises(TransientDeliveryError):
            FailoverHandler("https://dns.test/failover").execute("eu-west-1", "manual")

    def test_rehearse(self):
        handler = FailoverHandler()

        assert handler.rehearse("eu-west-1", ["eu-west-1"])[0] is True
        assert handler.rehearse("eu-west-1", ["us-west-2"])[0] is False
        assert handler.rehearse("eu-west-1", [])[0] is True
