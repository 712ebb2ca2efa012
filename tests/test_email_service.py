"""
Tests for the Resend email service.

resend.Emails.send is monkeypatched; no emails are sent.
"""

from datetime import datetime, timedelta, timezone

import resend

from fansite.core.config import settings
from fansite.crud.subscription import build_subscription
from fansite.services.email_service import EmailService
from fansite.services.email_templates import calculate_days_remaining

RELEASE = datetime(2025, 9, 4, 14, 0, tzinfo=timezone.utc)


def make_service(**overrides):
    options = {
        "api_key": "re_test",
        "from_email": "news@silksong.example",
        "from_name": "Silksong News",
        "reply_to": "hello@silksong.example",
        "site_url": "https://silksong.example/",
        "release_date": RELEASE,
    }
    options.update(overrides)
    return EmailService(**options)


class TestEmailService:
    """Test sending through Resend"""

    def test_confirmation_email(self, monkeypatch):
        sent = []

        def fake_send(params):
            sent.append(params)
            return {"id": "email_123"}

        monkeypatch.setattr(resend.Emails, "send", fake_send)
        token = "a" * 32

        result = make_service().send_confirmation_email("fan@example.com", token, expiry_hours=24)

        assert result.success is True
        assert result.message_id == "email_123"
        params = sent[0]
        assert params["to"] == ["fan@example.com"]
        assert params["from"] == "Silksong News <news@silksong.example>"
        assert params["reply_to"] == "hello@silksong.example"
        assert f"https://silksong.example/api/subscribe/confirm?token={token}" in params["html"]
        assert "24 hours" in params["text"]

    def test_confirmation_url_uses_api_prefix(self, monkeypatch):
        monkeypatch.setattr(settings, "API_PREFIX", "/v2")

        url = make_service().confirmation_url("e" * 32)

        assert url == f"https://silksong.example/v2/subscribe/confirm?token={'e' * 32}"

    def test_welcome_email_headers(self, monkeypatch):
        sent = []
        monkeypatch.setattr(resend.Emails, "send", lambda params: sent.append(params) or {"id": "email_456"})
        subscription = build_subscription("fan@example.com", source="footer")

        result = make_service().send_welcome_email(subscription, subscriber_count=42)

        assert result.success is True
        headers = sent[0]["headers"]
        assert headers["X-Entity-Ref-ID"] == str(subscription.id)
        unsubscribe_url = f"https://silksong.example/unsubscribe?token={subscription.unsubscribe_token}"
        assert unsubscribe_url in headers["List-Unsubscribe"]
        assert headers["List-Unsubscribe-Post"] == "List-Unsubscribe=One-Click"
        assert {"name": "source", "value": "footer"} in sent[0]["tags"]
        assert unsubscribe_url in sent[0]["html"]

    def test_provider_exception_is_reported(self, monkeypatch):
        def failing_send(params):
            raise Exception("Resend is down")

        monkeypatch.setattr(resend.Emails, "send", failing_send)

        result = make_service().send_confirmation_email("fan@example.com", "b" * 32)

        assert result.success is False
        assert result.error == "Resend is down"

    def test_missing_message_id(self, monkeypatch):
        monkeypatch.setattr(resend.Emails, "send", lambda params: {})

        result = make_service().send_confirmation_email("fan@example.com", "c" * 32)

        assert result.success is False

    def test_not_configured(self, monkeypatch):
        def unexpected_send(params):
            raise AssertionError("Resend should not be called")

        monkeypatch.setattr(resend.Emails, "send", unexpected_send)

        result = make_service(api_key="").send_confirmation_email("fan@example.com", "d" * 32)

        assert result.success is False
        assert result.error == "Email service not configured"


class TestDaysRemaining:
    """Test the release countdown shown in welcome emails"""

    def test_partial_day_rounds_up(self):
        now = RELEASE - timedelta(days=2, hours=3)
        assert calculate_days_remaining(RELEASE, now) == 3

    def test_exact_days(self):
        assert calculate_days_remaining(RELEASE, RELEASE - timedelta(days=5)) == 5

    def test_never_negative(self):
        assert calculate_days_remaining(RELEASE, RELEASE + timedelta(days=10)) == 0
