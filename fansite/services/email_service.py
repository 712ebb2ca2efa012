"""
Resend email service for newsletter emails.

Sends double opt-in confirmation emails and welcome emails. Every send
returns an EmailResult; provider errors and exceptions are caught and
reported as success=False so callers can decide how to respond.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote
import resend

from fansite.core.config import settings
from fansite.core.logging_config import email_fingerprint
from fansite.services import email_templates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailService:
    """
    Service for sending newsletter emails via Resend.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        site_url: Optional[str] = None,
        release_date: Optional[datetime] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.from_name = from_name or settings.RESEND_FROM_NAME
        self.reply_to = reply_to or settings.REPLY_TO_EMAIL
        self.site_url = (site_url or settings.SITE_URL).rstrip("/")
        self.release_date = release_date or settings.RELEASE_DATE

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    def confirmation_url(self, token: str) -> str:
        return f"{self.site_url}{settings.API_PREFIX}/subscribe/confirm?token={token}"

    def unsubscribe_url(self, token: str) -> str:
        return f"{self.site_url}/unsubscribe?token={quote(token)}"

    def send_confirmation_email(
        self,
        email: str,
        token: str,
        expiry_hours: Optional[int] = None
    ) -> EmailResult:
        """
        Send the double opt-in confirmation email.

        Args:
            email: Recipient email address
            token: 32-character confirmation token
            expiry_hours: Hours until the link expires (shown in the email)

        Returns:
            EmailResult: success flag, Resend message id or error message
        """
        expiry_hours = expiry_hours or settings.PENDING_TOKEN_TTL_HOURS
        url = self.confirmation_url(token)

        params = {
            "from": self.sender,
            "to": [email],
            "subject": "Confirm your Silksong subscription",
            "html": email_templates.build_confirmation_html(url, expiry_hours),
            "text": email_templates.build_confirmation_text(url, expiry_hours),
            "tags": [
                {"name": "type", "value": "confirmation"},
            ],
        }
        if self.reply_to:
            params["reply_to"] = self.reply_to

        return self._send(params, "confirmation", email)

    def send_welcome_email(self, subscription, subscriber_count: Optional[int] = None) -> EmailResult:
        """
        Send the welcome email for a new or reactivated subscription.

        Args:
            subscription: Subscription (saved or not yet saved) with id, email,
                source and unsubscribe_token
            subscriber_count: Optional active subscriber count shown in the email

        Returns:
            EmailResult: success flag, Resend message id or error message
        """
        now = datetime.now(timezone.utc)
        unsubscribe_url = self.unsubscribe_url(subscription.unsubscribe_token)
        days_remaining = email_templates.calculate_days_remaining(self.release_date, now)
        unsubscribe_mailto = self.reply_to or self.from_email

        params = {
            "from": self.sender,
            "to": [subscription.email],
            "subject": "You're In - Silksong Tracking Activated",
            "html": email_templates.build_welcome_html(
                self.site_url, unsubscribe_url, days_remaining, now.year, subscriber_count
            ),
            "text": email_templates.build_welcome_text(
                self.site_url, unsubscribe_url, days_remaining, now.year
            ),
            "headers": {
                "X-Entity-Ref-ID": str(subscription.id),
                "List-Unsubscribe": f"<{unsubscribe_url}>, <mailto:{unsubscribe_mailto}>",
                "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
            },
            "tags": [
                {"name": "type", "value": "welcome"},
                {"name": "source", "value": subscription.source or "web"},
            ],
        }
        if self.reply_to:
            params["reply_to"] = self.reply_to

        return self._send(params, "welcome", subscription.email)

    def _send(self, params: Dict[str, Any], kind: str, email: str) -> EmailResult:
        if not self.api_key:
            logger.error(f"Cannot send {kind} email: RESEND_API_KEY is not configured")
            return EmailResult(success=False, error="Email service not configured")

        try:
            resend.api_key = self.api_key
            response = resend.Emails.send(params)

            message_id = response.get("id") if response else None
            if not message_id:
                logger.error(f"Resend returned no message id for {kind} email: {response}")
                return EmailResult(success=False, error="Email provider returned no message id")

            logger.info(f"{kind.capitalize()} email sent to {email_fingerprint(email)} (Email ID: {message_id})")
            return EmailResult(success=True, message_id=message_id)

        except Exception as e:
            logger.error(f"Error sending {kind} email to {email_fingerprint(email)}: {str(e)}")
            return EmailResult(success=False, error=str(e) or "Unknown email error")


# Singleton instance
email_service = EmailService()


def get_email_service() -> EmailService:
    """
    Dependency function returning the email service.
    Tests override this with a fake via app.dependency_overrides.
    """
    return email_service
