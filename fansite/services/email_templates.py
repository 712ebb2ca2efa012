"""
HTML and plain-text bodies for newsletter emails.

Everything the templates show (days until release, year, links) is computed
by the caller and passed in.
"""

import math
from datetime import datetime, timezone
from typing import Optional


def calculate_days_remaining(release_date: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days until the release date, rounded up and never negative.

    Args:
        release_date: Aware release datetime
        now: Current time (defaults to UTC now)

    Returns:
        int: Days remaining, 0 once the release date has passed
    """
    now = now or datetime.now(timezone.utc)
    seconds = (release_date - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def build_confirmation_html(confirmation_url: str, expiry_hours: int) -> str:
    return f"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Confirm your Silksong subscription</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="text-align: center; margin-bottom: 30px;">
        <h1 style="color: #b91c1c; margin-bottom: 10px;">Confirm Your Subscription</h1>
        <p style="font-size: 16px; color: #666;">One more step to get Silksong updates</p>
    </div>

    <p>Hi there!</p>
    <p>Thanks for signing up for Silksong updates. Please confirm your email address by clicking the button below:</p>

    <div style="text-align: center; margin: 30px 0;">
        <a href="{confirmation_url}" style="background: #b91c1c; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block; font-weight: 500;">Confirm Subscription</a>
    </div>

    <p style="font-size: 14px; color: #666;">Or copy and paste this link into your browser:</p>
    <p style="font-size: 14px; color: #b91c1c; word-break: break-all;">{confirmation_url}</p>

    <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #e2e8f0; font-size: 12px; color: #666;">
        <p>This confirmation link will expire in {expiry_hours} hours.</p>
        <p>If you didn't request this subscription, you can safely ignore this email.</p>
    </div>
</body>
</html>
"""


def build_confirmation_text(confirmation_url: str, expiry_hours: int) -> str:
    return f"""
Confirm Your Subscription

Thanks for signing up for Silksong updates. Please confirm your email address by visiting:

{confirmation_url}

This confirmation link will expire in {expiry_hours} hours.
If you didn't request this subscription, you can safely ignore this email.
"""


def build_welcome_html(
    site_url: str,
    unsubscribe_url: str,
    days_remaining: int,
    year: int,
    subscriber_count: Optional[int] = None,
) -> str:
    if days_remaining > 0:
        countdown = f"{days_remaining} days until Silksong launches"
    else:
        countdown = "Silksong is out now"

    community = ""
    if subscriber_count:
        community = f"""
                            <p style="margin: 0 0 20px 0; color: #9ca3af; font-size: 14px;">
                                You're one of {subscriber_count:,} fans tracking the journey.
                            </p>"""

    return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>You're In - Silksong Tracking Activated</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #0f0f12;">
    <table role="presentation" style="width: 100%; border-collapse: collapse;">
        <tr>
            <td align="center" style="padding: 40px 0;">
                <table role="presentation" style="width: 600px; border-collapse: collapse; background-color: #1a1a22; border-radius: 8px;">
                    <tr>
                        <td style="padding: 40px 40px 20px 40px; text-align: center;">
                            <h1 style="margin: 0; color: #f5f5f5; font-size: 28px; font-weight: 600;">
                                You're In
                            </h1>
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 0 40px 40px 40px; text-align: center;">
                            <p style="margin: 0 0 20px 0; color: #d1d5db; font-size: 16px; line-height: 1.5;">
                                Silksong tracking is activated. We'll send you news, patch notes and release updates.
                            </p>
                            <p style="margin: 0 0 30px 0; color: #fca5a5; font-size: 22px; font-weight: bold;">
                                {countdown}
                            </p>{community}
                            <a href="{site_url}" style="background: #b91c1c; color: #ffffff; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">Visit the site</a>
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 20px 40px; border-top: 1px solid #2d2d38; text-align: center;">
                            <p style="margin: 0; color: #6b7280; font-size: 12px;">
                                &copy; {year} Silksong fan site. Not affiliated with Team Cherry.<br>
                                <a href="{unsubscribe_url}" style="color: #6b7280;">Unsubscribe</a>
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>
"""


def build_welcome_text(site_url: str, unsubscribe_url: str, days_remaining: int, year: int) -> str:
    countdown = f"{days_remaining} days until Silksong launches." if days_remaining > 0 else "Silksong is out now."
    return f"""
You're In - Silksong Tracking Activated

We'll send you news, patch notes and release updates.
{countdown}

Visit the site: {site_url}

(c) {year} Silksong fan site. Not affiliated with Team Cherry.
Unsubscribe: {unsubscribe_url}
"""
