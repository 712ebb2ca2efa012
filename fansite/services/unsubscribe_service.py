"""
Unsubscribe flows.

Two ways to leave the list:
- token: the 64-character token from the email footer link
- email: the address plus an explicit confirm flag

Both are idempotent. The audit log entry is written after the status
change has committed and its failure never fails the request.
"""

import logging
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fansite.core.api_rate_limiter import ClientInfo
from fansite.core.cache import invalidate_subscriber_count
from fansite.core.database import isoformat_utc
from fansite.core.logging_config import email_fingerprint
from fansite.core.result import Err, Ok, Result
from fansite.crud import subscription as crud_subscription
from fansite.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


def token_already_unsubscribed(db: Session, token: str) -> bool:
    """True when the token belongs to a subscription that has already ended"""
    subscription = crud_subscription.get_by_unsubscribe_token(db, token)
    return subscription is not None and subscription.status == SubscriptionStatus.UNSUBSCRIBED


def _already_unsubscribed(subscription: Subscription) -> Ok:
    return Ok(
        {
            "email": subscription.email,
            "status": SubscriptionStatus.UNSUBSCRIBED.value,
            "unsubscribedAt": isoformat_utc(subscription.unsubscribed_at),
        },
        code="ALREADY_UNSUBSCRIBED",
        message="You have already been unsubscribed.",
    )


def _unsubscribe(
    db: Session,
    subscription: Subscription,
    reason: Optional[str],
    feedback: Optional[str],
    client: ClientInfo,
    method: str,
) -> Result:
    fingerprint = email_fingerprint(subscription.email)

    try:
        crud_subscription.mark_unsubscribed(subscription, reason=reason, feedback=feedback, method=method)
        db.commit()
        db.refresh(subscription)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to unsubscribe {fingerprint}: {e}")
        return Err("database_unavailable", "Failed to process unsubscription. Please try again later.", 500)

    invalidate_subscriber_count()

    try:
        crud_subscription.create_unsubscription_log(
            db,
            subscription,
            reason=reason,
            feedback=feedback,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            method=method,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to write unsubscription log for {fingerprint}: {e}")

    logger.info(f"Unsubscribed {fingerprint} via {method} (reason={reason or 'none'})")

    return Ok(
        {
            "email": subscription.email,
            "status": SubscriptionStatus.UNSUBSCRIBED.value,
            "unsubscribedAt": isoformat_utc(subscription.unsubscribed_at),
        },
        code="UNSUBSCRIBED",
        message="You have been successfully unsubscribed.",
    )


def unsubscribe_by_token(
    db: Session,
    token: str,
    client: ClientInfo,
    reason: Optional[str] = None,
    feedback: Optional[str] = None,
) -> Result:
    """
    Unsubscribe using the emailed unsubscribe token.

    Args:
        db: Database session
        token: 64-character unsubscribe token (format already validated)
        client: Requesting client (IP, user agent) for the audit log
        reason: Optional reason code
        feedback: Optional free-text feedback

    Returns:
        Result: Ok (UNSUBSCRIBED / ALREADY_UNSUBSCRIBED) or Err
    """
    try:
        subscription = crud_subscription.get_by_unsubscribe_token(db, token)
    except SQLAlchemyError as e:
        logger.error(f"Unsubscribe token lookup failed: {e}")
        return Err("database_unavailable", "Service temporarily unavailable. Please try again later.", 500)

    if subscription is None:
        return Err("validation_token", "Invalid or expired unsubscribe token", 404)

    if subscription.status == SubscriptionStatus.UNSUBSCRIBED:
        return _already_unsubscribed(subscription)

    return _unsubscribe(db, subscription, reason, feedback, client, method="token")


def unsubscribe_by_email(db: Session, email: str, client: ClientInfo) -> Result:
    """
    Unsubscribe using the email address (explicit confirmation required by the caller).

    Args:
        db: Database session
        email: Sanitized email address
        client: Requesting client (IP, user agent) for the audit log

    Returns:
        Result: Ok (UNSUBSCRIBED / ALREADY_UNSUBSCRIBED) or Err
    """
    try:
        subscription = crud_subscription.get_by_email(db, email)
    except SQLAlchemyError as e:
        logger.error(f"Unsubscribe email lookup failed: {e}")
        return Err("database_unavailable", "Service temporarily unavailable. Please try again later.", 500)

    if subscription is None or subscription.status == SubscriptionStatus.PENDING:
        return Err("validation_email", "No active subscription found for this email", 404)

    if subscription.status == SubscriptionStatus.UNSUBSCRIBED:
        return _already_unsubscribed(subscription)

    return _unsubscribe(db, subscription, "other", None, client, method="email_confirmation")
