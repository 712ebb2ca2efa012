"""
Welcome-first (transactional) subscription flow.

The welcome email is sent before anything is written, so a subscriber is
only stored once they have actually been emailed. If the write fails after
a successful send, the response says so (emailSent + messageId) so support
can reconcile.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fansite.core.cache import SUBSCRIBER_COUNT_KEY, count_cache, invalidate_subscriber_count
from fansite.core.config import settings
from fansite.core.database import isoformat_utc
from fansite.core.email_validation import EMAIL_REQUIRED, MSG_REQUIRED, validate_email
from fansite.core.logging_config import email_fingerprint
from fansite.core.responses import validation_details
from fansite.core.result import Err, Ok, Result
from fansite.schemas.newsletter import SubscribeRequest
from fansite.crud import subscription as crud_subscription
from fansite.models.subscription import Subscription, SubscriptionStatus
from fansite.services.email_service import EmailService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignupRequest:
    email: str
    source: str
    tags: List[str]
    metadata: Dict[str, Any]


def parse_signup_request(payload: Dict[str, Any]) -> Result:
    """
    Validate a signup body.

    The email goes through validate_email (trim, lowercase, format, domain
    lists); source, tags and metadata through SubscribeRequest.

    Returns:
        Result: Ok(SignupRequest) or Err with a validation_* code
    """
    email = payload.get("email")
    if email is None or (isinstance(email, str) and not email.strip()):
        return Err(EMAIL_REQUIRED, MSG_REQUIRED, 400)

    check = validate_email(
        email,
        blocked_domains=settings.BLOCKED_EMAIL_DOMAINS,
        allowed_domains=settings.ALLOWED_EMAIL_DOMAINS,
    )
    if not check.is_valid:
        return Err(check.code, check.error, 400)

    try:
        body = SubscribeRequest.model_validate(payload)
    except ValidationError as e:
        return Err("validation_schema", "Invalid subscription request", 400,
                   details={"details": validation_details(e.errors())})

    return Ok(SignupRequest(email=check.sanitized, source=body.source, tags=body.tags, metadata=body.metadata))


def get_subscriber_count(db: Session) -> Result:
    """
    Active subscriber count, cached for COUNT_CACHE_TTL_SECONDS.

    Returns:
        Result: Ok({"count": n}) or Err("database_unavailable")
    """
    cached = count_cache.get(SUBSCRIBER_COUNT_KEY)
    if cached is not None:
        return Ok({"count": cached[0]})

    try:
        count = crud_subscription.count_active(db)
    except SQLAlchemyError as e:
        logger.error(f"Failed to count subscribers: {e}")
        return Err("database_unavailable", "Subscriber count is temporarily unavailable", 500)

    count_cache.set(SUBSCRIBER_COUNT_KEY, count, settings.COUNT_CACHE_TTL_SECONDS)
    return Ok({"count": count})


def serialize_subscription(subscription: Subscription) -> Dict[str, Any]:
    return {
        "id": str(subscription.id),
        "email": subscription.email,
        "status": subscription.status.value,
        "source": subscription.source,
        "tags": list(subscription.tags or []),
        "subscribedAt": isoformat_utc(subscription.subscribed_at),
        "verified": bool(subscription.verified),
    }


def subscribe_with_welcome(
    db: Session,
    email_service: EmailService,
    email: str,
    source: str = "web",
    tags: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Result:
    """
    Subscribe an address, sending the welcome email before storing it.

    Args:
        db: Database session
        email_service: Email dispatcher
        email: Sanitized email address
        source: Signup source
        tags: Optional tags
        metadata: Optional metadata

    Returns:
        Result: Ok (201) with the stored subscription, or Err
    """
    fingerprint = email_fingerprint(email)

    try:
        existing = crud_subscription.get_by_email(db, email)
        subscriber_count = crud_subscription.count_active(db)
    except SQLAlchemyError as e:
        logger.error(f"Subscription lookup failed for {fingerprint}: {e}")
        return Err("database_unavailable", "Service temporarily unavailable. Please try again later.", 500)

    if existing is not None and existing.status == SubscriptionStatus.ACTIVE:
        return Err(
            "ALREADY_SUBSCRIBED",
            "Email already subscribed",
            409,
            details={"subscriptionId": str(existing.id)},
        )

    if existing is not None:
        subscription = crud_subscription.reactivate(existing, source=source, tags=tags, metadata=metadata)
        reactivated = True
    else:
        subscription = crud_subscription.build_subscription(email, source=source, tags=tags, metadata=metadata)
        reactivated = False

    # Nothing has been written yet; a failed send leaves the database untouched
    result = email_service.send_welcome_email(subscription, subscriber_count=subscriber_count + 1)

    if not result.success:
        db.rollback()
        logger.error(f"Welcome email failed for {fingerprint}, subscription not stored: {result.error}")
        return Err(
            "EMAIL_DELIVERY_FAILED",
            "Failed to send welcome email. Please try again or contact support.",
            503,
            details={"emailSent": False},
        )

    try:
        if not reactivated:
            db.add(subscription)
        db.commit()
        db.refresh(subscription)
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Duplicate subscription for {fingerprint} detected after welcome email: {e}")
        return Err(
            "RACE_CONDITION_DETECTED",
            "Email already subscribed (detected after email sent)",
            409,
            details={"emailSent": True, "messageId": result.message_id},
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Welcome email sent but storing subscription failed for {fingerprint}: {e}")
        return Err(
            "DATABASE_STORAGE_FAILED",
            "Email sent but subscription storage failed. Please contact support.",
            500,
            details={"emailSent": True, "messageId": result.message_id},
        )

    invalidate_subscriber_count()
    logger.info(f"Subscription {'reactivated' if reactivated else 'created'} for {fingerprint} (source={source})")

    return Ok(
        {
            "subscription": serialize_subscription(subscription),
            "emailSent": True,
            "messageId": result.message_id,
            "subscriberCount": subscriber_count + 1,
            "transactional": True,
        },
        status_code=201,
        code="SUBSCRIBED",
        message="Successfully subscribed! Check your email for a welcome message.",
    )
