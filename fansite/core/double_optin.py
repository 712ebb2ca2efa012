"""
Core double opt-in logic.

Handles issuing, confirming and expiring the single-use 32-character
confirmation tokens that turn a signup into an active subscription.
"""

import logging
import re
import secrets
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fansite.core.cache import invalidate_subscriber_count
from fansite.core.config import settings
from fansite.core.database import isoformat_utc, utcnow
from fansite.core.logging_config import email_fingerprint
from fansite.core.pending_store import (
    PendingAlreadyExists,
    PendingRecord,
    PendingStoreBackend,
    PendingStoreError,
)
from fansite.core.result import Err, Ok, Result
from fansite.crud import subscription as crud_subscription
from fansite.services.email_service import EmailService

logger = logging.getLogger(__name__)

# Token constants
TOKEN_BYTES = 16
TOKEN_PATTERN = re.compile(r"^[a-f0-9]{32}$")

ALREADY_PENDING_MESSAGE = "A confirmation email was already sent to this address. Please check your inbox."
TOKEN_NOT_FOUND_MESSAGE = "Confirmation token not found or expired. Please subscribe again."


def generate_confirmation_token() -> str:
    """
    Generate a confirmation token.

    Returns:
        str: 32 lowercase hex characters from a cryptographically secure source
    """
    return secrets.token_hex(TOKEN_BYTES)


def is_valid_token_format(token: Optional[str]) -> bool:
    return bool(token) and TOKEN_PATTERN.match(token) is not None


def request_subscription(
    db: Session,
    store: PendingStoreBackend,
    email_service: EmailService,
    email: str,
    source: str = "web",
    tags: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ttl_hours: Optional[int] = None,
) -> Result:
    """
    Start a double opt-in subscription.

    - Already active: idempotent success, nothing sent
    - Live pending token for the email: ALREADY_PENDING, nothing sent
    - Otherwise: new token stored, confirmation email sent; if the send
      fails the token is removed again

    Args:
        db: Database session
        store: Pending confirmation store
        email_service: Email dispatcher
        email: Sanitized email address
        source: Signup source
        tags: Optional tags
        metadata: Optional metadata
        ttl_hours: Token lifetime (defaults to PENDING_TOKEN_TTL_HOURS)

    Returns:
        Result: Ok (201 EMAIL_SENT / 200 ALREADY_SUBSCRIBED) or Err
    """
    ttl_hours = ttl_hours or settings.PENDING_TOKEN_TTL_HOURS
    fingerprint = email_fingerprint(email)

    try:
        existing = crud_subscription.get_by_email(db, email)
    except SQLAlchemyError as e:
        logger.error(f"Subscription lookup failed for {fingerprint}: {e}")
        return Err("database_unavailable", "Service temporarily unavailable. Please try again later.", 500)

    if existing is not None and existing.is_active:
        logger.info(f"Subscribe request for already active subscriber {fingerprint}")
        return Ok(
            {"email": email, "status": existing.status.value},
            status_code=200,
            code="ALREADY_SUBSCRIBED",
            message="This email is already subscribed.",
        )

    try:
        if store.find_live_by_email(email, ttl_hours) is not None:
            return Err("ALREADY_PENDING", ALREADY_PENDING_MESSAGE, 409)

        record = store.create(PendingRecord(
            email=email,
            token=generate_confirmation_token(),
            created_at=utcnow(),
            source=source,
            tags=list(tags or []),
            metadata=dict(metadata or {}),
        ), ttl_hours=ttl_hours)
    except PendingAlreadyExists:
        return Err("ALREADY_PENDING", ALREADY_PENDING_MESSAGE, 409)
    except PendingStoreError as e:
        logger.error(f"Failed to store pending confirmation for {fingerprint}: {e}")
        return Err("DATABASE_STORAGE_FAILED", "Could not save your subscription. Please try again later.", 500)

    result = email_service.send_confirmation_email(email, record.token, expiry_hours=ttl_hours)

    if not result.success:
        logger.error(f"Confirmation email failed for {fingerprint}: {result.error}")
        try:
            store.delete(record.token)
        except PendingStoreError as e:
            logger.error(f"Failed to remove pending confirmation after send failure: {e}")
        return Err(
            "EMAIL_DELIVERY_FAILED",
            "Failed to send confirmation email. Please try again later.",
            503,
        )

    logger.info(f"Confirmation email issued for {fingerprint} (source={source})")
    return Ok(
        {
            "email": email,
            "status": "pending",
            "expiresAt": isoformat_utc(record.expires_at(ttl_hours)),
        },
        status_code=201,
        code="EMAIL_SENT",
        message="Please check your email to confirm your subscription.",
    )


def confirm_subscription(
    db: Session,
    store: PendingStoreBackend,
    email_service: EmailService,
    token: Optional[str],
    ttl_hours: Optional[int] = None,
) -> Result:
    """
    Confirm a pending subscription from its emailed token.

    Unknown, already used and expired tokens all yield TOKEN_NOT_FOUND.
    The subscription write and the token removal commit together; if the
    commit fails the token is put back so the link can be retried.

    Args:
        db: Database session
        store: Pending confirmation store
        email_service: Email dispatcher (welcome email)
        token: Token from the confirmation link
        ttl_hours: Token lifetime (defaults to PENDING_TOKEN_TTL_HOURS)

    Returns:
        Result: Ok (CONFIRMED / ALREADY_CONFIRMED) or Err
    """
    ttl_hours = ttl_hours or settings.PENDING_TOKEN_TTL_HOURS

    if not token:
        return Err("TOKEN_REQUIRED", "Confirmation token is required", 400)

    if not is_valid_token_format(token):
        return Err("TOKEN_INVALID_FORMAT", "Invalid confirmation token format", 400)

    try:
        record = store.get_live(token, ttl_hours)
    except PendingStoreError as e:
        logger.error(f"Pending lookup failed during confirmation: {e}")
        return Err("database_unavailable", "Service temporarily unavailable. Please try again later.", 500)

    if record is None:
        return Err("TOKEN_NOT_FOUND", TOKEN_NOT_FOUND_MESSAGE, 404)

    fingerprint = email_fingerprint(record.email)

    try:
        subscription, already_active = crud_subscription.activate_confirmed(
            db, record.email, source=record.source, tags=record.tags, metadata=record.metadata
        )

        if not store.consume(token):
            # Another request confirmed this token first
            db.rollback()
            return Err("TOKEN_NOT_FOUND", TOKEN_NOT_FOUND_MESSAGE, 404)

        db.commit()
        db.refresh(subscription)

    except IntegrityError as e:
        db.rollback()
        _restore(store, record)
        logger.warning(f"Concurrent confirmation detected for {fingerprint}: {e}")
        return Err(
            "RACE_CONDITION_DETECTED",
            "This subscription was modified concurrently. Please try again.",
            409,
        )
    except (SQLAlchemyError, PendingStoreError) as e:
        db.rollback()
        _restore(store, record)
        logger.error(f"Failed to store confirmed subscription for {fingerprint}: {e}")
        return Err(
            "DATABASE_STORAGE_FAILED",
            "Could not complete your subscription. Please try again later.",
            500,
        )

    invalidate_subscriber_count()

    if already_active:
        logger.info(f"Token confirmed for already active subscriber {fingerprint}")
    else:
        logger.info(f"Subscription confirmed for {fingerprint}")
        if settings.SEND_WELCOME_ON_CONFIRM:
            welcome = email_service.send_welcome_email(subscription)
            if not welcome.success:
                logger.warning(f"Welcome email failed for {fingerprint}: {welcome.error}")

    return Ok(
        {
            "email": subscription.email,
            "status": subscription.status.value,
            "confirmedAt": isoformat_utc(subscription.confirmed_at),
        },
        status_code=200,
        code="ALREADY_CONFIRMED" if already_active else "CONFIRMED",
        message="Your subscription is already active." if already_active else "Your subscription has been confirmed.",
    )


def _restore(store: PendingStoreBackend, record: PendingRecord) -> None:
    try:
        store.restore(record)
    except PendingStoreError as e:
        logger.error(f"Failed to restore pending confirmation: {e}")


def cleanup_expired_pending(store: PendingStoreBackend, ttl_hours: Optional[int] = None) -> int:
    """
    Remove expired pending confirmations.

    Lookups already ignore expired tokens; this keeps storage from growing.
    Run periodically via a Celery task.

    Returns:
        int: Number of records removed
    """
    return store.purge_expired(ttl_hours or settings.PENDING_TOKEN_TTL_HOURS)
