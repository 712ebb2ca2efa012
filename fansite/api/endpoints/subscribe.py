"""
Double opt-in subscription endpoints.

- POST /subscribe: validate, rate limit, issue a confirmation token by email
- GET /subscribe: active subscriber count
- GET /subscribe/confirm?token=...: confirm a pending subscription
"""

import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from fansite.core.api_rate_limiter import (
    check_endpoint_rate_limit,
    get_client_info,
    rate_limit_headers,
    rate_limited_response,
)
from fansite.core.database import get_db
from fansite.core.deps import get_pending_store, read_json_body
from fansite.core.double_optin import confirm_subscription, request_subscription
from fansite.core.email_validation import suggest_email_corrections
from fansite.core.pending_store import PendingStoreBackend
from fansite.core.responses import NO_STORE_HEADERS, method_not_allowed, render_result
from fansite.core.result import Ok
from fansite.services.email_service import EmailService, get_email_service
from fansite.services.subscription_service import get_subscriber_count, parse_signup_request

router = APIRouter(tags=["Subscribe"])
logger = logging.getLogger(__name__)

COUNT_CACHE_HEADERS = {"Cache-Control": "public, max-age=300"}


@router.post("/subscribe")
def subscribe(
    request: Request,
    payload: Dict[str, Any] = Depends(read_json_body),
    db: Session = Depends(get_db),
    store: PendingStoreBackend = Depends(get_pending_store),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Start a double opt-in subscription.

    Request body:
        {"email": "...", "source": "web", "tags": [], "metadata": {}}

    Responses:
    - 201 EMAIL_SENT: confirmation email sent, subscription pending
    - 200 ALREADY_SUBSCRIBED: address is already active
    - 400 validation_*: invalid email, blocked domain or bad body
    - 409 ALREADY_PENDING: a confirmation is already outstanding
    - 429 rate_limit_exceeded: too many requests from this client
    - 503 EMAIL_DELIVERY_FAILED: confirmation email could not be sent
    """
    parsed = parse_signup_request(payload)
    if not parsed.ok:
        return render_result(parsed)
    signup = parsed.value

    client = get_client_info(request)
    limit = check_endpoint_rate_limit("subscribe", client.ip_address)
    if not limit.allowed:
        logger.warning(f"Subscribe rate limit exceeded for {client.ip_address}")
        return rate_limited_response(limit)

    result = request_subscription(
        db,
        store,
        email_service,
        signup.email,
        source=signup.source,
        tags=signup.tags,
        metadata=signup.metadata,
    )

    suggestions = suggest_email_corrections(signup.email)
    if result.ok and suggestions:
        result = Ok(
            {**result.value, "suggestions": suggestions},
            status_code=result.status_code,
            code=result.code,
            message=result.message,
        )

    return render_result(result, headers=rate_limit_headers(limit))


@router.get("/subscribe")
def subscriber_count(request: Request, db: Session = Depends(get_db)):
    """Current number of active subscribers (cached for 5 minutes)"""
    client = get_client_info(request)
    limit = check_endpoint_rate_limit("count", client.ip_address)
    if not limit.allowed:
        return rate_limited_response(limit)

    result = get_subscriber_count(db)
    headers = rate_limit_headers(limit)
    if result.ok:
        headers.update(COUNT_CACHE_HEADERS)
    return render_result(result, headers=headers)


@router.get("/subscribe/confirm")
def confirm(
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    store: PendingStoreBackend = Depends(get_pending_store),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Confirm a subscription from the link in the confirmation email.

    Responses:
    - 200 CONFIRMED / ALREADY_CONFIRMED
    - 400 TOKEN_REQUIRED / TOKEN_INVALID_FORMAT
    - 404 TOKEN_NOT_FOUND: unknown, already used or expired token
    - 409 RACE_CONDITION_DETECTED
    """
    result = confirm_subscription(db, store, email_service, token)
    return render_result(result, headers=NO_STORE_HEADERS)


@router.api_route("/subscribe", methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
def subscribe_method_not_allowed():
    return method_not_allowed("GET, POST")


@router.api_route("/subscribe/confirm", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def confirm_method_not_allowed():
    return method_not_allowed("GET")
