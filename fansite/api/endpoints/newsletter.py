"""
Newsletter endpoints.

- POST /newsletter/subscribe: welcome-first subscription (no confirmation step)
- GET /newsletter/subscribe: active subscriber count
- POST /newsletter/unsubscribe: unsubscribe by token or by email + confirm
- GET /newsletter/unsubscribe?token=...: how to complete an unsubscribe
- GET /newsletter/stats: subscriber statistics (API key required)
"""

import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from fansite.core.api_rate_limiter import (
    check_endpoint_rate_limit,
    get_client_info,
    rate_limit_headers,
    rate_limited_response,
)
from fansite.core.cache import stats_cache
from fansite.core.config import settings
from fansite.core.database import get_db
from fansite.core.deps import get_pending_store, read_json_body, require_stats_access
from fansite.core.email_validation import validate_email
from fansite.core.pending_store import PendingStoreBackend
from fansite.core.rate_limiter import REASON_TOKEN_REUSE
from fansite.core.responses import (
    error_response,
    method_not_allowed,
    render_result,
    success_response,
    validation_details,
)
from fansite.schemas.newsletter import StatsQuery, UnsubscribeEmailRequest, UnsubscribeTokenRequest
from fansite.services import unsubscribe_service
from fansite.services.email_service import EmailService, get_email_service
from fansite.services.stats_service import compute_stats, stats_cache_key
from fansite.services.subscription_service import (
    get_subscriber_count,
    parse_signup_request,
    subscribe_with_welcome,
)

router = APIRouter(prefix="/newsletter", tags=["Newsletter"])
logger = logging.getLogger(__name__)

UNSUBSCRIBE_SCHEMA_MESSAGE = "Provide either a valid unsubscribe token or an email with confirm: true"


@router.post("/subscribe")
def newsletter_subscribe(
    request: Request,
    payload: Dict[str, Any] = Depends(read_json_body),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Subscribe and send the welcome email before storing the subscription.

    Responses:
    - 201: subscribed, welcome email sent
    - 400 validation_*: invalid email, blocked domain or bad body
    - 409 ALREADY_SUBSCRIBED / RACE_CONDITION_DETECTED
    - 429 rate_limit_exceeded
    - 500 DATABASE_STORAGE_FAILED: email sent, storage failed
    - 503 EMAIL_DELIVERY_FAILED: nothing stored
    """
    parsed = parse_signup_request(payload)
    if not parsed.ok:
        return render_result(parsed)
    signup = parsed.value

    client = get_client_info(request)
    limit = check_endpoint_rate_limit("subscribe", client.ip_address)
    if not limit.allowed:
        logger.warning(f"Newsletter subscribe rate limit exceeded for {client.ip_address}")
        return rate_limited_response(limit)

    result = subscribe_with_welcome(
        db,
        email_service,
        signup.email,
        source=signup.source,
        tags=signup.tags,
        metadata=signup.metadata,
    )
    return render_result(result, headers=rate_limit_headers(limit))


@router.get("/subscribe")
def newsletter_subscriber_count(request: Request, db: Session = Depends(get_db)):
    """Current number of active subscribers (cached for 5 minutes)"""
    client = get_client_info(request)
    limit = check_endpoint_rate_limit("count", client.ip_address)
    if not limit.allowed:
        return rate_limited_response(limit)

    result = get_subscriber_count(db)
    headers = rate_limit_headers(limit)
    if result.ok:
        headers["Cache-Control"] = "public, max-age=300"
    return render_result(result, headers=headers)


@router.post("/unsubscribe")
def unsubscribe(
    request: Request,
    payload: Dict[str, Any] = Depends(read_json_body),
    db: Session = Depends(get_db),
):
    """
    Unsubscribe by token ({"token", "reason"?, "feedback"?}) or by email
    ({"email", "confirm": true}).

    Repeating an unsubscribe is safe and returns 200. The body is validated
    before rate limiting, so only well-formed requests use up a token. A
    token seen twice in the rate limit window is only accepted again if it
    already belongs to an unsubscribed subscription.
    """
    client = get_client_info(request)

    if "token" in payload:
        schema = UnsubscribeTokenRequest
    elif "email" in payload:
        schema = UnsubscribeEmailRequest
    else:
        return error_response("validation_schema", UNSUBSCRIBE_SCHEMA_MESSAGE)

    try:
        body = schema.model_validate(payload)
    except ValidationError as e:
        return error_response(
            "validation_schema", UNSUBSCRIBE_SCHEMA_MESSAGE,
            details={"details": validation_details(e.errors())},
        )

    email_check = None
    if isinstance(body, UnsubscribeEmailRequest):
        email_check = validate_email(body.email)
        if not email_check.is_valid:
            return error_response(email_check.code, email_check.error)

    token = body.token if isinstance(body, UnsubscribeTokenRequest) else None

    limit = check_endpoint_rate_limit("unsubscribe", client.ip_address, token=token)
    if not limit.allowed:
        if limit.reason == REASON_TOKEN_REUSE:
            if unsubscribe_service.token_already_unsubscribed(db, token):
                return render_result(unsubscribe_service.unsubscribe_by_token(db, token, client))
            logger.warning(f"Unsubscribe token reuse from {client.ip_address}")
            return error_response(
                code="security_token_reuse",
                message="This unsubscribe link has already been used",
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            )
        logger.warning(f"Unsubscribe rate limit exceeded for {client.ip_address}")
        return rate_limited_response(limit)

    headers = rate_limit_headers(limit)

    if token is not None:
        result = unsubscribe_service.unsubscribe_by_token(
            db,
            token,
            client,
            reason=body.reason.value if body.reason else None,
            feedback=body.feedback,
        )
    else:
        result = unsubscribe_service.unsubscribe_by_email(db, email_check.sanitized, client)
    return render_result(result, headers=headers)


@router.get("/unsubscribe")
def unsubscribe_info(token: Optional[str] = Query(None)):
    """
    Landing information for an unsubscribe link.

    Read-only; the unsubscribe itself is completed with a POST.
    """
    if not token:
        return error_response("VALIDATION_ERROR", "Unsubscribe token is required")

    try:
        UnsubscribeTokenRequest.model_validate({"token": token})
    except ValidationError:
        return error_response("VALIDATION_ERROR", "Invalid unsubscribe token format")

    return success_response(
        {
            "token": token,
            "method": "POST",
            "endpoint": f"{settings.API_PREFIX}/newsletter/unsubscribe",
            "body": {"token": token, "reason": "optional", "feedback": "optional"},
        },
        message="Send a POST request with this token to complete your unsubscription.",
    )


@router.get("/stats")
def newsletter_stats(
    request: Request,
    auth_method: str = Depends(require_stats_access),
    db: Session = Depends(get_db),
    store: PendingStoreBackend = Depends(get_pending_store),
):
    """
    Subscriber statistics.

    Requires "Authorization: Bearer <key>" or "X-API-Key: <key>".
    Query: period, start_date, end_date, group_by, source, tag,
    include_summary, include_period_data, include_tags, limit.
    """
    client = get_client_info(request)
    limit = check_endpoint_rate_limit("stats", client.ip_address)
    if not limit.allowed:
        return rate_limited_response(limit)

    headers = rate_limit_headers(limit)

    try:
        params = StatsQuery.model_validate(dict(request.query_params))
    except ValidationError as e:
        return error_response(
            "validation_query_params", "Invalid query parameters", headers=headers,
            details={"details": validation_details(e.errors())},
        )

    cache_key = stats_cache_key(params, auth_method)
    cached = stats_cache.get(cache_key)
    if cached is not None:
        headers["X-Cache"] = "HIT"
        return success_response(cached[0], headers=headers)

    result = compute_stats(db, store, params)
    if result.ok:
        ttl = settings.stats_cache_ttl
        stats_cache.set(cache_key, result.value, ttl)
        headers["X-Cache"] = "MISS"
        headers["Cache-Control"] = f"private, max-age={ttl}"
    return render_result(result, headers=headers)


@router.api_route("/subscribe", methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
def newsletter_subscribe_method_not_allowed():
    return method_not_allowed("GET, POST")


@router.api_route("/unsubscribe", methods=["PUT", "PATCH", "DELETE"], include_in_schema=False)
def unsubscribe_method_not_allowed():
    return method_not_allowed("GET, POST")


@router.api_route("/stats", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
def stats_method_not_allowed():
    return method_not_allowed("GET")
