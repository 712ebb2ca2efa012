"""
Endpoint rate limits.

Per-client limits for the public newsletter endpoints, keyed by client IP.
Production limits come from settings; in development they are multiplied by
DEVELOPMENT_RATE_LIMIT_MULTIPLIER.

Client IPs are read from forwarding headers. Without a trusted proxy that
overwrites these headers, clients can spoof them and spread requests across
buckets.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse

from fansite.core.config import settings
from fansite.core.rate_limiter import RateLimitResult, rate_limiter
from fansite.core.responses import error_response

USER_AGENT_MAX_LENGTH = 500


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str
    user_agent: str


def _rule(max_requests: int, window_seconds: int) -> RateLimitRule:
    if settings.is_development:
        max_requests *= settings.DEVELOPMENT_RATE_LIMIT_MULTIPLIER
    return RateLimitRule(max_requests=max_requests, window_seconds=window_seconds)


def get_rate_limit_rule(namespace: str) -> RateLimitRule:
    """
    Resolve the configured limit for an endpoint namespace.

    Args:
        namespace: One of "subscribe", "unsubscribe", "stats", "count"

    Returns:
        RateLimitRule for the current environment
    """
    rules = {
        "subscribe": (settings.SUBSCRIBE_RATE_LIMIT_MAX_REQUESTS, settings.SUBSCRIBE_RATE_LIMIT_WINDOW_SECONDS),
        "unsubscribe": (settings.UNSUBSCRIBE_RATE_LIMIT_MAX_REQUESTS, settings.UNSUBSCRIBE_RATE_LIMIT_WINDOW_SECONDS),
        "stats": (settings.STATS_RATE_LIMIT_MAX_REQUESTS, settings.STATS_RATE_LIMIT_WINDOW_SECONDS),
        "count": (settings.COUNT_RATE_LIMIT_MAX_REQUESTS, settings.COUNT_RATE_LIMIT_WINDOW_SECONDS),
    }
    max_requests, window_seconds = rules[namespace]
    return _rule(max_requests, window_seconds)


def check_endpoint_rate_limit(namespace: str, identifier: str, token: Optional[str] = None) -> RateLimitResult:
    """
    Count one request from a client against an endpoint's limit.

    Args:
        namespace: Endpoint namespace (see get_rate_limit_rule)
        identifier: Client identifier, normally the IP address
        token: Optional one-shot token tracked for reuse within the window

    Returns:
        RateLimitResult
    """
    rule = get_rate_limit_rule(namespace)
    return rate_limiter.check(
        key=f"{namespace}:{identifier}",
        max_requests=rule.max_requests,
        window_seconds=rule.window_seconds,
        token=token,
    )


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    """
    Standard rate limit headers for a response.

    Retry-After is only present when the request was denied.
    """
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_time)),
    }
    if not result.allowed and result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def get_client_ip(request: Request) -> str:
    """
    Extract the client's IP address from the request.

    Checks X-Forwarded-For (first entry), then CF-Connecting-IP, then
    X-Real-IP.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address as string, or "unknown"
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first (client IP)
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    for header in ("CF-Connecting-IP", "X-Real-IP"):
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    return "unknown"


def get_client_info(request: Request) -> ClientInfo:
    user_agent = request.headers.get("User-Agent", "unknown")
    return ClientInfo(
        ip_address=get_client_ip(request),
        user_agent=user_agent[:USER_AGENT_MAX_LENGTH],
    )


def rate_limited_response(result: RateLimitResult) -> JSONResponse:
    """429 envelope for a request denied by the window limit"""
    return error_response(
        code="rate_limit_exceeded",
        message="Too many requests. Please try again later.",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        headers=rate_limit_headers(result),
        details={"retryAfter": result.retry_after},
    )
