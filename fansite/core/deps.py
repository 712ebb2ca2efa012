"""
FastAPI dependencies shared by the newsletter endpoints.

- JSON body parsing with envelope error codes
- pending store selection
- stats API key authentication
"""

import hmac
from typing import Any, Dict, Optional
from fastapi import Depends, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from fansite.core.config import settings
from fansite.core.database import get_db
from fansite.core.pending_store import PendingStoreBackend, get_pending_store_backend
from fansite.core.responses import ApiError

# Optional credentials: the dependency decides which one (if any) is valid
bearer_scheme = HTTPBearer(auto_error=False)
api_key_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


async def read_json_body(request: Request) -> Dict[str, Any]:
    """
    Parse the request body as a JSON object.

    Raises:
        ApiError 400 validation_content_type: Content-Type is not application/json
        ApiError 400 validation_json: Body is not valid JSON or not an object
    """
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type.lower():
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            "validation_content_type",
            "Content-Type must be application/json",
        )

    try:
        payload = await request.json()
    except ValueError:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "validation_json", "Invalid JSON in request body")

    if not isinstance(payload, dict):
        raise ApiError(status.HTTP_400_BAD_REQUEST, "validation_json", "Request body must be a JSON object")

    return payload


def get_pending_store(db: Session = Depends(get_db)) -> PendingStoreBackend:
    """Pending confirmation store for the current request"""
    return get_pending_store_backend(db)


def _matches_api_key(candidate: Optional[str]) -> bool:
    if not candidate:
        return False
    # Compare against every key so timing does not reveal which one matched
    matched = False
    for key in settings.STATS_API_KEYS:
        if key and hmac.compare_digest(candidate.encode("utf-8"), key.encode("utf-8")):
            matched = True
    return matched


def require_stats_access(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    api_key: Optional[str] = Depends(api_key_scheme),
) -> str:
    """
    Authenticate a stats request.

    Accepts either "Authorization: Bearer <key>" or "X-API-Key: <key>",
    matched against STATS_API_KEYS in constant time.

    Returns:
        str: Authentication method used ("bearer" or "api_key")

    Raises:
        ApiError 401 security_unauthorized: No valid credentials
    """
    if credentials is not None and _matches_api_key(credentials.credentials):
        return "bearer"

    if _matches_api_key(api_key):
        return "api_key"

    raise ApiError(
        status.HTTP_401_UNAUTHORIZED,
        "security_unauthorized",
        "Authentication required. Provide a Bearer token or X-API-Key header.",
        headers={"WWW-Authenticate": "Bearer"},
    )
