"""
Health check endpoints.

Provides liveness and dependency status for the database and email provider.
"""

import logging
from typing import Any, Dict
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from sqlalchemy import text

from fansite.core.config import settings
from fansite.core.database import get_db
from fansite.core.rate_limiter import rate_limiter
from fansite.core.responses import timestamp

router = APIRouter(tags=["Health"])
logger = logging.getLogger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, str]:
    """
    Basic health check endpoint.

    Returns 200 OK if the service is running.
    Use this for simple uptime monitoring and load balancer health checks.
    """
    return {
        "status": "healthy",
        "timestamp": timestamp()
    }


@router.get("/health/detailed", status_code=status.HTTP_200_OK)
def detailed_health_check(db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Detailed health check with dependency status.

    Checks:
    - Database connectivity
    - Email provider configuration
    - Rate limiter state
    """
    health_status = {
        "status": "healthy",
        "timestamp": timestamp(),
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful"
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database error: {str(e)}" if settings.expose_error_details else "Database unavailable"
        }

    if settings.RESEND_API_KEY:
        health_status["checks"]["email"] = {"status": "healthy", "message": "Resend API key configured"}
    else:
        health_status["status"] = "degraded" if health_status["status"] == "healthy" else health_status["status"]
        health_status["checks"]["email"] = {"status": "unconfigured", "message": "RESEND_API_KEY is not set"}

    health_status["checks"]["rate_limiter"] = {
        "status": "healthy",
        "tracked_keys": len(rate_limiter),
    }
    health_status["checks"]["pending_store"] = {"backend": settings.PENDING_STORE_BACKEND}

    return health_status
