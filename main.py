import logging
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from starlette.exceptions import HTTPException as StarletteHTTPException

from fansite.core.cache import count_cache, stats_cache
from fansite.core.config import settings
from fansite.core.database import init_db
from fansite.core.logging_config import setup_logging
from fansite.core.rate_limiter import rate_limiter
from fansite.core.responses import (
    ApiError,
    api_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fansite.api.endpoints import health, newsletter, subscribe

# Configure logging
setup_logging(settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting up {settings.PROJECT_NAME} ({settings.ENVIRONMENT})...")
    init_db()
    rate_limiter.start_sweeper(
        settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        extra_tasks=[count_cache.purge_expired, stats_cache.purge_expired],
    )

    yield

    # Shutdown
    rate_limiter.stop_sweeper()
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Newsletter subscription API for the Silksong fan site",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Every error, including framework ones, uses the response envelope
app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Include routers
app.include_router(health.router, prefix=settings.API_PREFIX)
app.include_router(subscribe.router, prefix=settings.API_PREFIX)
app.include_router(newsletter.router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    """Root endpoint - API health check"""
    return {
        "message": settings.PROJECT_NAME,
        "version": "1.0.0",
        "status": "healthy"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,  # Enable auto-reload during development
        log_level="info"
    )
