"""Compliance Tracker: Main FastAPI Application.

Notification pipelines (status digests, daily reminders) and legal
research enrichment for a statutory compliance calendar.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import ExpiringTokenCache, close_db, get_settings, init_db
from .schemas import ErrorResponse

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared token cache and, outside production, missing tables."""
    logger.info(f"Starting {settings.app_name} ({settings.environment})")

    # One token cache per process, shared by every KYC request
    app.state.token_cache = ExpiringTokenCache(ttl_seconds=settings.kyc_token_ttl_minutes * 60)

    # Skip init_db in production (tables are managed by migrations)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Compliance Tracker API

    Notification and enrichment pipelines for a statutory compliance calendar.

    ### Key Features

    - **Status Digests**: Status changes are queued and flushed as one email per recipient.
    - **Daily Reminders**: Due-soon and overdue requirements, once per user per day.
    - **Enrichment**: Legal section, penalty clause and business impact per requirement.
    - **One-click Unsubscribe**: Signed links that update email preferences.

    Scheduler endpoints under `/cron` require the `x-cron-secret` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

cors_origins = [
    "http://localhost:3000",
    "http://localhost:8000",
]
for origin in settings.allowed_origins:
    if origin and origin not in cors_origins:
        cors_origins.append(origin)
if settings.site_url.rstrip("/") not in cors_origins:
    cors_origins.append(settings.site_url.rstrip("/"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log anything the routes did not handle and answer with the error envelope."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")

    message = "An unexpected error occurred"
    if settings.debug or settings.environment != "production":
        message = f"{message}: {str(exc)[:200]}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=message,
            details=[],
        ).model_dump(),
    )


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness plus which external integrations are configured."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "email_enabled": settings.email_enabled,
        "search_enabled": settings.search_enabled,
        "llm_enabled": settings.llm_enabled,
        "kyc_enabled": settings.kyc_enabled,
    }


app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "compliance_tracker.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
