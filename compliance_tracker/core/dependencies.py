"""FastAPI dependencies for sessions, scheduler triggers and shared clients."""

import hmac
import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import get_session
from .token_cache import ExpiringTokenCache

logger = logging.getLogger(__name__)


def verify_cron_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_cron_secret: Annotated[str | None, Header()] = None,
) -> None:
    """
    Guard scheduler-invoked endpoints.

    When CRON_SECRET is configured the caller must send it in the
    ``x-cron-secret`` header. Without it the endpoints are open, which is
    only intended for local development.
    """
    if not settings.cron_secret:
        return

    if not x_cron_secret or not hmac.compare_digest(
        x_cron_secret.encode("utf-8"), settings.cron_secret.encode("utf-8")
    ):
        logger.warning("Rejected scheduler call with invalid x-cron-secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_token_cache(request: Request) -> ExpiringTokenCache:
    """Process-wide token cache created in the application lifespan."""
    cache = getattr(request.app.state, "token_cache", None)
    if cache is None:
        cache = ExpiringTokenCache(ttl_seconds=get_settings().kyc_token_ttl_minutes * 60)
        request.app.state.token_cache = cache
    return cache


# Type aliases for cleaner dependency injection
SessionDep = Annotated[AsyncSession, Depends(get_session)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
CronAuthDep = Annotated[None, Depends(verify_cron_secret)]
TokenCacheDep = Annotated[ExpiringTokenCache, Depends(get_token_cache)]
