"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    create_engine_for_url,
    engine,
    get_session,
    get_session_context,
    init_db,
    upsert_statement,
)
from .dependencies import (
    CronAuthDep,
    SessionDep,
    SettingsDep,
    TokenCacheDep,
    get_token_cache,
    verify_cron_secret,
)
from .security import (
    UnsubscribeClaim,
    UnsubscribeKind,
    generate_unsubscribe_token,
    get_email_preferences_url,
    get_unsubscribe_url,
    verify_unsubscribe_token,
)
from .token_cache import ExpiringTokenCache

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "create_engine_for_url",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    "upsert_statement",
    # Dependencies
    "CronAuthDep",
    "SessionDep",
    "SettingsDep",
    "TokenCacheDep",
    "get_token_cache",
    "verify_cron_secret",
    # Security
    "UnsubscribeClaim",
    "UnsubscribeKind",
    "generate_unsubscribe_token",
    "verify_unsubscribe_token",
    "get_unsubscribe_url",
    "get_email_preferences_url",
    # Token cache
    "ExpiringTokenCache",
]
