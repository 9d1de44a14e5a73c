"""Core application utilities.

FastAPI dependencies live in ``core.dependencies`` and are imported from
there directly, since they depend on the services package.
"""

from .config import Settings, get_settings
from .database import (
    build_engine,
    build_session_factory,
    close_db,
    get_session,
    init_db,
    session_scope,
)
from .security import (
    SIGNATURE_PREFIX,
    sign_webhook_body,
    verify_webhook_signature,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "build_engine",
    "build_session_factory",
    "get_session",
    "session_scope",
    "init_db",
    "close_db",
    # Security
    "SIGNATURE_PREFIX",
    "sign_webhook_body",
    "verify_webhook_signature",
]
