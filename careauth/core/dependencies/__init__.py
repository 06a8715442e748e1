"""
Shared dependencies for FastAPI endpoints.
"""

from careauth.core.dependencies.auth import (
    BearerToken,
    CurrentAdmin,
    CurrentClient,
    CurrentWorker,
    bearer_scheme,
    get_bearer_token,
    get_current_admin,
    get_current_client,
    get_current_worker,
    require_guard,
)
from careauth.core.dependencies.db import get_async_session

__all__ = [
    "BearerToken",
    "CurrentAdmin",
    "CurrentClient",
    "CurrentWorker",
    "bearer_scheme",
    "get_bearer_token",
    "get_current_admin",
    "get_current_client",
    "get_current_worker",
    "require_guard",
    "get_async_session",
]
