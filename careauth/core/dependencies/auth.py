"""
Guard dependencies for FastAPI endpoints.

Each actor kind has its own guard. A token issued under one guard never
resolves under another, even when both principals share an email.

Example usage:
    from careauth.core.dependencies.auth import CurrentClient, CurrentAdmin

    @router.get("/me")
    async def get_profile(client: CurrentClient):
        return {"id": client.id}

    @router.get("/admin/stats")
    async def stats(admin: CurrentAdmin):
        ...
"""

from typing import Annotated, Awaitable, Callable

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.db.models import Admin, Client, PrincipalModel, Worker
from careauth.core.dependencies.db import get_async_session
from careauth.core.enums import PrincipalKind
from careauth.core.services.credentials import CredentialService

# auto_error=True returns 401 if no token is sent
bearer_scheme = HTTPBearer(auto_error=True)


async def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> str:
    """Raw bearer token, for logout endpoints."""
    return credentials.credentials


def require_guard(
    kind: PrincipalKind,
) -> Callable[..., Awaitable[PrincipalModel]]:
    """
    Build a dependency that resolves the bearer token under ``kind``'s guard.

    Raises:
        AuthenticationException: Via ``CredentialService.resolve`` when the
            token is unknown, revoked, expired or from another guard.
    """

    async def dependency(
        credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
        session: Annotated[AsyncSession, Depends(get_async_session)],
    ) -> PrincipalModel:
        # Explicit transaction so no implicit one is left open on the session
        async with session.begin():
            return await CredentialService.resolve(
                session, kind, credentials.credentials
            )

    dependency.__name__ = f"get_current_{kind.value}"
    return dependency


get_current_client = require_guard(PrincipalKind.CLIENT)
get_current_worker = require_guard(PrincipalKind.WORKER)
get_current_admin = require_guard(PrincipalKind.ADMIN)

# Type aliases for cleaner dependency injection
CurrentClient = Annotated[Client, Depends(get_current_client)]
CurrentWorker = Annotated[Worker, Depends(get_current_worker)]
CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]
BearerToken = Annotated[str, Depends(get_bearer_token)]


__all__ = [
    "bearer_scheme",
    "get_bearer_token",
    "require_guard",
    "get_current_client",
    "get_current_worker",
    "get_current_admin",
    "CurrentClient",
    "CurrentWorker",
    "CurrentAdmin",
    "BearerToken",
]
