"""
Credential Service: per-guard authentication and bearer token lifecycle.

Each guard (client, worker, admin) authenticates against its own principal
registry only; an email that exists in the client registry is unknown to the
admin guard. Issued tokens are opaque, bound to one guard and one principal,
and stored only as SHA256 hashes.

Example usage:
    from careauth.core.services.credentials import CredentialService

    issued = await CredentialService.authenticate(
        session=db_session,
        guard=PrincipalKind.WORKER,
        email="worker@example.com",
        password="SecurePassword123!",
    )

    await CredentialService.revoke(db_session, issued.token)
    await CredentialService.revoke_all(db_session, PrincipalKind.WORKER, issued.principal_id)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.config import auth_logger, settings
from careauth.core.db.crud import credential_db, get_registry
from careauth.core.db.models.base import utcnow
from careauth.core.db.models.principal import Admin, PrincipalModel
from careauth.core.enums import PrincipalKind
from careauth.core.exceptions.types import (
    AccessDeniedException,
    AuthenticationException,
    InvalidCredentialsException,
)
from careauth.core.utils import (
    generate_token,
    hash_password,
    hash_token,
    mask_email,
    verify_password,
)

__all__ = ["CredentialService", "IssuedCredential"]


@lru_cache()
def _unknown_principal_hash() -> str:
    """Hash checked for unknown emails, so they cost the same bcrypt round as known ones."""
    return hash_password(generate_token())


@dataclass
class IssuedCredential:
    """
    A freshly issued bearer credential.

    Attributes:
        token: The opaque bearer token. Only returned here, never stored.
        guard: The guard the token is valid for.
        principal_id: The authenticated principal.
        credential_id: Id of the stored credential row.
        expires_at: When the token stops being accepted.
        token_type: Always "bearer".
    """

    token: str
    guard: PrincipalKind
    principal_id: int
    credential_id: int
    expires_at: datetime
    token_type: Literal["bearer"] = "bearer"


class CredentialService:
    """
    Authenticates principals per guard and manages their bearer tokens.

    Credential state machine: issued -> revoked (terminal).
    """

    # =========================================================================
    # Authentication
    # =========================================================================

    @classmethod
    async def authenticate(
        cls,
        session: AsyncSession,
        guard: PrincipalKind,
        email: str,
        password: str,
        device_info: str | None = None,
    ) -> IssuedCredential:
        """
        Authenticate against one guard's registry and issue a token.

        Args:
            session: The database session.
            guard: Selects the registry; other registries are never consulted.
            email: The principal's email.
            password: The plain text password.
            device_info: Optional client/device description stored on the token.

        Returns:
            IssuedCredential: The new token and its metadata.

        Raises:
            InvalidCredentialsException: Unknown email for this guard, or wrong password.
            AccessDeniedException: The account is inactive, or lacks the admin
                privilege on the admin guard.
        """
        registry = get_registry(guard)
        principal = await registry.find_by_email(session, email)
        target = f"guard={guard.value}, email={mask_email(email)}"

        if principal is None:
            verify_password(password, _unknown_principal_hash())
            auth_logger.warning(f"Signin failed: unknown principal, {target}")
            raise InvalidCredentialsException()

        if not verify_password(password, principal.password_hash):
            auth_logger.warning(f"Signin failed: wrong password, {target}")
            raise InvalidCredentialsException()

        cls._check_access(guard, principal, target)

        issued = await cls._issue(session, guard, principal.id, device_info)
        await registry.record_login(session, principal.id)

        auth_logger.info(
            f"Signin: {target}, principal_id={principal.id}, "
            f"credential_id={issued.credential_id}"
        )
        return issued

    @classmethod
    def _check_access(
        cls, guard: PrincipalKind, principal: PrincipalModel, target: str
    ) -> None:
        if not principal.is_active:
            auth_logger.warning(f"Signin denied: account inactive, {target}")
            raise AccessDeniedException(
                "This account has been deactivated.", reason="inactive"
            )

        match guard:
            case PrincipalKind.ADMIN:
                if not (isinstance(principal, Admin) and principal.is_admin):
                    auth_logger.warning(
                        f"Signin denied: missing admin privilege, {target}"
                    )
                    raise AccessDeniedException(
                        "Administrative privileges required.", reason="not_admin"
                    )
            case PrincipalKind.CLIENT | PrincipalKind.WORKER:
                pass

    # =========================================================================
    # Token Management
    # =========================================================================

    @classmethod
    async def _issue(
        cls,
        session: AsyncSession,
        guard: PrincipalKind,
        principal_id: int,
        device_info: str | None = None,
    ) -> IssuedCredential:
        token = generate_token()
        expires_at = utcnow() + timedelta(
            minutes=settings.credential_ttl_minutes(guard.value)
        )
        credential = await credential_db.create(
            session=session,
            data={
                "principal_kind": guard,
                "principal_id": principal_id,
                "token_hash": hash_token(token),
                "expires_at": expires_at,
                "device_info": device_info,
            },
        )
        return IssuedCredential(
            token=token,
            guard=guard,
            principal_id=principal_id,
            credential_id=credential.id,
            expires_at=expires_at,
        )

    @classmethod
    async def resolve(
        cls,
        session: AsyncSession,
        guard: PrincipalKind,
        token: str,
    ) -> PrincipalModel:
        """
        Resolve a bearer token to its principal within one guard.

        Raises:
            AuthenticationException: If the token is unknown, revoked, expired,
                issued under another guard, or its principal is gone or inactive.
        """
        credential = await credential_db.find_active_by_token(
            session, hash_token(token), guard
        )
        if credential is None:
            auth_logger.warning(f"Token rejected: no active credential, guard={guard.value}")
            raise AuthenticationException("Invalid or expired token.")

        principal = await get_registry(guard).find_by_id(
            session, credential.principal_id
        )
        if principal is None or not principal.is_active:
            auth_logger.warning(
                f"Token rejected: principal unavailable, guard={guard.value}, "
                f"principal_id={credential.principal_id}"
            )
            raise AuthenticationException("Invalid or expired token.")

        return principal

    @classmethod
    async def revoke(cls, session: AsyncSession, token: str) -> bool:
        """
        Revoke a single token (logout). Revoking twice is a no-op.

        Returns:
            bool: True if this call revoked the token.
        """
        revoked = await credential_db.revoke(session, hash_token(token))
        if revoked:
            auth_logger.info("Credential revoked")
        return revoked

    @classmethod
    async def revoke_all(
        cls,
        session: AsyncSession,
        guard: PrincipalKind,
        principal_id: int,
        commit_self: bool = True,
    ) -> int:
        """
        Revoke every active token of a principal (logout everywhere).

        Returns:
            int: Number of tokens revoked.
        """
        count = await credential_db.revoke_all_for_principal(
            session, guard, principal_id, commit_self=commit_self
        )
        auth_logger.info(
            f"All credentials revoked: guard={guard.value}, "
            f"principal_id={principal_id}, count={count}"
        )
        return count

    @classmethod
    async def get_active_sessions(
        cls,
        session: AsyncSession,
        guard: PrincipalKind,
        principal_id: int,
    ):
        """List the principal's active credentials, newest first."""
        return await credential_db.get_active_for_principal(
            session, guard, principal_id
        )
