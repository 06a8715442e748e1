"""
CRUD operations for Credential model.

- Creating tokens on login
- Looking up active tokens by hash, scoped to one guard
- Revoking single tokens and every token of a principal
- Cleaning up expired and revoked tokens
"""

from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.db.crud.base import BaseDB
from careauth.core.db.models.base import utcnow
from careauth.core.db.models.credential import Credential
from careauth.core.enums import PrincipalKind


class CredentialDB(BaseDB[Credential]):
    """
    Database operations for Credential model.

    Example:
        >>> db = CredentialDB()
        >>> credential = await db.create(session, data={...})
        >>> found = await db.find_active_by_token(session, "sha256hash...", PrincipalKind.CLIENT)
    """

    def __init__(self):
        super().__init__(model=Credential)

    async def find_active_by_token(
        self,
        session: AsyncSession,
        token_hash: str,
        kind: PrincipalKind,
    ) -> Credential | None:
        """
        Find a non-revoked, unexpired credential issued under ``kind``.

        Args:
            session: The database session.
            token_hash: The SHA256 hash of the bearer token.
            kind: The guard the token must belong to.

        Returns:
            The Credential if found and active, None otherwise.
        """
        return await self.get_one_by_conditions(
            session=session,
            conditions=[
                self.model.token_hash == token_hash,
                self.model.principal_kind == kind,
                self.model.revoked.is_(False),
                self.model.expires_at > utcnow(),
            ],
        )

    async def get_active_for_principal(
        self,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
    ) -> Sequence[Credential]:
        return await self.get_all(
            session=session,
            filters=[
                self.model.principal_kind == kind,
                self.model.principal_id == principal_id,
                self.model.revoked.is_(False),
                self.model.expires_at > utcnow(),
            ],
            order_by=[self.model.created_at.desc()],
        )

    async def revoke(
        self,
        session: AsyncSession,
        token_hash: str,
        commit_self: bool = True,
    ) -> bool:
        """
        Revoke a credential by its token hash.

        Returns:
            True if a token was revoked, False if it was unknown or already revoked.
        """
        now = utcnow()
        count = await self.update_by_conditions(
            session=session,
            conditions=[
                self.model.token_hash == token_hash,
                self.model.revoked.is_(False),
            ],
            updates={"revoked": True, "revoked_at": now},
            commit_self=commit_self,
        )
        return count > 0

    async def revoke_all_for_principal(
        self,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
        commit_self: bool = True,
    ) -> int:
        """
        Revoke every non-revoked credential of a principal (logout everywhere).

        Returns:
            The number of tokens that were revoked.
        """
        now = utcnow()
        return await self.update_by_conditions(
            session=session,
            conditions=[
                self.model.principal_kind == kind,
                self.model.principal_id == principal_id,
                self.model.revoked.is_(False),
            ],
            updates={"revoked": True, "revoked_at": now},
            commit_self=commit_self,
        )

    async def cleanup_expired(
        self,
        session: AsyncSession,
        cutoff: datetime,
        commit_self: bool = True,
    ) -> int:
        """
        Delete credentials that expired, or were revoked, before ``cutoff``.

        Returns:
            The number of credentials removed.
        """
        return await self.delete_by_conditions(
            session=session,
            conditions=[
                or_(
                    self.model.expires_at < cutoff,
                    and_(
                        self.model.revoked.is_(True),
                        self.model.revoked_at < cutoff,
                    ),
                )
            ],
            commit_self=commit_self,
        )


__all__ = ["CredentialDB"]
