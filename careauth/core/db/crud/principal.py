"""
Principal registries, one per actor kind.

Each registry owns its table exclusively. The same email may exist in more
than one registry; those rows are unrelated principals.
"""

from datetime import datetime
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.db.crud.base import BaseDB
from careauth.core.db.models.base import utcnow
from careauth.core.db.models.principal import Admin, Client, PrincipalModel, Worker
from careauth.core.enums import ContactChannel, PrincipalKind

P = TypeVar("P", bound=PrincipalModel)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class PrincipalDB(BaseDB[P]):
    """
    Lookup and credential mutation for one actor kind.

    Example:
        >>> client = await client_db.find_by_email(session, "a@b.com")
        >>> await client_db.mark_verified(session, client.id)
    """

    def __init__(self, model: type[P], kind: PrincipalKind):
        super().__init__(model=model)
        self.kind = kind

    async def find_by_id(self, session: AsyncSession, principal_id: int) -> P | None:
        return await self.get_by_id(session, principal_id)

    async def find_by_email(self, session: AsyncSession, email: str) -> P | None:
        return await self.get_one_by_conditions(
            session,
            [self.model.email == normalize_email(email)],
        )

    async def find_by_phone(self, session: AsyncSession, phone_number: str) -> P | None:
        return await self.get_one_by_conditions(
            session,
            [self.model.phone_number == phone_number.strip()],
        )

    async def create(
        self,
        session: AsyncSession,
        data: dict,
        commit_self: bool = True,
    ) -> P:
        """Create a principal; ``data["email"]`` is normalised first."""
        data = {**data, "email": normalize_email(data["email"])}
        return await super().create(session, data, commit_self=commit_self)

    async def update_password(
        self,
        session: AsyncSession,
        principal_id: int,
        password_hash: str,
        commit_self: bool = True,
    ) -> P | None:
        return await self.update(
            session,
            principal_id,
            {"password_hash": password_hash},
            commit_self=commit_self,
        )

    async def mark_verified(
        self,
        session: AsyncSession,
        principal_id: int,
        commit_self: bool = True,
    ) -> P | None:
        return await self.update(
            session,
            principal_id,
            {"email_verified": True},
            commit_self=commit_self,
        )

    async def update_contact(
        self,
        session: AsyncSession,
        principal_id: int,
        channel: ContactChannel,
        value: str,
        commit_self: bool = True,
    ) -> P | None:
        """Write a contact value confirmed by an email/phone update code."""
        match channel:
            case ContactChannel.EMAIL:
                updates = {"email": normalize_email(value), "email_verified": True}
            case ContactChannel.PHONE:
                updates = {"phone_number": value.strip()}
        return await self.update(
            session, principal_id, updates, commit_self=commit_self
        )

    async def record_login(
        self,
        session: AsyncSession,
        principal_id: int,
        at: datetime | None = None,
        commit_self: bool = True,
    ) -> P | None:
        return await self.update(
            session,
            principal_id,
            {"last_login_at": at or utcnow()},
            commit_self=commit_self,
        )


class ClientDB(PrincipalDB[Client]):
    def __init__(self):
        super().__init__(model=Client, kind=PrincipalKind.CLIENT)


class WorkerDB(PrincipalDB[Worker]):
    def __init__(self):
        super().__init__(model=Worker, kind=PrincipalKind.WORKER)


class AdminDB(PrincipalDB[Admin]):
    def __init__(self):
        super().__init__(model=Admin, kind=PrincipalKind.ADMIN)


__all__ = [
    "AdminDB",
    "ClientDB",
    "PrincipalDB",
    "WorkerDB",
    "normalize_email",
]
