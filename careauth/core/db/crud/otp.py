"""
CRUD operations for OTPRecord model.

Every state change on an OTP record is a single conditional UPDATE, so a
transition only applies when the row is still in the state the caller
observed (compare-and-swap). Concurrent verifications of the same record
therefore serialise on the row instead of racing on an in-memory copy.
"""

from datetime import datetime

from sqlalchemy import SQLColumnExpression, and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.db.crud.base import BaseDB
from careauth.core.db.models.base import utcnow
from careauth.core.db.models.otp import OTPRecord
from careauth.core.enums import OTPPurpose, OTPStatus, OwnerKind
from careauth.core.exceptions.types import (
    DatabaseException,
    OTPPendingConflictException,
)

TERMINAL_STATUSES = (OTPStatus.VERIFIED, OTPStatus.EXPIRED, OTPStatus.FAILED)


class OTPRecordDB(BaseDB[OTPRecord]):
    """
    CRUD operations for OTPRecord model.

    Records are addressed by their owner tuple. For principal-owned records
    that is (owner_kind, owner_id, purpose); for pre-account records
    (``owner_id is None``) the identifier takes the place of the id.
    """

    def __init__(self):
        """Initialize OTPRecordDB with the OTPRecord model."""
        super().__init__(model=OTPRecord)

    def tuple_conditions(
        self,
        owner_kind: OwnerKind,
        owner_id: int | None,
        purpose: OTPPurpose,
        identifier: str,
    ) -> list[SQLColumnExpression]:
        conditions = [
            self.model.owner_kind == owner_kind,
            self.model.purpose == purpose,
        ]
        if owner_id is None:
            conditions += [
                self.model.owner_id.is_(None),
                self.model.identifier == identifier,
            ]
        else:
            conditions.append(self.model.owner_id == owner_id)
        return conditions

    async def create_pending(
        self,
        session: AsyncSession,
        data: dict,
        commit_self: bool = True,
    ) -> OTPRecord:
        """
        Insert a new pending record.

        Args:
            session: The async database session.
            data: Column values for the new record.
            commit_self: Whether to commit the session after inserting.

        Returns:
            The persisted OTPRecord.

        Raises:
            OTPPendingConflictException: If another pending record for the same
                tuple was committed concurrently.
            DatabaseException: If any other database error occurs.
        """
        try:
            record = self.model(**{**data, "status": OTPStatus.PENDING, "attempts": 0})
            session.add(record)
            if commit_self:
                await session.commit()
            else:
                await session.flush()
            await session.refresh(record)
            return record
        except IntegrityError as e:
            raise OTPPendingConflictException() from e
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error creating OTP record: {str(e)}") from e

    async def find_most_recent(
        self,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        purpose: OTPPurpose,
        identifier: str,
    ) -> OTPRecord | None:
        """
        Retrieve the most recently issued record for a tuple, in any status.

        The row is always re-read from the database, even if the session
        already holds the object, so status checks never run on stale state.

        Raises:
            DatabaseException: If a database error occurs.
        """
        try:
            stmt = (
                select(self.model)
                .where(
                    and_(
                        *self.tuple_conditions(
                            owner_kind, owner_id, purpose, identifier
                        )
                    )
                )
                .order_by(self.model.created_at.desc(), self.model.id.desc())
                .limit(1)
                .execution_options(populate_existing=True)
            )
            result = await session.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error retrieving latest OTP record: {str(e)}"
            ) from e

    async def find_pending_for_tuple(
        self,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        purpose: OTPPurpose,
        identifier: str,
    ) -> OTPRecord | None:
        """Retrieve the pending record of a tuple, if any, without checking expiry."""
        return await self.get_one_by_conditions(
            session=session,
            conditions=[
                *self.tuple_conditions(owner_kind, owner_id, purpose, identifier),
                self.model.status == OTPStatus.PENDING,
            ],
        )

    async def atomic_increment_attempts(
        self,
        session: AsyncSession,
        record_id: int,
        now: datetime | None = None,
        commit_self: bool = True,
    ) -> int | None:
        """
        Consume one verification attempt.

        The increment only applies while the record is pending, unexpired and
        still below its attempt budget.

        Args:
            session: The async database session.
            record_id: The OTP record to update.
            now: Reference time for the expiry guard.
            commit_self: Whether to commit so the attempt is durable before the
                code is compared.

        Returns:
            The new attempt count, or None when the guard did not match.

        Raises:
            DatabaseException: If a database error occurs.
        """
        now = now or utcnow()
        try:
            stmt = (
                update(self.model)
                .where(
                    and_(
                        self.model.id == record_id,
                        self.model.status == OTPStatus.PENDING,
                        self.model.attempts < self.model.max_attempts,
                        self.model.expires_at > now,
                    )
                )
                .values(attempts=self.model.attempts + 1, updated_at=now)
                .returning(self.model.attempts)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            new_count = result.scalar_one_or_none()

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            return new_count
        except SQLAlchemyError as e:
            raise DatabaseException(f"Error incrementing OTP attempts: {str(e)}") from e

    async def update_status(
        self,
        session: AsyncSession,
        record_id: int,
        status: OTPStatus,
        verified_at: datetime | None = None,
        expected_status: OTPStatus = OTPStatus.PENDING,
        commit_self: bool = True,
    ) -> bool:
        """
        Move a record to ``status`` if it is still in ``expected_status``.

        Args:
            session: The async database session.
            record_id: The OTP record to update.
            status: Target status.
            verified_at: Verification timestamp; only written with ``VERIFIED``.
            expected_status: Status the record must currently have.
            commit_self: Whether to commit the session after updating.

        Returns:
            True if this call performed the transition.

        Raises:
            DatabaseException: If a database error occurs.
        """
        updates: dict = {"status": status}
        if status == OTPStatus.VERIFIED:
            updates["verified_at"] = verified_at or utcnow()

        count = await self.update_by_conditions(
            session=session,
            conditions=[
                self.model.id == record_id,
                self.model.status == expected_status,
            ],
            updates=updates,
            commit_self=commit_self,
        )
        return count > 0

    async def invalidate_pending(
        self,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        purpose: OTPPurpose,
        identifier: str,
        commit_self: bool = True,
    ) -> int:
        """
        Expire every pending record of a tuple ahead of a new issuance.

        Returns:
            The number of records invalidated.

        Raises:
            DatabaseException: If a database error occurs.
        """
        return await self.update_by_conditions(
            session=session,
            conditions=[
                *self.tuple_conditions(owner_kind, owner_id, purpose, identifier),
                self.model.status == OTPStatus.PENDING,
            ],
            updates={"status": OTPStatus.EXPIRED},
            commit_self=commit_self,
        )

    async def get_latest_issued_at(
        self,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        purpose: OTPPurpose,
        identifier: str,
    ) -> datetime | None:
        """Return when the tuple's latest record was created, if any."""
        try:
            stmt = (
                select(self.model.created_at)
                .where(
                    and_(
                        *self.tuple_conditions(
                            owner_kind, owner_id, purpose, identifier
                        )
                    )
                )
                .order_by(self.model.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error retrieving latest OTP issuance: {str(e)}"
            ) from e

    async def delete_older_than(
        self,
        session: AsyncSession,
        cutoff: datetime,
        commit_self: bool = True,
    ) -> int:
        """
        Delete terminal records last touched before ``cutoff`` and pending
        records that expired before it.

        Rows still eligible for verification are never matched.

        Returns:
            The number of records deleted.

        Raises:
            DatabaseException: If a database error occurs.
        """
        return await self.delete_by_conditions(
            session=session,
            conditions=[
                or_(
                    and_(
                        self.model.status.in_(TERMINAL_STATUSES),
                        self.model.updated_at < cutoff,
                    ),
                    and_(
                        self.model.status == OTPStatus.PENDING,
                        self.model.expires_at < cutoff,
                    ),
                )
            ],
            commit_self=commit_self,
        )


__all__ = ["OTPRecordDB", "TERMINAL_STATUSES"]
