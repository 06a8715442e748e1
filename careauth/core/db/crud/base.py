"""
Generic async repository shared by every table.

Each method wraps its SQLAlchemy errors in ``DatabaseException`` and either
commits or only flushes, depending on ``commit_self``. Callers that compose
several writes into one unit of work pass ``commit_self=False`` and commit
(or use ``session.begin()``) themselves.
"""

from typing import Any, Generic, Sequence, Type, TypeVar

from sqlalchemy import (
    SQLColumnExpression,
    and_,
    delete as sa_delete,
    select,
    update as sa_update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.exceptions.types import DatabaseException

T = TypeVar("T")


class BaseDB(Generic[T]):
    def __init__(self, model: Type[T]):
        self.model = model

    async def _finish(self, session: AsyncSession, commit_self: bool) -> None:
        if commit_self:
            await session.commit()
        else:
            await session.flush()

    async def get_by_id(
        self, session: AsyncSession, id: int, options: Sequence[Any] = ()
    ) -> T | None:
        """
        Fetch one row by primary key.

        Raises:
            DatabaseException: On any SQLAlchemy error.
        """
        try:
            result = await session.execute(
                select(self.model)
                .options(*options)
                .where(getattr(self.model, "id") == id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error retrieving {self.model.__name__} with ID {id}: {str(e)}"
            ) from e

    async def get_all(
        self,
        session: AsyncSession,
        filters: Sequence[Any] | None = None,
        order_by: Sequence[Any] | None = None,
        limit: int | None = None,
        options: Sequence[Any] = (),
    ) -> Sequence[T]:
        """
        Fetch rows matching every filter.

        Args:
            session: The database session.
            filters: WHERE clauses, ANDed together.
            order_by: ORDER BY expressions.
            limit: Row cap, or None for all rows.
            options: Loader options.
        """
        try:
            stmt = select(self.model).options(*options)
            if filters:
                stmt = stmt.where(*filters)
            if order_by:
                stmt = stmt.order_by(*order_by)
            if limit:
                stmt = stmt.limit(limit)

            result = await session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error listing {self.model.__name__} records: {str(e)}"
            ) from e

    async def get_one_by_conditions(
        self,
        session: AsyncSession,
        conditions: Sequence[SQLColumnExpression],
        options: Sequence[Any] = (),
    ) -> T | None:
        """First row matching all ``conditions``, or None."""
        try:
            result = await session.execute(
                select(self.model).options(*options).where(and_(*conditions))
            )
            return result.scalars().first()
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(
                f"Error looking up {self.model.__name__}: {str(e)}"
            ) from e

    async def create(
        self,
        session: AsyncSession,
        data: dict,
        commit_self: bool = True,
    ) -> T:
        """
        Insert a row built from ``data`` and return it refreshed, so
        server-side defaults (id, timestamps) are loaded.

        Raises:
            DatabaseException: On constraint violations and other errors.
        """
        try:
            obj = self.model(**data)
            session.add(obj)
            await self._finish(session, commit_self)
            await session.refresh(obj)
            return obj
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(
                f"Error creating {self.model.__name__}: {str(e)}"
            ) from e

    async def update(
        self, session: AsyncSession, id: int, updates: dict, commit_self: bool = True
    ) -> T | None:
        """
        Apply ``updates`` to one row with ``UPDATE ... RETURNING``.

        The returned object overwrites any copy already in the session's
        identity map. Returns None when no row has that id.
        """
        try:
            result = await session.execute(
                sa_update(self.model)
                .where(self.model.id == id)  # type: ignore[attr-defined]
                .values(**updates)
                .returning(self.model)
                .execution_options(populate_existing=True)
            )
            obj = result.scalar_one_or_none()
            await self._finish(session, commit_self)
            return obj
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error updating {self.model.__name__} with ID {id}: {str(e)}"
            ) from e

    async def update_by_conditions(
        self,
        session: AsyncSession,
        conditions: Sequence[SQLColumnExpression],
        updates: dict,
        commit_self: bool = True,
    ) -> int:
        """
        Bulk update. The row count doubles as the result of a compare-and-set
        when ``conditions`` include the expected current state.

        Returns:
            int: Rows changed.
        """
        try:
            result = await session.execute(
                sa_update(self.model)
                .where(and_(*conditions))
                .values(**updates)
                .execution_options(synchronize_session=False)
            )
            await self._finish(session, commit_self)
            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error bulk-updating {self.model.__name__}: {str(e)}"
            ) from e

    async def delete_by_conditions(
        self,
        session: AsyncSession,
        conditions: Sequence[SQLColumnExpression],
        commit_self: bool = True,
    ) -> int:
        """Bulk delete; returns the number of rows removed."""
        try:
            result = await session.execute(
                sa_delete(self.model)
                .where(and_(*conditions))
                .execution_options(synchronize_session=False)
            )
            await self._finish(session, commit_self)
            return result.rowcount  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error deleting {self.model.__name__} records: {str(e)}"
            ) from e
