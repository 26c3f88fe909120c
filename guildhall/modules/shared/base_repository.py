"""
Base Repository
===============

Generic async data access for one mapped model. Repositories only build and
run statements on a session handed in by the caller; transactions belong to
``DatabaseService`` and rules belong to services.

Every call leaves a debug record tagged with the model name, which is how
query volume per guild operation shows up in the logs.

Usage
-----
    class GuildRepository(BaseRepository[Guild]):
        async def find_by_slug(self, session, slug):
            return await self.find_one_where(session, Guild.slug == slug)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, delete, func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Query helpers shared by the guild repositories.

    Args:
        model_class: Mapped class with an ``id`` primary key
        logger: Logger of the owning service
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    def _trace(self, operation: str, **fields: Any) -> None:
        model = self.model_class.__name__
        self.log.debug(f"{model} {operation}", extra={"model": model, **fields})

    def _select(self, conditions: Sequence[ColumnElement[bool]], for_update: bool) -> Select:
        stmt = select(self.model_class).where(*conditions)
        # Ignored by SQLite; row locks only exist on PostgreSQL.
        return stmt.with_for_update() if for_update else stmt

    # ========================================================================
    # Reads
    # ========================================================================

    async def get(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        return await self.find_one_where(
            session, self.model_class.id == id_value  # type: ignore[attr-defined]
        )

    async def get_for_update(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """Primary-key lookup holding a row lock until the transaction ends."""
        return await self.find_one_where(
            session,
            self.model_class.id == id_value,  # type: ignore[attr-defined]
            for_update=True,
        )

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        instance = (await session.execute(self._select(conditions, for_update))).scalar_one_or_none()
        self._trace("find_one", found=instance is not None, locked=for_update)
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        for_update: bool = False,
    ) -> List[T]:
        """
        Rows matching every condition.

        Args:
            order_by: Ordering clauses, applied in sequence
            offset: Rows to skip (pagination)
            limit: Maximum rows returned
        """
        stmt = self._select(conditions, for_update).order_by(*order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        instances = list((await session.execute(stmt)).scalars().all())
        self._trace("find_many", found_count=len(instances), offset=offset, limit=limit)
        return instances

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        total = (await session.execute(stmt)).scalar_one()
        self._trace("count", count=total)
        return total

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    # ========================================================================
    # Writes
    # ========================================================================

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        self._trace("add")
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        await session.delete(instance)
        self._trace("delete")

    async def delete_where(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        """Bulk delete; returns the number of rows removed."""
        result = await session.execute(
            delete(self.model_class)
            .where(*conditions)
            .execution_options(synchronize_session="fetch")
        )
        deleted = result.rowcount or 0
        self._trace("delete_where", deleted_count=deleted)
        return deleted

    async def flush(self, session: AsyncSession) -> None:
        """Push pending changes so constraint violations surface here."""
        await session.flush()
        self._trace("flush")
