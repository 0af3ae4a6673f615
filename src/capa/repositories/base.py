"""Base repository with common CRUD operations."""

from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from capa.db.base import Base
from capa.errors.exceptions import ConcurrencyConflictError

T = TypeVar("T", bound=Base)


class BaseRepository:
    """Generic async repository for SQLAlchemy models."""

    def __init__(self, session: AsyncSession, model_class: type[T]):
        self.session = session
        self.model_class = model_class

    async def get_by_id(self, pk_field: str, pk_value: str) -> T | None:
        """Get a single record by primary key."""
        stmt = select(self.model_class).where(
            getattr(self.model_class, pk_field) == pk_value
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, **kwargs: Any) -> T:
        """Create and persist a new record."""
        row = self.model_class(**kwargs)
        self.session.add(row)
        await self.flush()
        return row

    async def update(self, row: T, **kwargs: Any) -> T:
        """Update an existing record.

        Versioned rows are written conditionally on the version they were
        loaded with; a lost race surfaces as ConcurrencyConflictError.
        """
        for key, value in kwargs.items():
            setattr(row, key, value)
        await self.flush()
        return row

    async def flush(self) -> None:
        try:
            await self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError(
                f"{self.model_class.__tablename__} record was modified concurrently; reload and retry"
            ) from exc
