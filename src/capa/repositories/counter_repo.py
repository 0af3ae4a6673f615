"""Counter repository."""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from capa.db.models.counter import CounterRow
from capa.errors.exceptions import ConcurrencyConflictError
from capa.repositories.base import BaseRepository


class CounterRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, CounterRow)

    async def next_value(self, counter_key: str) -> int:
        """Increment and return the counter, creating it on first use."""
        row = await self.get_by_id("counter_key", counter_key)
        if row is None:
            try:
                await self.create(counter_key=counter_key, count=1)
            except IntegrityError as exc:
                raise ConcurrencyConflictError(
                    f"Counter '{counter_key}' was initialised concurrently; retry"
                ) from exc
            return 1
        await self.update(row, count=row.count + 1)
        return row.count
