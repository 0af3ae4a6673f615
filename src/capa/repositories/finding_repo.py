"""Finding repository."""

from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from capa.db.models.finding import FindingRow
from capa.models.finding import FindingFilters
from capa.repositories.base import BaseRepository


class FindingRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, FindingRow)

    async def get(self, finding_id: str) -> FindingRow | None:
        return await self.get_by_id("finding_id", finding_id)

    async def get_active(self, finding_id: str) -> FindingRow | None:
        """Return the finding unless it does not exist or was archived."""
        row = await self.get(finding_id)
        if row is None or not row.is_active:
            return None
        return row

    def _conditions(self, filters: FindingFilters | None) -> list:
        conditions = [FindingRow.is_active.is_(True)]
        if filters is None:
            return conditions
        if filters.status:
            conditions.append(FindingRow.status == filters.status)
        if filters.stage:
            conditions.append(FindingRow.stage == filters.stage)
        if filters.category:
            conditions.append(FindingRow.category == filters.category)
        if filters.severity:
            conditions.append(FindingRow.severity == filters.severity)
        if filters.iso_phase:
            conditions.append(FindingRow.iso_phase == filters.iso_phase)
        if filters.process_id:
            conditions.append(FindingRow.process_id == filters.process_id)
        if filters.source_id:
            conditions.append(FindingRow.source_id == filters.source_id)
        if filters.year:
            start = datetime(filters.year, 1, 1, tzinfo=timezone.utc)
            end = datetime(filters.year + 1, 1, 1, tzinfo=timezone.utc)
            conditions.append(FindingRow.detected_at >= start)
            conditions.append(FindingRow.detected_at < end)
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            conditions.append(
                or_(
                    FindingRow.finding_number.ilike(pattern),
                    FindingRow.title.ilike(pattern),
                    FindingRow.description.ilike(pattern),
                )
            )
        return conditions

    async def list_filtered(
        self,
        filters: FindingFilters | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FindingRow]:
        stmt = (
            select(FindingRow)
            .where(*self._conditions(filters))
            .order_by(FindingRow.detected_at.desc(), FindingRow.finding_number.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_recurrence_candidates(
        self,
        exclude_finding_id: str,
        window_start: datetime,
        window_end: datetime,
        category: str | None = None,
    ) -> list[FindingRow]:
        """Active, root-caused findings detected inside the lookback window."""
        conditions = [
            FindingRow.is_active.is_(True),
            FindingRow.finding_id != exclude_finding_id,
            FindingRow.root_cause_analysis.is_not(None),
            FindingRow.detected_at >= window_start,
            FindingRow.detected_at <= window_end,
        ]
        if category is not None:
            conditions.append(FindingRow.category == category)
        stmt = select(FindingRow).where(*conditions).order_by(FindingRow.detected_at.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
