"""Action repository."""

from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from capa.db.models.action import ActionRow
from capa.models.action import ActionFilters
from capa.repositories.base import BaseRepository


class ActionRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ActionRow)

    async def get(self, action_id: str) -> ActionRow | None:
        return await self.get_by_id("action_id", action_id)

    async def get_active(self, action_id: str) -> ActionRow | None:
        row = await self.get(action_id)
        if row is None or not row.is_active:
            return None
        return row

    async def list_by_finding(self, finding_id: str) -> list[ActionRow]:
        """Active actions linked to a finding, oldest first."""
        stmt = (
            select(ActionRow)
            .where(ActionRow.finding_id == finding_id, ActionRow.is_active.is_(True))
            .order_by(ActionRow.created_at.asc(), ActionRow.action_number.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_by_findings(self, finding_ids: list[str]) -> dict[str, list[ActionRow]]:
        """Active actions grouped by finding id."""
        grouped: dict[str, list[ActionRow]] = {fid: [] for fid in finding_ids}
        if not finding_ids:
            return grouped
        stmt = select(ActionRow).where(
            ActionRow.finding_id.in_(finding_ids), ActionRow.is_active.is_(True)
        )
        result = await self.session.execute(stmt)
        for row in result.scalars().all():
            grouped[row.finding_id].append(row)
        return grouped

    def _conditions(self, filters: ActionFilters | None) -> list:
        conditions = [ActionRow.is_active.is_(True)]
        if filters is None:
            return conditions
        if filters.status:
            conditions.append(ActionRow.status == filters.status)
        if filters.action_type:
            conditions.append(ActionRow.action_type == filters.action_type)
        if filters.priority:
            conditions.append(ActionRow.priority == filters.priority)
        if filters.finding_id:
            conditions.append(ActionRow.finding_id == filters.finding_id)
        if filters.responsible_person_id:
            conditions.append(ActionRow.responsible_person_id == filters.responsible_person_id)
        if filters.year:
            start = datetime(filters.year, 1, 1, tzinfo=timezone.utc)
            end = datetime(filters.year + 1, 1, 1, tzinfo=timezone.utc)
            conditions.append(ActionRow.created_at >= start)
            conditions.append(ActionRow.created_at < end)
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            conditions.append(
                or_(
                    ActionRow.action_number.ilike(pattern),
                    ActionRow.title.ilike(pattern),
                    ActionRow.description.ilike(pattern),
                )
            )
        return conditions

    async def list_filtered(
        self,
        filters: ActionFilters | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ActionRow]:
        stmt = (
            select(ActionRow)
            .where(*self._conditions(filters))
            .order_by(ActionRow.created_at.desc(), ActionRow.action_number.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
