"""Optimistic concurrency on finding and action rows."""

from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from capa.config import Settings
from capa.db.base import Base
import capa.db.models  # noqa: F401
from capa.errors.exceptions import ConcurrencyConflictError
from capa.models.action import ActionData
from capa.models.common import Actor
from capa.models.enums import ActionStatus, IsoPhase
from capa.models.finding import FindingCreate, ImmediateCorrectionPlan
from capa.services.lifecycle.action_manager import ActionLifecycleManager
from capa.services.lifecycle.finding_manager import FindingLifecycleManager

ACTOR = Actor(user_id="usr_a")


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'capa.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_stale_write_is_rejected(session_factory):
    async with session_factory() as session:
        row = await FindingLifecycleManager(session, Settings()).register(
            FindingCreate.model_validate(
                {
                    "title": "Oil leak under press 4",
                    "source": {"type": "employee", "id": "usr_7"},
                    "severity": "major",
                    "risk_level": "high",
                    "category": "environment",
                }
            ),
            ACTOR,
        )
        await session.commit()
        finding_id = row.finding_id

    async with session_factory() as first, session_factory() as second:
        manager_a = FindingLifecycleManager(first, Settings())
        manager_b = FindingLifecycleManager(second, Settings())
        # Hold the row so session A keeps writing against version 1.
        stale = await manager_a.get(finding_id)
        await manager_b.get(finding_id)

        await manager_b.plan_immediate_correction(
            finding_id, ImmediateCorrectionPlan(description="Drip tray", commitment_date=date(2026, 9, 1)), ACTOR
        )
        await second.commit()

        with pytest.raises(ConcurrencyConflictError):
            await manager_a.set_iso_phase(finding_id, IsoPhase.TREATMENT, ACTOR)
        assert stale.version == 1
        await first.rollback()

    async with session_factory() as session:
        row = await FindingLifecycleManager(session, Settings()).get(finding_id)
        assert row.stage == "immediate_action_planned"
        assert row.iso_phase == "detection"
        assert row.version == 2


def _actions(session) -> ActionLifecycleManager:
    return ActionLifecycleManager(session, FindingLifecycleManager(session, Settings()))


@pytest.mark.asyncio
async def test_stale_status_change_is_rejected(session_factory):
    async with session_factory() as session:
        finding = await FindingLifecycleManager(session, Settings()).register(
            FindingCreate.model_validate(
                {
                    "title": "Guard missing on lathe 2",
                    "source": {"type": "inspection", "id": "insp_3"},
                    "severity": "critical",
                    "risk_level": "high",
                    "category": "safety",
                }
            ),
            ACTOR,
        )
        action = await _actions(session).create(
            finding.finding_id,
            ActionData(
                title="Refit guard",
                action_type="corrective",
                priority="high",
                responsible_person_id="usr_maintenance",
            ),
            ACTOR,
        )
        await session.commit()
        action_id = action.action_id

    async with session_factory() as first, session_factory() as second:
        manager_a = _actions(first)
        manager_b = _actions(second)
        stale = await manager_a.get(action_id)
        await manager_b.get(action_id)

        await manager_b.update_status(action_id, ActionStatus.CANCELLED, ACTOR)
        await second.commit()

        with pytest.raises(ConcurrencyConflictError):
            await manager_a.update_status(action_id, ActionStatus.IN_PROGRESS, ACTOR)
        assert stale.version == 1
        await first.rollback()

    async with session_factory() as session:
        row = await _actions(session).get(action_id)
        assert row.status == "cancelled"
        assert row.actual_start_date is None
        assert row.version == 2
