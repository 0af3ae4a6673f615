"""Recurrence detection over root-caused findings."""

from datetime import date, datetime, timedelta, timezone

import pytest

from capa.config import Settings
from capa.errors.exceptions import InvalidStateError
from capa.models.finding import (
    FindingCreate,
    ImmediateCorrectionExecution,
    ImmediateCorrectionPlan,
    RootCauseAnalysisRequest,
)
from capa.services.lifecycle.finding_manager import FindingLifecycleManager
from capa.services.lifecycle.recurrence import RecurrenceDetector, normalize_text

BASE_DATE = datetime(2026, 6, 1, tzinfo=timezone.utc)


async def _root_caused(manager, actor, root_cause="Operator not trained", detected_at=BASE_DATE, **overrides):
    data = {
        "title": "Wrong label applied to batch",
        "source": {"type": "process", "id": "proc_packing"},
        "severity": "minor",
        "risk_level": "medium",
        "category": "quality",
        "process_id": "proc_packing",
        "detected_at": detected_at,
    }
    data.update(overrides)
    row = await manager.register(FindingCreate.model_validate(data), actor)
    await manager.plan_immediate_correction(
        row.finding_id, ImmediateCorrectionPlan(description="Relabel batch"), actor
    )
    await manager.execute_immediate_correction(
        row.finding_id, ImmediateCorrectionExecution(execution_date=date(2026, 6, 2)), actor
    )
    return await manager.analyze_root_cause(
        row.finding_id,
        RootCauseAnalysisRequest(method="5 whys", root_cause=root_cause, analysis="Interviews"),
        actor,
    )


def test_normalize_text():
    assert normalize_text("  Operador NO capacitado!! ") == "operador no capacitado"
    assert normalize_text("Formación   insuficiente") == "formacion insuficiente"
    assert normalize_text(None) is None


@pytest.mark.asyncio
async def test_first_occurrence_is_not_recurrent(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    row = await _root_caused(manager, actor)
    assert row.recurrence["is_recurrent"] is False
    assert row.recurrence["occurrence_count"] == 1
    assert row.recurrence["matched_finding_ids"] == []


@pytest.mark.asyncio
async def test_same_key_within_window_is_recurrent(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    first = await _root_caused(manager, actor)
    second = await _root_caused(
        manager, actor, root_cause="operator NOT trained.", detected_at=BASE_DATE + timedelta(days=30)
    )

    assert second.recurrence["is_recurrent"] is True
    assert second.recurrence["matched_finding_ids"] == [first.finding_id]
    assert second.recurrence["occurrence_count"] == 2
    assert second.recurrence["match_key"] == {
        "category": "quality",
        "process_id": "proc_packing",
        "root_cause": "operator not trained",
    }


@pytest.mark.asyncio
async def test_prior_finding_is_not_modified(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    first = await _root_caused(manager, actor)
    version = first.version
    recurrence = dict(first.recurrence)
    await _root_caused(manager, actor, detected_at=BASE_DATE + timedelta(days=1))

    first = await manager.get(first.finding_id)
    assert first.version == version
    assert first.recurrence == recurrence


@pytest.mark.asyncio
async def test_match_outside_window_is_ignored(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings(recurrence_lookback_days=30))
    await _root_caused(manager, actor)
    later = await _root_caused(manager, actor, detected_at=BASE_DATE + timedelta(days=45))
    assert later.recurrence["is_recurrent"] is False
    assert later.recurrence["lookback_days"] == 30


@pytest.mark.asyncio
async def test_different_root_cause_does_not_match(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    await _root_caused(manager, actor)
    other = await _root_caused(
        manager, actor, root_cause="Label printer misconfigured", detected_at=BASE_DATE + timedelta(days=3)
    )
    assert other.recurrence["is_recurrent"] is False


@pytest.mark.asyncio
async def test_different_category_does_not_match(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    await _root_caused(manager, actor)
    other = await _root_caused(
        manager, actor, category="process", detected_at=BASE_DATE + timedelta(days=3)
    )
    assert other.recurrence["is_recurrent"] is False


@pytest.mark.asyncio
async def test_threshold_requires_more_matches(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings(recurrence_threshold=2))
    await _root_caused(manager, actor)
    second = await _root_caused(manager, actor, detected_at=BASE_DATE + timedelta(days=1))
    third = await _root_caused(manager, actor, detected_at=BASE_DATE + timedelta(days=2))

    assert second.recurrence["is_recurrent"] is False
    assert second.recurrence["occurrence_count"] == 2
    assert third.recurrence["is_recurrent"] is True
    assert third.recurrence["occurrence_count"] == 3


@pytest.mark.asyncio
async def test_findings_without_root_cause_are_not_candidates(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    await manager.register(
        FindingCreate.model_validate(
            {
                "title": "Wrong label applied to batch",
                "source": {"type": "process", "id": "proc_packing"},
                "severity": "minor",
                "risk_level": "medium",
                "category": "quality",
                "process_id": "proc_packing",
                "detected_at": BASE_DATE,
            }
        ),
        actor,
    )
    row = await _root_caused(manager, actor, detected_at=BASE_DATE + timedelta(days=1))
    assert row.recurrence["is_recurrent"] is False


@pytest.mark.asyncio
async def test_evaluate_requires_root_cause(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    row = await manager.register(
        FindingCreate.model_validate(
            {
                "title": "Spill",
                "source": {"type": "employee", "id": "usr_9"},
                "severity": "low",
                "risk_level": "low",
                "category": "environment",
            }
        ),
        actor,
    )
    with pytest.raises(InvalidStateError):
        await RecurrenceDetector(db_session, Settings()).evaluate(row)
