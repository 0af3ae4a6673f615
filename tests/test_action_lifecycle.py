"""ActionLifecycleManager: creation, status machine, progress rules."""

from datetime import date, datetime, timezone

import pytest

from capa.config import Settings
from capa.errors.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from capa.models.action import (
    ActionData,
    ActionFilters,
    ActionUpdate,
    EffectivenessPlanRequest,
    EffectivenessVerificationRequest,
)
from capa.models.enums import ActionStatus
from capa.models.finding import FindingCreate
from capa.services.lifecycle.action_manager import ActionLifecycleManager
from capa.services.lifecycle.finding_manager import FindingLifecycleManager


def _action(**overrides) -> ActionData:
    data = {
        "title": "Add supplier certificate check to receiving",
        "action_type": "corrective",
        "priority": "medium",
        "responsible_person_id": "usr_receiving",
        "planned_start_date": date(2026, 5, 1),
        "planned_end_date": date(2026, 5, 31),
    }
    data.update(overrides)
    return ActionData.model_validate(data)


@pytest.fixture
async def finding(db_session, actor):
    manager = FindingLifecycleManager(db_session, Settings())
    return await manager.register(
        FindingCreate.model_validate(
            {
                "title": "Raw material received without certificate",
                "source": {"type": "supplier", "id": "sup_acme"},
                "severity": "major",
                "risk_level": "medium",
                "category": "quality",
                "detected_at": datetime(2026, 4, 20, tzinfo=timezone.utc),
            }
        ),
        actor,
    )


@pytest.fixture
def actions(db_session):
    return ActionLifecycleManager(db_session, FindingLifecycleManager(db_session, Settings()))


@pytest.mark.asyncio
async def test_create_action(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    assert row.action_id.startswith("act_")
    assert row.action_number.startswith("ACC-")
    assert row.action_number.endswith("-001")
    assert row.status == "planned"
    assert row.progress == 0
    assert row.comments == []
    assert row.effectiveness_verification is None


@pytest.mark.asyncio
async def test_create_for_unknown_finding(actions, actor):
    with pytest.raises(NotFoundError):
        await actions.create("find_missing", _action(), actor)


def test_end_date_before_start_rejected():
    with pytest.raises(ValueError):
        _action(planned_start_date=date(2026, 6, 1), planned_end_date=date(2026, 5, 1))


@pytest.mark.asyncio
async def test_completion_forces_full_progress(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.update_status(row.action_id, ActionStatus.IN_PROGRESS, actor)
    row = await actions.update_progress(row.action_id, 40, actor)
    assert row.progress == 40
    assert row.status == "in_progress"

    row = await actions.update_status(row.action_id, ActionStatus.COMPLETED, actor)
    assert row.status == "completed"
    assert row.progress == 100


@pytest.mark.asyncio
async def test_progress_never_decreases(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.update_progress(row.action_id, 60, actor)
    with pytest.raises(InvalidStateError):
        await actions.update_progress(row.action_id, 30, actor)
    assert (await actions.get(row.action_id)).progress == 60


@pytest.mark.asyncio
async def test_progress_100_requires_completion(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    with pytest.raises(InvalidStateError):
        await actions.update_progress(row.action_id, 100, actor)


@pytest.mark.asyncio
async def test_progress_out_of_range(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    with pytest.raises(ValidationError):
        await actions.update_progress(row.action_id, 101, actor)
    with pytest.raises(ValidationError):
        await actions.update_progress(row.action_id, -1, actor)


@pytest.mark.asyncio
async def test_illegal_status_change_leaves_action_unchanged(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    with pytest.raises(InvalidTransitionError):
        await actions.update_status(row.action_id, ActionStatus.COMPLETED, actor)
    row = await actions.get(row.action_id)
    assert row.status == "planned"
    assert row.progress == 0


@pytest.mark.asyncio
async def test_terminal_actions_are_frozen(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.update_status(row.action_id, ActionStatus.CANCELLED, actor)
    with pytest.raises(InvalidTransitionError):
        await actions.update_status(row.action_id, ActionStatus.IN_PROGRESS, actor)
    with pytest.raises(InvalidStateError):
        await actions.update_progress(row.action_id, 10, actor)
    with pytest.raises(InvalidStateError):
        await actions.update_details(row.action_id, ActionUpdate(title="New title"), actor)


@pytest.mark.asyncio
async def test_update_details(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    row = await actions.update_details(
        row.action_id, ActionUpdate(priority="critical", planned_end_date=date(2026, 6, 15)), actor
    )
    assert row.priority == "critical"
    assert row.planned_end_date == date(2026, 6, 15)
    assert row.updated_by == actor.user_id

    with pytest.raises(ValidationError):
        await actions.update_details(row.action_id, ActionUpdate(planned_end_date=date(2026, 4, 1)), actor)


@pytest.mark.asyncio
async def test_comments_accumulate(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.add_comment(row.action_id, "Supplier contacted", actor)
    row = await actions.add_comment(row.action_id, "Procedure drafted", actor)
    assert [c["comment"] for c in row.comments] == ["Supplier contacted", "Procedure drafted"]
    assert row.comments[0]["user_name"] == "Ana Auditor"


@pytest.mark.asyncio
async def test_effectiveness_requires_completed_action(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    request = EffectivenessVerificationRequest(
        responsible_person_id="usr_quality",
        method="Sampling",
        criteria="Zero lots without certificate",
        is_effective=True,
        result="OK",
        evidence="Receiving log",
    )
    with pytest.raises(InvalidStateError):
        await actions.verify_effectiveness(row.action_id, request, actor)

    await actions.update_status(row.action_id, ActionStatus.IN_PROGRESS, actor)
    await actions.update_status(row.action_id, ActionStatus.COMPLETED, actor)
    row = await actions.verify_effectiveness(row.action_id, request, actor)
    assert row.effectiveness_verification["is_effective"] is True
    assert row.effectiveness_verification["recorded_by"] == actor.user_id

    with pytest.raises(InvalidStateError):
        await actions.verify_effectiveness(row.action_id, request, actor)


@pytest.mark.asyncio
async def test_closed_finding_rejects_new_actions(db_session, actions, actor):
    from capa.models.finding import (
        ImmediateCorrectionExecution,
        ImmediateCorrectionPlan,
        RootCauseAnalysisRequest,
        VerificationRequest,
    )

    findings = actions.findings
    row = await findings.register(
        FindingCreate.model_validate(
            {
                "title": "Dusty filters",
                "source": {"type": "employee", "id": "usr_3"},
                "severity": "low",
                "risk_level": "low",
                "category": "equipment",
            }
        ),
        actor,
    )
    await findings.plan_immediate_correction(row.finding_id, ImmediateCorrectionPlan(description="Clean"), actor)
    await findings.execute_immediate_correction(
        row.finding_id, ImmediateCorrectionExecution(execution_date=date(2026, 5, 2)), actor
    )
    await findings.analyze_root_cause(
        row.finding_id,
        RootCauseAnalysisRequest(method="5 whys", root_cause="No cleaning schedule", analysis="n/a"),
        actor,
    )
    await findings.verify(
        row.finding_id,
        VerificationRequest(verified_by="usr_q", verification_date=date(2026, 5, 9), evidence="Photo"),
        actor,
    )
    with pytest.raises(InvalidStateError):
        await actions.create(row.finding_id, _action(), actor)


@pytest.mark.asyncio
async def test_archive_hides_action(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.update_status(row.action_id, ActionStatus.CANCELLED, actor)
    await actions.archive(row.action_id, actor)
    with pytest.raises(NotFoundError):
        await actions.get(row.action_id)
    assert await actions.list_for_finding(finding.finding_id) == []


@pytest.mark.asyncio
async def test_open_action_cannot_be_archived(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.update_status(row.action_id, ActionStatus.IN_PROGRESS, actor)
    with pytest.raises(InvalidStateError):
        await actions.archive(row.action_id, actor)
    assert (await actions.get(row.action_id)).is_active is True


def test_update_rejects_null_for_required_fields():
    with pytest.raises(ValueError) as exc_info:
        ActionUpdate.model_validate({"title": None})
    assert exc_info.value.errors()[0]["loc"] == ("title",)
    with pytest.raises(ValueError):
        ActionUpdate.model_validate({"responsiblePersonId": None})
    with pytest.raises(ValueError):
        ActionUpdate.model_validate({"priority": None})
    assert ActionUpdate.model_validate({"responsiblePersonName": None}).responsible_person_name is None


@pytest.mark.asyncio
async def test_status_moves_stamp_actual_dates(actions, finding, actor):
    today = datetime.now(timezone.utc).date()
    row = await actions.create(finding.finding_id, _action(), actor)
    assert row.actual_start_date is None

    row = await actions.update_status(row.action_id, ActionStatus.IN_PROGRESS, actor)
    assert row.actual_start_date == today
    assert row.actual_end_date is None

    row = await actions.update_status(row.action_id, ActionStatus.COMPLETED, actor)
    assert row.actual_end_date == today
    assert row.completed_by == actor.user_id


@pytest.mark.asyncio
async def test_effectiveness_plan_feeds_the_verdict(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    row = await actions.plan_effectiveness_verification(
        row.action_id,
        EffectivenessPlanRequest(
            responsible_person_id="usr_quality",
            verification_commitment_date=date(2026, 7, 1),
            criteria="Zero lots without certificate for 30 days",
        ),
        actor,
    )
    assert row.effectiveness_plan["criteria"] == "Zero lots without certificate for 30 days"
    assert row.effectiveness_plan["planned_by"] == actor.user_id

    await actions.update_status(row.action_id, ActionStatus.IN_PROGRESS, actor)
    await actions.update_status(row.action_id, ActionStatus.COMPLETED, actor)
    row = await actions.verify_effectiveness(
        row.action_id,
        EffectivenessVerificationRequest(
            method="Receiving log review",
            is_effective=True,
            result="No gaps",
            evidence="Log 2026-07",
            verification_execution_date=date(2026, 7, 2),
        ),
        actor,
    )
    verdict = row.effectiveness_verification
    assert verdict["responsible_person_id"] == "usr_quality"
    assert verdict["criteria"] == "Zero lots without certificate for 30 days"
    assert verdict["verification_commitment_date"] == "2026-07-01"
    assert verdict["verification_execution_date"] == "2026-07-02"


@pytest.mark.asyncio
async def test_verdict_without_plan_needs_criteria(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.update_status(row.action_id, ActionStatus.IN_PROGRESS, actor)
    await actions.update_status(row.action_id, ActionStatus.COMPLETED, actor)
    request = EffectivenessVerificationRequest(
        responsible_person_id="usr_quality",
        method="Sampling",
        is_effective=True,
        result="OK",
        evidence="Receiving log",
    )
    with pytest.raises(ValidationError) as exc_info:
        await actions.verify_effectiveness(row.action_id, request, actor)
    assert exc_info.value.details == [
        {"field": "criteria", "message": "required when no effectiveness plan provides it"}
    ]
    assert (await actions.get(row.action_id)).effectiveness_verification is None


@pytest.mark.asyncio
async def test_cancelled_action_cannot_be_planned(actions, finding, actor):
    row = await actions.create(finding.finding_id, _action(), actor)
    await actions.update_status(row.action_id, ActionStatus.CANCELLED, actor)
    with pytest.raises(InvalidStateError):
        await actions.plan_effectiveness_verification(
            row.action_id,
            EffectivenessPlanRequest(
                responsible_person_id="usr_quality",
                verification_commitment_date=date(2026, 7, 1),
                criteria="n/a",
            ),
            actor,
        )


@pytest.mark.asyncio
async def test_list_actions_filters(actions, finding, actor):
    corrective = await actions.create(finding.finding_id, _action(), actor)
    preventive = await actions.create(
        finding.finding_id, _action(title="Audit supplier", action_type="preventive"), actor
    )
    rows = await actions.list_actions(ActionFilters(finding_id=finding.finding_id))
    assert {r.action_id for r in rows} == {corrective.action_id, preventive.action_id}

    rows = await actions.list_actions(ActionFilters(action_type="preventive"))
    assert [r.action_id for r in rows] == [preventive.action_id]
