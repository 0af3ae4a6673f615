"""Corrective/preventive action API routes."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from capa.config import Settings
from capa.db.models.action import ActionRow
from capa.dependencies import get_actor, get_db, get_settings
from capa.models.action import (
    ActionComment,
    ActionCreate,
    ActionFilters,
    ActionUpdate,
    CommentCreate,
    EffectivenessPlan,
    EffectivenessPlanRequest,
    EffectivenessVerification,
    EffectivenessVerificationRequest,
    ProgressUpdate,
    StatusUpdate,
)
from capa.models.common import Actor
from capa.models.enums import ActionStatus, ActionType, Priority
from capa.services.lifecycle.action_manager import ActionLifecycleManager
from capa.services.lifecycle.effectiveness import EffectivenessVerifier
from capa.services.lifecycle.finding_manager import FindingLifecycleManager
from capa.services.lifecycle.progress import ProgressAggregator

router = APIRouter(tags=["Actions"])


def action_to_dict(a: ActionRow) -> dict:
    """Convert an ActionRow to the camelCase wire shape."""
    plan = a.effectiveness_plan
    verification = a.effectiveness_verification
    return {
        "id": a.action_id,
        "actionNumber": a.action_number,
        "findingId": a.finding_id,
        "title": a.title,
        "description": a.description,
        "actionType": a.action_type,
        "priority": a.priority,
        "status": a.status,
        "progress": a.progress,
        "responsiblePersonId": a.responsible_person_id,
        "responsiblePersonName": a.responsible_person_name,
        "plannedStartDate": a.planned_start_date.isoformat() if a.planned_start_date else None,
        "plannedEndDate": a.planned_end_date.isoformat() if a.planned_end_date else None,
        "actualStartDate": a.actual_start_date.isoformat() if a.actual_start_date else None,
        "actualEndDate": a.actual_end_date.isoformat() if a.actual_end_date else None,
        "completedBy": a.completed_by,
        "comments": [ActionComment.model_validate(c).to_wire() for c in a.comments or []],
        "effectivenessPlan": EffectivenessPlan.model_validate(plan).to_wire() if plan else None,
        "effectivenessVerification": (
            EffectivenessVerification.model_validate(verification).to_wire() if verification else None
        ),
        "version": a.version,
        "createdBy": a.created_by,
        "updatedBy": a.updated_by,
        "createdAt": a.created_at.isoformat() if a.created_at else None,
        "updatedAt": a.updated_at.isoformat() if a.updated_at else None,
    }


def _managers(db: AsyncSession, settings: Settings) -> tuple[FindingLifecycleManager, ActionLifecycleManager]:
    findings = FindingLifecycleManager(db, settings)
    return findings, ActionLifecycleManager(db, findings)


@router.post("/actions", status_code=201)
async def create_action(
    body: ActionCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    _, actions = _managers(db, settings)
    row = await actions.create(body.finding_id, body, actor)
    await db.commit()
    return action_to_dict(row)


@router.get("/actions")
async def list_actions(
    status: ActionStatus | None = Query(None),
    action_type: ActionType | None = Query(None, alias="actionType"),
    priority: Priority | None = Query(None),
    finding_id: str | None = Query(None, alias="findingId"),
    responsible_person_id: str | None = Query(None, alias="responsiblePersonId"),
    year: int | None = Query(None, ge=1900, le=9999),
    search: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    """List active actions, newest first."""
    filters = ActionFilters(
        status=status,
        action_type=action_type,
        priority=priority,
        finding_id=finding_id,
        responsible_person_id=responsible_person_id,
        year=year,
        search=search,
    )
    _, actions = _managers(db, settings)
    rows = await actions.list_actions(filters, limit=limit, offset=offset)
    return {
        "items": [action_to_dict(a) for a in rows],
        "limit": limit,
        "offset": offset,
    }


@router.get("/actions/stats")
async def action_stats(
    status: ActionStatus | None = Query(None),
    action_type: ActionType | None = Query(None, alias="actionType"),
    priority: Priority | None = Query(None),
    finding_id: str | None = Query(None, alias="findingId"),
    responsible_person_id: str | None = Query(None, alias="responsiblePersonId"),
    year: int | None = Query(None, ge=1900, le=9999),
    db: AsyncSession = Depends(get_db),
) -> dict:
    filters = ActionFilters(
        status=status,
        action_type=action_type,
        priority=priority,
        finding_id=finding_id,
        responsible_person_id=responsible_person_id,
        year=year,
    )
    stats = await ProgressAggregator(db).action_stats(filters)
    return stats.to_wire()


@router.get("/actions/{action_id}")
async def get_action(
    action_id: str,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    _, actions = _managers(db, settings)
    return action_to_dict(await actions.get(action_id))


@router.patch("/actions/{action_id}")
async def update_action(
    action_id: str,
    body: ActionUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    _, actions = _managers(db, settings)
    row = await actions.update_details(action_id, body, actor)
    await db.commit()
    return action_to_dict(row)


@router.patch("/actions/{action_id}/progress")
async def update_action_progress(
    action_id: str,
    body: ProgressUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    _, actions = _managers(db, settings)
    row = await actions.update_progress(action_id, body.progress, actor)
    await db.commit()
    return action_to_dict(row)


@router.patch("/actions/{action_id}/status")
async def update_action_status(
    action_id: str,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    _, actions = _managers(db, settings)
    row = await actions.update_status(action_id, body.status, actor)
    await db.commit()
    return action_to_dict(row)


@router.post("/actions/{action_id}/comments", status_code=201)
async def add_action_comment(
    action_id: str,
    body: CommentCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    _, actions = _managers(db, settings)
    row = await actions.add_comment(action_id, body.comment, actor)
    await db.commit()
    return action_to_dict(row)


@router.patch("/actions/{action_id}/effectiveness-plan")
async def plan_action_effectiveness(
    action_id: str,
    body: EffectivenessPlanRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Record or revise the control plan for the effectiveness check."""
    _, actions = _managers(db, settings)
    row = await actions.plan_effectiveness_verification(action_id, body, actor)
    await db.commit()
    return action_to_dict(row)


@router.post("/actions/{action_id}/verify-effectiveness")
async def verify_action_effectiveness(
    action_id: str,
    body: EffectivenessVerificationRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Record the effectiveness verdict and apply it to the owning finding."""
    findings, actions = _managers(db, settings)
    verdict = await EffectivenessVerifier(findings, actions).verify(action_id, body, actor)
    await db.commit()
    return {
        "action": action_to_dict(await actions.get(action_id)),
        "verdict": verdict.to_wire(),
    }


@router.delete("/actions/{action_id}")
async def archive_action(
    action_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    _, actions = _managers(db, settings)
    row = await actions.archive(action_id, actor)
    await db.commit()
    return {"id": row.action_id, "archived": True}
