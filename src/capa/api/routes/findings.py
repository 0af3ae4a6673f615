"""Finding lifecycle API routes."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from capa.api.routes.actions import action_to_dict
from capa.config import Settings
from capa.db.models.finding import FindingRow
from capa.dependencies import get_actor, get_db, get_settings
from capa.models.common import Actor
from capa.models.enums import FindingCategory, FindingStage, FindingStatus, IsoPhase, Severity
from capa.models.finding import (
    FindingCreate,
    FindingFilters,
    ImmediateCorrection,
    ImmediateCorrectionExecution,
    ImmediateCorrectionPlan,
    PhaseUpdate,
    Recurrence,
    ReopenRequest,
    RootCauseAnalysis,
    RootCauseAnalysisRequest,
    Verification,
    VerificationRequest,
)
from capa.services.lifecycle.action_manager import ActionLifecycleManager
from capa.services.lifecycle.effectiveness import EffectivenessVerifier
from capa.services.lifecycle.finding_manager import FindingLifecycleManager
from capa.services.lifecycle.progress import ProgressAggregator

router = APIRouter(tags=["Findings"])


def _sub_record(model, value: dict | None) -> dict | None:
    return model.model_validate(value).to_wire() if value else None


def _finding_to_dict(f: FindingRow) -> dict:
    """Convert a FindingRow to the camelCase wire shape."""
    return {
        "id": f.finding_id,
        "findingNumber": f.finding_number,
        "title": f.title,
        "description": f.description,
        "source": {
            "type": f.source_type,
            "id": f.source_id,
            "name": f.source_name,
            "reference": f.source_reference,
        },
        "processId": f.process_id,
        "processName": f.process_name,
        "findingType": f.finding_type,
        "severity": f.severity,
        "riskLevel": f.risk_level,
        "category": f.category,
        "priority": f.priority,
        "responsiblePersonId": f.responsible_person_id,
        "responsiblePersonName": f.responsible_person_name,
        "evidence": f.evidence,
        "detectedAt": f.detected_at.isoformat() if f.detected_at else None,
        "stage": f.stage,
        "isoPhase": f.iso_phase,
        "progress": f.progress,
        "status": f.status,
        "reopenCount": f.reopen_count,
        "closedAt": f.closed_at.isoformat() if f.closed_at else None,
        "immediateCorrection": _sub_record(ImmediateCorrection, f.immediate_correction),
        "rootCauseAnalysis": _sub_record(RootCauseAnalysis, f.root_cause_analysis),
        "recurrence": _sub_record(Recurrence, f.recurrence),
        "verification": _sub_record(Verification, f.verification),
        "version": f.version,
        "createdBy": f.created_by,
        "updatedBy": f.updated_by,
        "createdAt": f.created_at.isoformat() if f.created_at else None,
        "updatedAt": f.updated_at.isoformat() if f.updated_at else None,
    }


def _filters(
    status: FindingStatus | None = Query(None),
    stage: FindingStage | None = Query(None),
    category: FindingCategory | None = Query(None),
    severity: Severity | None = Query(None),
    iso_phase: IsoPhase | None = Query(None, alias="isoPhase"),
    process_id: str | None = Query(None, alias="processId"),
    source_id: str | None = Query(None, alias="sourceId"),
    year: int | None = Query(None, ge=1900, le=9999),
    search: str | None = Query(None),
) -> FindingFilters:
    return FindingFilters(
        status=status,
        stage=stage,
        category=category,
        severity=severity,
        iso_phase=iso_phase,
        process_id=process_id,
        source_id=source_id,
        year=year,
        search=search,
    )


@router.post("/findings", status_code=201)
async def register_finding(
    body: FindingCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    row = await FindingLifecycleManager(db, settings).register(body, actor)
    await db.commit()
    return _finding_to_dict(row)


@router.get("/findings")
async def list_findings(
    filters: FindingFilters = Depends(_filters),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    """List active findings, most recently detected first."""
    rows = await FindingLifecycleManager(db, settings).list_findings(filters, limit=limit, offset=offset)
    return {
        "items": [_finding_to_dict(f) for f in rows],
        "limit": limit,
        "offset": offset,
    }


@router.get("/findings/stats")
async def finding_stats(
    filters: FindingFilters = Depends(_filters),
    db: AsyncSession = Depends(get_db),
) -> dict:
    stats = await ProgressAggregator(db).finding_stats(filters)
    return stats.to_wire()


@router.get("/findings/{finding_id}")
async def get_finding(
    finding_id: str,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    findings = FindingLifecycleManager(db, settings)
    row = await findings.get(finding_id)
    actions = await ActionLifecycleManager(db, findings).list_for_finding(finding_id)
    return {
        **_finding_to_dict(row),
        "actions": [
            {
                "id": a.action_id,
                "actionNumber": a.action_number,
                "status": a.status,
                "progress": a.progress,
            }
            for a in actions
        ],
    }


@router.get("/findings/{finding_id}/actions")
async def list_finding_actions(
    finding_id: str,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> list[dict]:
    findings = FindingLifecycleManager(db, settings)
    await findings.get(finding_id)
    actions = await ActionLifecycleManager(db, findings).list_for_finding(finding_id)
    return [action_to_dict(a) for a in actions]


@router.get("/findings/{finding_id}/closure-readiness")
async def finding_closure_readiness(
    finding_id: str,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    findings = FindingLifecycleManager(db, settings)
    verifier = EffectivenessVerifier(findings, ActionLifecycleManager(db, findings))
    readiness = await verifier.closure_readiness(finding_id)
    return readiness.to_wire()


@router.post("/findings/{finding_id}/immediate-correction/plan")
async def plan_immediate_correction(
    finding_id: str,
    body: ImmediateCorrectionPlan,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    row = await FindingLifecycleManager(db, settings).plan_immediate_correction(finding_id, body, actor)
    await db.commit()
    return _finding_to_dict(row)


@router.post("/findings/{finding_id}/immediate-correction/execute")
async def execute_immediate_correction(
    finding_id: str,
    body: ImmediateCorrectionExecution,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    row = await FindingLifecycleManager(db, settings).execute_immediate_correction(finding_id, body, actor)
    await db.commit()
    return _finding_to_dict(row)


@router.post("/findings/{finding_id}/root-cause-analysis")
async def analyze_root_cause(
    finding_id: str,
    body: RootCauseAnalysisRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Record the root cause; the response carries the recurrence verdict."""
    row = await FindingLifecycleManager(db, settings).analyze_root_cause(finding_id, body, actor)
    await db.commit()
    return _finding_to_dict(row)


@router.post("/findings/{finding_id}/verify")
async def verify_finding(
    finding_id: str,
    body: VerificationRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    row = await FindingLifecycleManager(db, settings).verify(finding_id, body, actor)
    await db.commit()
    return _finding_to_dict(row)


@router.post("/findings/{finding_id}/reopen")
async def reopen_finding(
    finding_id: str,
    body: ReopenRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    reason = body.reason if body else None
    row = await FindingLifecycleManager(db, settings).reopen(finding_id, actor, reason=reason)
    await db.commit()
    return _finding_to_dict(row)


@router.patch("/findings/{finding_id}/phase")
async def update_finding_phase(
    finding_id: str,
    body: PhaseUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Set the advisory ISO phase tag. Has no effect on the stage."""
    row = await FindingLifecycleManager(db, settings).set_iso_phase(finding_id, body.phase, actor)
    await db.commit()
    return _finding_to_dict(row)


@router.delete("/findings/{finding_id}")
async def archive_finding(
    finding_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    settings: Settings = Depends(get_settings),
) -> dict:
    row = await FindingLifecycleManager(db, settings).archive(finding_id, actor)
    await db.commit()
    return {"id": row.finding_id, "archived": True}
