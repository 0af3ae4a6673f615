"""Pydantic models for the Finding entity and its stage sub-records.

Each workflow stage owns one typed sub-record. Request models carry what a
caller submits; the matching record model (a subclass) adds the fields the
engine fills in itself before the sub-record is persisted.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from capa.models.common import CamelModel
from capa.models.enums import (
    CorrectionStatus,
    FindingCategory,
    FindingSourceType,
    FindingStage,
    FindingStatus,
    FindingType,
    IsoPhase,
    Priority,
    RiskLevel,
    Severity,
)


class FindingSource(CamelModel):
    """Where the finding was raised (an audit, a process, a customer...)."""

    type: FindingSourceType
    id: str = Field(..., min_length=1)
    name: str | None = None
    reference: str | None = None


class FindingCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    source: FindingSource
    finding_type: FindingType = FindingType.NON_CONFORMITY
    severity: Severity
    risk_level: RiskLevel
    category: FindingCategory
    priority: Priority = Priority.MEDIUM
    process_id: str | None = None
    process_name: str | None = None
    responsible_person_id: str | None = None
    responsible_person_name: str | None = None
    evidence: str | None = None
    detected_at: datetime | None = None
    iso_phase: IsoPhase = IsoPhase.DETECTION


class ImmediateCorrectionPlan(CamelModel):
    description: str = Field(..., min_length=1)
    commitment_date: date | None = None
    responsible_person_id: str | None = None
    responsible_person_name: str | None = None


class ImmediateCorrectionExecution(CamelModel):
    execution_date: date
    correction: str | None = None
    comments: str | None = None


class ImmediateCorrection(CamelModel):
    description: str
    status: CorrectionStatus
    commitment_date: date | None = None
    execution_date: date | None = None
    responsible_person_id: str | None = None
    responsible_person_name: str | None = None
    correction: str | None = None
    comments: str | None = None
    planned_by: str | None = None
    executed_by: str | None = None


class RootCauseAnalysisRequest(CamelModel):
    method: str = Field(..., min_length=1)
    root_cause: str = Field(..., min_length=1)
    contributing_factors: list[str] = Field(default_factory=list)
    analysis: str = Field(..., min_length=1)


class RootCauseAnalysis(RootCauseAnalysisRequest):
    analyzed_by: str
    analyzed_at: datetime


class Recurrence(CamelModel):
    is_recurrent: bool
    matched_finding_ids: list[str] = Field(default_factory=list)
    occurrence_count: int = 1
    match_key: dict[str, str | None] = Field(default_factory=dict)
    lookback_days: int
    threshold: int
    evaluated_at: datetime


class VerificationRequest(CamelModel):
    verified_by: str = Field(..., min_length=1)
    verification_date: date
    evidence: str = Field(..., min_length=1)
    comments: str | None = None


class Verification(VerificationRequest):
    recorded_by: str
    recorded_at: datetime


class PhaseUpdate(CamelModel):
    phase: IsoPhase


class FindingFilters(BaseModel):
    """Query filters shared by listing and statistics."""

    status: FindingStatus | None = None
    stage: FindingStage | None = None
    category: FindingCategory | None = None
    severity: Severity | None = None
    iso_phase: IsoPhase | None = None
    process_id: str | None = None
    source_id: str | None = None
    year: int | None = None
    search: str | None = None


class ReopenRequest(CamelModel):
    reason: str | None = None
