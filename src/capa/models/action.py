"""Pydantic models for corrective/preventive actions."""

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from capa.models.common import CamelModel
from capa.models.enums import ActionStatus, ActionType, Priority


class ActionData(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    action_type: ActionType
    priority: Priority
    responsible_person_id: str = Field(..., min_length=1)
    responsible_person_name: str | None = None
    planned_start_date: date | None = None
    planned_end_date: date | None = None

    @model_validator(mode="after")
    def _check_dates(self) -> "ActionData":
        if (
            self.planned_start_date
            and self.planned_end_date
            and self.planned_end_date < self.planned_start_date
        ):
            raise ValueError("plannedEndDate must not precede plannedStartDate")
        return self


class ActionCreate(ActionData):
    """Wire payload for creating an action; names the owning finding."""

    finding_id: str = Field(..., min_length=1)


class ActionUpdate(CamelModel):
    """Editable descriptive fields. The owning finding is fixed at creation."""

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    priority: Priority | None = None
    responsible_person_id: str | None = Field(None, min_length=1)
    responsible_person_name: str | None = None
    planned_start_date: date | None = None
    planned_end_date: date | None = None

    @field_validator("title", "description", "priority", "responsible_person_id")
    @classmethod
    def _not_null(cls, value):
        # Omit a field to leave it unchanged; null would clear a required column.
        if value is None:
            raise ValueError("must not be null")
        return value


class ProgressUpdate(CamelModel):
    progress: int = Field(..., ge=0, le=100)


class StatusUpdate(CamelModel):
    status: ActionStatus


class CommentCreate(CamelModel):
    comment: str = Field(..., min_length=1)


class ActionComment(CamelModel):
    user_id: str
    user_name: str
    comment: str
    timestamp: datetime


class EffectivenessPlanRequest(CamelModel):
    """Control planning: who verifies effectiveness, by when, against what."""

    responsible_person_id: str = Field(..., min_length=1)
    responsible_person_name: str | None = None
    verification_commitment_date: date
    criteria: str = Field(..., min_length=1)
    comments: str | None = None


class EffectivenessPlan(EffectivenessPlanRequest):
    planned_by: str
    planned_at: datetime


class EffectivenessVerificationRequest(CamelModel):
    """The verdict. Responsible person, commitment date and criteria may be
    left out when an effectiveness plan was recorded; they are taken from it.
    """

    responsible_person_id: str | None = Field(None, min_length=1)
    responsible_person_name: str | None = None
    verification_commitment_date: date | None = None
    verification_execution_date: date | None = None
    method: str = Field(..., min_length=1)
    criteria: str | None = Field(None, min_length=1)
    is_effective: bool
    result: str = Field(..., min_length=1)
    evidence: str = Field(..., min_length=1)
    comments: str | None = None


class EffectivenessVerification(EffectivenessVerificationRequest):
    responsible_person_id: str
    criteria: str
    recorded_by: str
    recorded_at: datetime


class ActionFilters(BaseModel):
    status: ActionStatus | None = None
    action_type: ActionType | None = None
    priority: Priority | None = None
    finding_id: str | None = None
    responsible_person_id: str | None = None
    year: int | None = None
    search: str | None = None
