"""Verdicts produced by the effectiveness verifier."""

from pydantic import Field

from capa.models.common import CamelModel


class ClosureBlocker(CamelModel):
    action_id: str
    action_number: str | None = None
    status: str
    reason: str


class ClosureReadiness(CamelModel):
    finding_id: str
    stage: str
    may_close: bool
    blockers: list[ClosureBlocker] = Field(default_factory=list)


class EffectivenessVerdict(CamelModel):
    action_id: str
    finding_id: str
    is_effective: bool
    finding_reopened: bool
    new_action_required: bool
    finding_may_close: bool
