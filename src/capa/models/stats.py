"""Aggregate statistics returned by the progress aggregator."""

from pydantic import Field

from capa.models.common import CamelModel


class FindingStats(CamelModel):
    total: int = 0
    closed_count: int = 0
    requires_action_count: int = 0
    average_progress: int = 0
    by_stage: dict[str, int] = Field(default_factory=dict)
    by_iso_phase: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_process: dict[str, int] = Field(default_factory=dict)


class ActionStats(CamelModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)
    average_progress: int = 0
    verified_count: int = 0
    effective_count: int = 0
    overdue_count: int = 0
