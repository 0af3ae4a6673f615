"""Read-side statistics over findings and actions."""

import math
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from capa.models.action import ActionFilters
from capa.models.enums import (
    ActionStatus,
    ActionType,
    FindingStage,
    FindingStatus,
    IsoPhase,
    Priority,
    Severity,
)
from capa.models.finding import FindingFilters
from capa.models.stats import ActionStats, FindingStats
from capa.repositories.action_repo import ActionRepository
from capa.repositories.finding_repo import FindingRepository
from capa.services.lifecycle.state_machine import TERMINAL_ACTION_STATUSES, stage_reached


def _average(values: list[int]) -> int:
    if not values:
        return 0
    return math.floor(sum(values) / len(values) + 0.5)


class ProgressAggregator:
    """Full scan-and-reduce over the filtered set; never writes."""

    def __init__(self, session: AsyncSession):
        self.findings = FindingRepository(session)
        self.actions = ActionRepository(session)

    async def finding_stats(self, filters: FindingFilters | None = None) -> FindingStats:
        findings = await self.findings.list_filtered(filters)
        actions = await self.actions.list_by_findings([f.finding_id for f in findings])

        stats = FindingStats(
            total=len(findings),
            by_stage={s.value: 0 for s in FindingStage},
            by_iso_phase={p.value: 0 for p in IsoPhase},
            by_severity={s.value: 0 for s in Severity},
        )
        for finding in findings:
            stats.by_stage[finding.stage] = stats.by_stage.get(finding.stage, 0) + 1
            stats.by_iso_phase[finding.iso_phase] = stats.by_iso_phase.get(finding.iso_phase, 0) + 1
            stats.by_severity[finding.severity] = stats.by_severity.get(finding.severity, 0) + 1
            process = finding.process_name or finding.process_id
            if process:
                stats.by_process[process] = stats.by_process.get(process, 0) + 1
            if finding.status == FindingStatus.CLOSED:
                stats.closed_count += 1
            linked = actions.get(finding.finding_id, [])
            if stage_reached(finding.stage, FindingStage.IMMEDIATE_ACTION_PLANNED) and not all(
                a.status == ActionStatus.COMPLETED for a in linked
            ):
                stats.requires_action_count += 1

        stats.average_progress = _average([f.progress for f in findings])
        return stats

    async def action_stats(self, filters: ActionFilters | None = None) -> ActionStats:
        actions = await self.actions.list_filtered(filters)
        today = datetime.now(timezone.utc).date()

        stats = ActionStats(
            total=len(actions),
            by_status={s.value: 0 for s in ActionStatus},
            by_type={t.value: 0 for t in ActionType},
            by_priority={p.value: 0 for p in Priority},
        )
        for action in actions:
            stats.by_status[action.status] = stats.by_status.get(action.status, 0) + 1
            stats.by_type[action.action_type] = stats.by_type.get(action.action_type, 0) + 1
            stats.by_priority[action.priority] = stats.by_priority.get(action.priority, 0) + 1
            if action.effectiveness_verification is not None:
                stats.verified_count += 1
                if action.effectiveness_verification.get("is_effective"):
                    stats.effective_count += 1
            if (
                action.planned_end_date is not None
                and action.planned_end_date < today
                and action.status not in TERMINAL_ACTION_STATUSES
            ):
                stats.overdue_count += 1

        stats.average_progress = _average([a.progress for a in actions])
        return stats
