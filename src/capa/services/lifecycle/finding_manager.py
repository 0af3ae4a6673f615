"""Finding lifecycle: registration through verification and closure.

Stage order is fixed (see ``state_machine``); each operation moves the
finding exactly one stage and sets ``progress`` to the configured checkpoint
for the new stage. Progress never goes down, not even on reopen.

Closing reads the linked actions first and then writes the finding. The two
steps do not share a lock, so an action updated concurrently between them
may not be seen; the check is best-effort rather than transactional. Each
single write is still guarded by the row version.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from capa.config import Settings, settings as default_settings
from capa.db.base import as_utc
from capa.db.models.finding import FindingRow
from capa.errors.exceptions import InvalidStateError, NotFoundError
from capa.models.common import Actor
from capa.models.enums import CorrectionStatus, FindingStage, FindingStatus, IsoPhase
from capa.models.finding import (
    FindingCreate,
    FindingFilters,
    ImmediateCorrection,
    ImmediateCorrectionExecution,
    ImmediateCorrectionPlan,
    RootCauseAnalysis,
    RootCauseAnalysisRequest,
    Verification,
    VerificationRequest,
)
from capa.repositories.action_repo import ActionRepository
from capa.repositories.finding_repo import FindingRepository
from capa.services.id_generator import FINDING_NUMBER_PREFIX, generate_id, generate_number
from capa.services.lifecycle.effectiveness import closure_blockers
from capa.services.lifecycle.recurrence import RecurrenceDetector
from capa.services.lifecycle.state_machine import (
    TERMINAL_ACTION_STATUSES,
    FindingEvent,
    finding_transition,
)

logger = logging.getLogger(__name__)


class FindingLifecycleManager:
    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or default_settings
        self.repo = FindingRepository(session)
        self.action_repo = ActionRepository(session)
        self.recurrence = RecurrenceDetector(session, self.settings)

    def checkpoint(self, stage: FindingStage) -> int:
        return self.settings.stage_progress[stage.value]

    async def get(self, finding_id: str) -> FindingRow:
        row = await self.repo.get_active(finding_id)
        if row is None:
            raise NotFoundError("Finding", finding_id)
        return row

    async def list_findings(
        self,
        filters: FindingFilters | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FindingRow]:
        return await self.repo.list_filtered(filters, limit=limit, offset=offset)

    async def register(self, data: FindingCreate, actor: Actor) -> FindingRow:
        detected_at = as_utc(data.detected_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
        finding_number = await generate_number(self.session, FINDING_NUMBER_PREFIX, detected_at.year)
        row = await self.repo.create(
            finding_id=generate_id("find_"),
            finding_number=finding_number,
            title=data.title,
            description=data.description,
            source_type=data.source.type,
            source_id=data.source.id,
            source_name=data.source.name,
            source_reference=data.source.reference,
            process_id=data.process_id,
            process_name=data.process_name,
            finding_type=data.finding_type,
            severity=data.severity,
            risk_level=data.risk_level,
            category=data.category,
            priority=data.priority,
            responsible_person_id=data.responsible_person_id,
            responsible_person_name=data.responsible_person_name,
            evidence=data.evidence,
            detected_at=detected_at,
            stage=FindingStage.REGISTERED.value,
            iso_phase=data.iso_phase.value,
            progress=self.checkpoint(FindingStage.REGISTERED),
            status=FindingStatus.OPEN.value,
            created_by=actor.user_id,
        )
        logger.info(
            "finding_registered",
            extra={
                "finding_id": row.finding_id,
                "finding_number": row.finding_number,
                "category": row.category,
                "user_id": actor.user_id,
            },
        )
        return row

    async def plan_immediate_correction(
        self, finding_id: str, plan: ImmediateCorrectionPlan, actor: Actor
    ) -> FindingRow:
        row = await self.get(finding_id)
        finding_transition(row.stage, FindingEvent.PLAN_IMMEDIATE_CORRECTION, finding_id)
        correction = ImmediateCorrection(
            description=plan.description,
            status=CorrectionStatus.PENDING,
            commitment_date=plan.commitment_date,
            responsible_person_id=plan.responsible_person_id,
            responsible_person_name=plan.responsible_person_name,
            planned_by=actor.user_id,
        )
        return await self._advance(
            row,
            FindingEvent.PLAN_IMMEDIATE_CORRECTION,
            actor,
            immediate_correction=correction.to_record(),
        )

    async def execute_immediate_correction(
        self, finding_id: str, execution: ImmediateCorrectionExecution, actor: Actor
    ) -> FindingRow:
        row = await self.get(finding_id)
        finding_transition(row.stage, FindingEvent.EXECUTE_IMMEDIATE_CORRECTION, finding_id)
        correction = ImmediateCorrection.model_validate(row.immediate_correction)
        correction = correction.model_copy(
            update={
                "status": CorrectionStatus.COMPLETED,
                "execution_date": execution.execution_date,
                "correction": execution.correction,
                "comments": execution.comments,
                "executed_by": actor.user_id,
            }
        )
        return await self._advance(
            row,
            FindingEvent.EXECUTE_IMMEDIATE_CORRECTION,
            actor,
            immediate_correction=correction.to_record(),
        )

    async def analyze_root_cause(
        self, finding_id: str, analysis: RootCauseAnalysisRequest, actor: Actor
    ) -> FindingRow:
        """Record the root cause, then run recurrence detection before returning."""
        row = await self.get(finding_id)
        finding_transition(row.stage, FindingEvent.ANALYZE_ROOT_CAUSE, finding_id)
        record = RootCauseAnalysis(
            **analysis.model_dump(),
            analyzed_by=actor.user_id,
            analyzed_at=datetime.now(timezone.utc),
        )
        with self.session.no_autoflush:
            row.root_cause_analysis = record.to_record()
            recurrence = await self.recurrence.evaluate(row)
        return await self._advance(
            row,
            FindingEvent.ANALYZE_ROOT_CAUSE,
            actor,
            recurrence=recurrence.to_record(),
        )

    async def verify(
        self, finding_id: str, verification: VerificationRequest, actor: Actor
    ) -> FindingRow:
        row = await self.get(finding_id)
        finding_transition(row.stage, FindingEvent.VERIFY, finding_id)

        blockers = closure_blockers(await self.action_repo.list_by_finding(finding_id))
        if blockers:
            raise InvalidStateError(
                "finding",
                finding_id,
                "linked actions are not all completed and verified effective",
                state=row.stage,
                blockers=[b.to_wire() for b in blockers],
            )

        now = datetime.now(timezone.utc)
        record = Verification(
            **verification.model_dump(),
            recorded_by=actor.user_id,
            recorded_at=now,
        )
        return await self._advance(
            row,
            FindingEvent.VERIFY,
            actor,
            verification=record.to_record(),
            status=FindingStatus.CLOSED.value,
            closed_at=now,
        )

    async def reopen(self, finding_id: str, actor: Actor, reason: str | None = None) -> FindingRow:
        """Send the finding back to root-cause-analyzed and drop its verification."""
        row = await self.get(finding_id)
        finding_transition(row.stage, FindingEvent.REOPEN, finding_id)
        row = await self._advance(
            row,
            FindingEvent.REOPEN,
            actor,
            verification=None,
            status=FindingStatus.OPEN.value,
            closed_at=None,
            reopen_count=row.reopen_count + 1,
        )
        logger.info(
            "finding_reopened",
            extra={"finding_id": finding_id, "reason": reason, "user_id": actor.user_id},
        )
        return row

    async def set_iso_phase(self, finding_id: str, phase: IsoPhase, actor: Actor) -> FindingRow:
        """Advisory ISO classification; independent of the stage machine."""
        row = await self.get(finding_id)
        return await self.repo.update(row, iso_phase=phase.value, updated_by=actor.user_id)

    async def archive(self, finding_id: str, actor: Actor) -> FindingRow:
        row = await self.get(finding_id)
        open_actions = [
            a for a in await self.action_repo.list_by_finding(finding_id)
            if a.status not in TERMINAL_ACTION_STATUSES
        ]
        if open_actions:
            raise InvalidStateError(
                "finding",
                finding_id,
                "finding still has open actions",
                state=row.stage,
                blockers=[
                    {"actionId": a.action_id, "status": a.status, "reason": "action is still open"}
                    for a in open_actions
                ],
            )
        await self.repo.update(
            row,
            is_active=False,
            archived_at=datetime.now(timezone.utc),
            updated_by=actor.user_id,
        )
        logger.info("finding_archived", extra={"finding_id": finding_id, "user_id": actor.user_id})
        return row

    async def _advance(
        self, row: FindingRow, event: FindingEvent, actor: Actor, **fields
    ) -> FindingRow:
        target = finding_transition(row.stage, event, row.finding_id)
        previous = row.stage
        progress = max(row.progress, self.checkpoint(target))
        await self.repo.update(
            row,
            stage=target.value,
            progress=progress,
            updated_by=actor.user_id,
            **fields,
        )
        logger.info(
            "finding_stage_changed",
            extra={
                "finding_id": row.finding_id,
                "from_stage": previous,
                "to_stage": target.value,
                "progress": progress,
                "user_id": actor.user_id,
            },
        )
        return row
