"""Corrective/preventive action lifecycle."""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from capa.db.models.action import ActionRow
from capa.errors.exceptions import InvalidStateError, NotFoundError, ValidationError
from capa.models.action import (
    ActionComment,
    ActionData,
    ActionFilters,
    ActionUpdate,
    EffectivenessPlan,
    EffectivenessPlanRequest,
    EffectivenessVerification,
    EffectivenessVerificationRequest,
)
from capa.models.common import Actor
from capa.models.enums import ActionStatus, FindingStatus
from capa.repositories.action_repo import ActionRepository
from capa.services.id_generator import ACTION_NUMBER_PREFIX, generate_id, generate_number
from capa.services.lifecycle.finding_manager import FindingLifecycleManager
from capa.services.lifecycle.state_machine import TERMINAL_ACTION_STATUSES, action_transition

logger = logging.getLogger(__name__)


class ActionLifecycleManager:
    """Owns action rows; every mutation of an action goes through here.

    Progress reaches 100 only by completing the action, and completing it
    always sets 100, so ``progress == 100`` holds exactly for completed
    actions. Progress never decreases.
    """

    def __init__(self, session: AsyncSession, findings: FindingLifecycleManager | None = None):
        self.session = session
        self.repo = ActionRepository(session)
        self.findings = findings or FindingLifecycleManager(session)

    async def get(self, action_id: str) -> ActionRow:
        row = await self.repo.get_active(action_id)
        if row is None:
            raise NotFoundError("Action", action_id)
        return row

    async def list_actions(
        self,
        filters: ActionFilters | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ActionRow]:
        return await self.repo.list_filtered(filters, limit=limit, offset=offset)

    async def list_for_finding(self, finding_id: str) -> list[ActionRow]:
        return await self.repo.list_by_finding(finding_id)

    async def create(self, finding_id: str, data: ActionData, actor: Actor) -> ActionRow:
        finding = await self.findings.get(finding_id)
        if finding.status == FindingStatus.CLOSED:
            raise InvalidStateError(
                "finding",
                finding_id,
                "actions cannot be added to a closed finding",
                state=finding.stage,
            )

        action_number = await generate_number(self.session, ACTION_NUMBER_PREFIX)
        row = await self.repo.create(
            action_id=generate_id("act_"),
            action_number=action_number,
            finding_id=finding_id,
            title=data.title,
            description=data.description,
            action_type=data.action_type,
            priority=data.priority,
            status=ActionStatus.PLANNED.value,
            progress=0,
            responsible_person_id=data.responsible_person_id,
            responsible_person_name=data.responsible_person_name,
            planned_start_date=data.planned_start_date,
            planned_end_date=data.planned_end_date,
            comments=[],
            created_by=actor.user_id,
        )
        logger.info(
            "action_created",
            extra={
                "action_id": row.action_id,
                "action_number": row.action_number,
                "finding_id": finding_id,
                "user_id": actor.user_id,
            },
        )
        return row

    async def update_details(self, action_id: str, data: ActionUpdate, actor: Actor) -> ActionRow:
        row = await self.get(action_id)
        if row.status in TERMINAL_ACTION_STATUSES:
            raise InvalidStateError("action", action_id, "a closed action cannot be edited", state=row.status)
        changes = data.model_dump(exclude_unset=True)
        start = changes.get("planned_start_date", row.planned_start_date)
        end = changes.get("planned_end_date", row.planned_end_date)
        if start and end and end < start:
            raise ValidationError.for_field("plannedEndDate", "must not precede plannedStartDate")
        if not changes:
            return row
        return await self.repo.update(row, updated_by=actor.user_id, **changes)

    async def update_progress(self, action_id: str, value: int, actor: Actor) -> ActionRow:
        """Record partial progress. Does not change the status."""
        if not 0 <= value <= 100:
            raise ValidationError.for_field("progress", "must be between 0 and 100")
        row = await self.get(action_id)
        if row.status in TERMINAL_ACTION_STATUSES:
            raise InvalidStateError(
                "action", action_id, "progress of a closed action cannot change", state=row.status
            )
        if value < row.progress:
            raise InvalidStateError(
                "action",
                action_id,
                f"progress cannot decrease from {row.progress} to {value}",
                state=row.status,
            )
        if value == 100:
            raise InvalidStateError(
                "action",
                action_id,
                "progress reaches 100 only by completing the action",
                state=row.status,
            )
        return await self.repo.update(row, progress=value, updated_by=actor.user_id)

    async def update_status(self, action_id: str, new_status: ActionStatus, actor: Actor) -> ActionRow:
        """Move the action along the status machine.

        The first move to in_progress stamps ``actual_start_date``; completing
        stamps ``actual_end_date`` and ``completed_by`` and sets progress to 100.
        """
        row = await self.get(action_id)
        target = action_transition(row.status, new_status, action_id)
        previous = row.status
        today = datetime.now(timezone.utc).date()
        fields: dict = {"status": target.value, "updated_by": actor.user_id}
        if target in (ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED) and row.actual_start_date is None:
            fields["actual_start_date"] = today
        if target == ActionStatus.COMPLETED:
            fields["progress"] = 100
            fields["actual_end_date"] = today
            fields["completed_by"] = actor.user_id
        await self.repo.update(row, **fields)
        logger.info(
            "action_status_changed",
            extra={
                "action_id": action_id,
                "finding_id": row.finding_id,
                "from_status": previous,
                "to_status": target.value,
                "progress": row.progress,
                "user_id": actor.user_id,
            },
        )
        return row

    async def add_comment(self, action_id: str, comment: str, actor: Actor) -> ActionRow:
        row = await self.get(action_id)
        entry = ActionComment(
            user_id=actor.user_id,
            user_name=actor.display_name,
            comment=comment,
            timestamp=datetime.now(timezone.utc),
        )
        # Reassign rather than append so the JSON column is marked dirty.
        return await self.repo.update(
            row,
            comments=[*(row.comments or []), entry.to_record()],
            updated_by=actor.user_id,
        )

    async def plan_effectiveness_verification(
        self,
        action_id: str,
        plan: EffectivenessPlanRequest,
        actor: Actor,
    ) -> ActionRow:
        """Record who will verify effectiveness, by when and against which criteria.

        May be revised until the verdict is recorded. Cancelled actions are
        never verified, so they cannot be planned either.
        """
        row = await self.get(action_id)
        if row.status == ActionStatus.CANCELLED:
            raise InvalidStateError(
                "action", action_id, "a cancelled action is not verified", state=row.status
            )
        if row.effectiveness_verification is not None:
            raise InvalidStateError(
                "action", action_id, "effectiveness has already been verified", state=row.status
            )
        record = EffectivenessPlan(
            **plan.model_dump(),
            planned_by=actor.user_id,
            planned_at=datetime.now(timezone.utc),
        )
        await self.repo.update(row, effectiveness_plan=record.to_record(), updated_by=actor.user_id)
        logger.info(
            "effectiveness_planned",
            extra={
                "action_id": action_id,
                "finding_id": row.finding_id,
                "verification_commitment_date": str(plan.verification_commitment_date),
                "user_id": actor.user_id,
            },
        )
        return row

    async def verify_effectiveness(
        self,
        action_id: str,
        verification: EffectivenessVerificationRequest,
        actor: Actor,
    ) -> ActionRow:
        """Store the effectiveness verdict on a completed action.

        Planning fields the request leaves out are taken from the recorded
        effectiveness plan; the execution date defaults to today. Callers that
        need the verdict applied to the owning finding go through
        ``EffectivenessVerifier.verify``.
        """
        row = await self.get(action_id)
        if row.status != ActionStatus.COMPLETED:
            raise InvalidStateError(
                "action",
                action_id,
                "effectiveness can only be verified on a completed action",
                state=row.status,
            )
        if row.effectiveness_verification is not None:
            raise InvalidStateError(
                "action", action_id, "effectiveness has already been verified", state=row.status
            )

        values = verification.model_dump(exclude_none=True)
        plan = row.effectiveness_plan or {}
        for field in (
            "responsible_person_id",
            "responsible_person_name",
            "verification_commitment_date",
            "criteria",
        ):
            if field not in values and plan.get(field) is not None:
                values[field] = plan[field]
        for field, wire_name in (("responsible_person_id", "responsiblePersonId"), ("criteria", "criteria")):
            if field not in values:
                raise ValidationError.for_field(wire_name, "required when no effectiveness plan provides it")
        values.setdefault("verification_execution_date", datetime.now(timezone.utc).date())

        record = EffectivenessVerification(
            **values,
            recorded_by=actor.user_id,
            recorded_at=datetime.now(timezone.utc),
        )
        return await self.repo.update(
            row,
            effectiveness_verification=record.to_record(),
            updated_by=actor.user_id,
        )

    async def archive(self, action_id: str, actor: Actor) -> ActionRow:
        """Soft-delete an action that no longer has a say in closing its finding.

        Open actions must be cancelled first. While the finding is open, a
        completed action must carry an effective verdict, so archiving never
        removes a closure blocker.
        """
        row = await self.get(action_id)
        if row.status not in TERMINAL_ACTION_STATUSES:
            raise InvalidStateError(
                "action", action_id, "an open action must be cancelled before archiving", state=row.status
            )
        if row.status == ActionStatus.COMPLETED:
            finding = await self.findings.repo.get(row.finding_id)
            verification = row.effectiveness_verification
            if (
                finding is not None
                and finding.status == FindingStatus.OPEN
                and not (verification and verification.get("is_effective"))
            ):
                raise InvalidStateError(
                    "action",
                    action_id,
                    "a completed action without an effective verdict blocks closure of its open finding",
                    state=row.status,
                )
        await self.repo.update(
            row,
            is_active=False,
            archived_at=datetime.now(timezone.utc),
            updated_by=actor.user_id,
        )
        logger.info("action_archived", extra={"action_id": action_id, "user_id": actor.user_id})
        return row
