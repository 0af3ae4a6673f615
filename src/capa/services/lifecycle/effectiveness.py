"""Effectiveness verification and the finding closure gate."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from capa.db.base import as_utc
from capa.db.models.action import ActionRow
from capa.models.action import EffectivenessVerificationRequest
from capa.models.common import Actor
from capa.models.effectiveness import ClosureBlocker, ClosureReadiness, EffectivenessVerdict
from capa.models.enums import ActionStatus, FindingStage
from capa.services.lifecycle.state_machine import FINDING_TRANSITIONS, FindingEvent

if TYPE_CHECKING:
    from capa.services.lifecycle.action_manager import ActionLifecycleManager
    from capa.services.lifecycle.finding_manager import FindingLifecycleManager

logger = logging.getLogger(__name__)


def _recorded_at(action: ActionRow) -> datetime:
    return as_utc(datetime.fromisoformat(action.effectiveness_verification["recorded_at"]))


def _is_effective(action: ActionRow) -> bool:
    verification = action.effectiveness_verification
    return (
        action.status == ActionStatus.COMPLETED
        and verification is not None
        and bool(verification.get("is_effective"))
    )


def closure_blockers(actions: list[ActionRow]) -> list[ClosureBlocker]:
    """List the reasons the linked actions keep a finding from closing.

    Every active action must be completed and verified effective. An action
    verified ineffective stops blocking once an effective action created
    after that verdict exists.
    """
    effective = [a for a in actions if _is_effective(a)]
    blockers: list[ClosureBlocker] = []
    for action in actions:
        if action.status != ActionStatus.COMPLETED:
            reason = "action is not completed"
        elif action.effectiveness_verification is None:
            reason = "effectiveness has not been verified"
        elif not action.effectiveness_verification.get("is_effective"):
            judged_at = _recorded_at(action)
            if any(as_utc(other.created_at) >= judged_at for other in effective):
                continue
            reason = "verified ineffective; an effective follow-up action is required"
        else:
            continue
        blockers.append(
            ClosureBlocker(
                action_id=action.action_id,
                action_number=action.action_number,
                status=action.status,
                reason=reason,
            )
        )
    return blockers


class EffectivenessVerifier:
    """Records effectiveness verdicts and feeds them back into the finding.

    Writes go through the two lifecycle managers only. An ineffective verdict
    leaves the action completed, reopens the owning finding if it had reached
    root-cause analysis, and reports that a new action is needed. Creating
    that action is left to the caller.
    """

    def __init__(self, findings: "FindingLifecycleManager", actions: "ActionLifecycleManager"):
        self.findings = findings
        self.actions = actions

    async def verify(
        self,
        action_id: str,
        verification: EffectivenessVerificationRequest,
        actor: Actor,
    ) -> EffectivenessVerdict:
        action = await self.actions.verify_effectiveness(action_id, verification, actor)
        finding = await self.findings.get(action.finding_id)

        reopened = False
        reopen_sources, _ = FINDING_TRANSITIONS[FindingEvent.REOPEN]
        if not verification.is_effective and finding.stage in reopen_sources:
            await self.findings.reopen(
                finding.finding_id,
                actor,
                reason=f"action {action.action_number} verified ineffective",
            )
            reopened = True

        readiness = await self.closure_readiness(finding.finding_id)

        logger.info(
            "effectiveness_verified",
            extra={
                "action_id": action.action_id,
                "finding_id": finding.finding_id,
                "is_effective": verification.is_effective,
                "finding_reopened": reopened,
                "user_id": actor.user_id,
            },
        )
        return EffectivenessVerdict(
            action_id=action.action_id,
            finding_id=finding.finding_id,
            is_effective=verification.is_effective,
            finding_reopened=reopened,
            new_action_required=not verification.is_effective,
            finding_may_close=readiness.may_close,
        )

    async def closure_readiness(self, finding_id: str) -> ClosureReadiness:
        """Whether the finding may move to verified/closed right now."""
        finding = await self.findings.get(finding_id)
        blockers = closure_blockers(await self.actions.list_for_finding(finding_id))
        return ClosureReadiness(
            finding_id=finding_id,
            stage=finding.stage,
            may_close=finding.stage == FindingStage.ROOT_CAUSE_ANALYZED and not blockers,
            blockers=blockers,
        )
