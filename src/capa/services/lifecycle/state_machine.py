"""Finite-state machines for finding stages and action statuses.

Every operation that changes a finding's ``stage`` or an action's ``status``
asks this module for the next state first. An illegal request raises
InvalidTransitionError before anything is written, so the entity is left
exactly as it was. The advisory ``iso_phase`` tag is not part of either
machine.
"""

from enum import StrEnum

from capa.errors.exceptions import InvalidTransitionError
from capa.models.enums import ActionStatus, FindingStage

STAGE_SEQUENCE: tuple[FindingStage, ...] = (
    FindingStage.REGISTERED,
    FindingStage.IMMEDIATE_ACTION_PLANNED,
    FindingStage.IMMEDIATE_ACTION_EXECUTED,
    FindingStage.ROOT_CAUSE_ANALYZED,
    FindingStage.VERIFIED_CLOSED,
)


class FindingEvent(StrEnum):
    PLAN_IMMEDIATE_CORRECTION = "plan_immediate_correction"
    EXECUTE_IMMEDIATE_CORRECTION = "execute_immediate_correction"
    ANALYZE_ROOT_CAUSE = "analyze_root_cause"
    VERIFY = "verify"
    REOPEN = "reopen"


# event -> (stages the event may fire from, stage it leads to)
FINDING_TRANSITIONS: dict[FindingEvent, tuple[frozenset[FindingStage], FindingStage]] = {
    FindingEvent.PLAN_IMMEDIATE_CORRECTION: (
        frozenset({FindingStage.REGISTERED}),
        FindingStage.IMMEDIATE_ACTION_PLANNED,
    ),
    FindingEvent.EXECUTE_IMMEDIATE_CORRECTION: (
        frozenset({FindingStage.IMMEDIATE_ACTION_PLANNED}),
        FindingStage.IMMEDIATE_ACTION_EXECUTED,
    ),
    FindingEvent.ANALYZE_ROOT_CAUSE: (
        frozenset({FindingStage.IMMEDIATE_ACTION_EXECUTED}),
        FindingStage.ROOT_CAUSE_ANALYZED,
    ),
    FindingEvent.VERIFY: (
        frozenset({FindingStage.ROOT_CAUSE_ANALYZED}),
        FindingStage.VERIFIED_CLOSED,
    ),
    FindingEvent.REOPEN: (
        frozenset({FindingStage.ROOT_CAUSE_ANALYZED, FindingStage.VERIFIED_CLOSED}),
        FindingStage.ROOT_CAUSE_ANALYZED,
    ),
}

ACTION_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PLANNED: frozenset({ActionStatus.IN_PROGRESS, ActionStatus.CANCELLED}),
    ActionStatus.IN_PROGRESS: frozenset(
        {ActionStatus.COMPLETED, ActionStatus.ON_HOLD, ActionStatus.CANCELLED}
    ),
    ActionStatus.ON_HOLD: frozenset({ActionStatus.IN_PROGRESS, ActionStatus.CANCELLED}),
    ActionStatus.COMPLETED: frozenset(),
    ActionStatus.CANCELLED: frozenset(),
}

TERMINAL_ACTION_STATUSES = frozenset({ActionStatus.COMPLETED, ActionStatus.CANCELLED})


def finding_transition(
    current: str, event: FindingEvent, finding_id: str | None = None
) -> FindingStage:
    """Return the stage ``event`` leads to from ``current`` or raise."""
    sources, target = FINDING_TRANSITIONS[event]
    current_stage = FindingStage(current)
    if current_stage not in sources:
        raise InvalidTransitionError("finding", finding_id, current_stage.value, target.value)
    return target


def action_transition(
    current: str, requested: str, action_id: str | None = None
) -> ActionStatus:
    """Validate a status change against the action transition table."""
    current_status = ActionStatus(current)
    requested_status = ActionStatus(requested)
    if requested_status not in ACTION_TRANSITIONS[current_status]:
        raise InvalidTransitionError(
            "action", action_id, current_status.value, requested_status.value
        )
    return requested_status


def stage_reached(current: str, stage: FindingStage) -> bool:
    """True if ``current`` is ``stage`` or any later stage."""
    return STAGE_SEQUENCE.index(FindingStage(current)) >= STAGE_SEQUENCE.index(stage)
