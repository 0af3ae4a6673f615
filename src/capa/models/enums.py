"""String enums for findings and actions."""

from enum import StrEnum


class FindingStage(StrEnum):
    REGISTERED = "registered"
    IMMEDIATE_ACTION_PLANNED = "immediate_action_planned"
    IMMEDIATE_ACTION_EXECUTED = "immediate_action_executed"
    ROOT_CAUSE_ANALYZED = "root_cause_analyzed"
    VERIFIED_CLOSED = "verified_closed"


class IsoPhase(StrEnum):
    DETECTION = "detection"
    TREATMENT = "treatment"
    CONTROL = "control"


class FindingStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class FindingSourceType(StrEnum):
    AUDIT = "audit"
    EMPLOYEE = "employee"
    CUSTOMER = "customer"
    INSPECTION = "inspection"
    SUPPLIER = "supplier"
    PROCESS = "process"


class FindingType(StrEnum):
    NON_CONFORMITY = "non_conformity"
    OBSERVATION = "observation"
    IMPROVEMENT_OPPORTUNITY = "improvement_opportunity"


class Severity(StrEnum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    LOW = "low"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FindingCategory(StrEnum):
    QUALITY = "quality"
    SAFETY = "safety"
    ENVIRONMENT = "environment"
    PROCESS = "process"
    EQUIPMENT = "equipment"
    DOCUMENTATION = "documentation"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CorrectionStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ActionType(StrEnum):
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"
    IMPROVEMENT = "improvement"


class ActionStatus(StrEnum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"
