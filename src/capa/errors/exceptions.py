"""Custom exception classes for the lifecycle engine."""


class CapaError(Exception):
    """Base exception for the lifecycle engine."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(CapaError):
    """Malformed or missing payload fields.

    ``details`` is a list of ``{"field": ..., "message": ...}`` entries.
    """

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(f"{field}: {message}", details=[{"field": field, "message": message}])


class AuthenticationError(CapaError):
    """Acting identity missing from the request."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__("AUTHENTICATION_ERROR", message, status_code=401)


class NotFoundError(CapaError):
    """Resource not found (or archived)."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            details={"resource": resource, "id": resource_id},
            status_code=404,
        )


class InvalidTransitionError(CapaError):
    """Stage or status change requested from a state that does not permit it."""

    def __init__(self, entity: str, entity_id: str | None, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            "INVALID_TRANSITION",
            f"{entity} cannot move from '{current}' to '{requested}'",
            details={
                "entity": entity,
                "id": entity_id,
                "current": current,
                "requested": requested,
            },
            status_code=409,
        )


class InvalidStateError(CapaError):
    """Operation preconditions not met."""

    def __init__(
        self,
        entity: str,
        entity_id: str | None,
        reason: str,
        state: str | None = None,
        blockers: list[dict] | None = None,
    ):
        self.reason = reason
        self.blockers = blockers or []
        details: dict = {"entity": entity, "id": entity_id, "reason": reason}
        if state is not None:
            details["state"] = state
        if blockers:
            details["blockers"] = blockers
        super().__init__("INVALID_STATE", f"{entity} '{entity_id}': {reason}", details, status_code=409)


class ConcurrencyConflictError(CapaError):
    """Optimistic write lost a race; the caller may retry."""

    def __init__(self, message: str = "Record was modified concurrently; reload and retry"):
        super().__init__("CONCURRENCY_CONFLICT", message, {"retryable": True}, status_code=409)


class InternalError(CapaError):
    """Record store unavailable."""

    def __init__(self, message: str = "Record store unavailable"):
        super().__init__("INTERNAL", message, status_code=503)
