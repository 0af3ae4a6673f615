"""Shared pydantic bases and the error envelope."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_record(self) -> dict[str, Any]:
        """Dump for storage in a JSON column (snake_case keys)."""
        return self.model_dump(mode="json")

    def to_wire(self) -> dict[str, Any]:
        """Dump for an API response (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True)


class Actor(BaseModel):
    """Identity performing an operation, forwarded by the upstream gateway."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    user_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.user_name or self.user_id


class ErrorDetail(BaseModel):
    """Error detail in API responses."""

    model_config = ConfigDict(extra="forbid")

    code: str
    message: str
    details: dict[str, Any] | list[Any] | str | None = None
    trace_id: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = "1.0"
    error: ErrorDetail
