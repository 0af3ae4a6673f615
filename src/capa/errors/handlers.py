"""FastAPI exception handlers producing the uniform ErrorResponse."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

from capa.errors.exceptions import CapaError, InternalError, ValidationError
from capa.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _render(request: Request, exc: CapaError) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", "unknown")
    error_response = ErrorResponse(
        error=ErrorDetail(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id,
            timestamp=datetime.now(timezone.utc),
        ),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


def _field_path(loc: tuple) -> str:
    # Drop the "body"/"query"/"path" source marker FastAPI prepends.
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app."""

    @app.exception_handler(CapaError)
    async def capa_error_handler(request: Request, exc: CapaError):
        if exc.status_code >= 500:
            logger.error("request_failed", extra={"path": request.url.path, "code": exc.code})
        else:
            logger.info(
                "request_rejected",
                extra={"path": request.url.path, "code": exc.code, "reason": exc.message},
            )
        return _render(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": _field_path(tuple(err.get("loc", ()))), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        fields = ", ".join(d["field"] for d in details) or "request"
        return _render(request, ValidationError(f"Invalid request payload: {fields}", details))

    @app.exception_handler(OperationalError)
    async def store_operational_handler(request: Request, exc: OperationalError):
        logger.error("record_store_unavailable", extra={"path": request.url.path, "error": str(exc.orig)})
        return _render(request, InternalError())

    @app.exception_handler(InterfaceError)
    async def store_interface_handler(request: Request, exc: InterfaceError):
        logger.error("record_store_unavailable", extra={"path": request.url.path, "error": str(exc.orig)})
        return _render(request, InternalError())
