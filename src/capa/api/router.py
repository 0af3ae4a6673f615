"""Master API router mounted at /api/v1."""

from fastapi import APIRouter
from capa.api.routes import (
    actions,
    findings,
    health,
)

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(findings.router)
api_router.include_router(actions.router)
