"""Shared test fixtures."""

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from capa.config import Settings
from capa.db.base import Base
# Import all models to register with Base.metadata
import capa.db.models  # noqa: F401
from capa.models.common import Actor

AUDITOR = {"X-User-Id": "usr_auditor", "X-User-Name": "Ana Auditor"}


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a test database session."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings():
    return Settings(local_mode=True, json_logs=False)


@pytest.fixture
def actor():
    return Actor(user_id="usr_auditor", user_name="Ana Auditor")


@pytest.fixture
def app(db_engine, test_settings):
    """Create a test application instance with in-memory DB."""
    from capa.main import create_app

    _app = create_app(test_settings)
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client sending the auditor identity by default."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=AUDITOR) as ac:
        yield ac


@pytest.fixture
def finding_payload():
    """Build a registration payload (camelCase, as sent over the wire)."""

    def _build(**overrides) -> dict:
        payload = {
            "title": "Calibration record missing for torque wrench TW-12",
            "description": "Audit of line 3 found no calibration record for the last quarter.",
            "source": {"type": "audit", "id": "aud_2026_q3", "name": "Q3 internal audit"},
            "findingType": "non_conformity",
            "severity": "major",
            "riskLevel": "high",
            "category": "equipment",
            "priority": "high",
            "processId": "proc_assembly",
            "processName": "Assembly",
            "responsiblePersonId": "usr_line_lead",
            "detectedAt": datetime(2026, 9, 1, 8, 30, tzinfo=timezone.utc).isoformat(),
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def action_payload():
    def _build(finding_id: str, **overrides) -> dict:
        payload = {
            "findingId": finding_id,
            "title": "Put torque wrenches on the calibration schedule",
            "description": "Register every wrench in the calibration plan.",
            "actionType": "corrective",
            "priority": "high",
            "responsiblePersonId": "usr_maintenance",
            "plannedStartDate": "2026-09-05",
            "plannedEndDate": "2026-10-05",
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def effectiveness_payload():
    def _build(is_effective: bool = True, **overrides) -> dict:
        payload = {
            "responsiblePersonId": "usr_quality",
            "verificationExecutionDate": "2026-10-10",
            "method": "Follow-up audit",
            "criteria": "No uncalibrated tools found on line 3",
            "isEffective": is_effective,
            "result": "Effective" if is_effective else "Uncalibrated tools found again",
            "evidence": "Follow-up audit report FA-88",
        }
        payload.update(overrides)
        return payload

    return _build


ROOT_CAUSE = {
    "method": "5 whys",
    "rootCause": "Calibration plan did not include hand tools",
    "contributingFactors": ["no tool inventory"],
    "analysis": "Hand tools were never added to the calibration plan.",
}

VERIFICATION = {
    "verifiedBy": "usr_quality",
    "verificationDate": "2026-10-15",
    "evidence": "Closure review minutes",
}


@pytest.fixture
def drive_finding(client):
    """Advance a registered finding through the early stages over HTTP."""

    async def _drive(finding_id: str, until: str = "root_cause_analyzed", root_cause: dict | None = None) -> dict:
        steps = [
            ("immediate_action_planned", "immediate-correction/plan", {"description": "Quarantine TW-12"}),
            ("immediate_action_executed", "immediate-correction/execute", {"executionDate": "2026-09-02"}),
            ("root_cause_analyzed", "root-cause-analysis", root_cause or ROOT_CAUSE),
        ]
        body = None
        for stage, path, payload in steps:
            response = await client.post(f"/api/v1/findings/{finding_id}/{path}", json=payload)
            assert response.status_code == 200, response.text
            body = response.json()
            if stage == until:
                break
        return body

    return _drive


@pytest.fixture
def root_cause():
    return dict(ROOT_CAUSE)


@pytest.fixture
def verification():
    return dict(VERIFICATION)
