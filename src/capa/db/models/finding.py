"""Findings table."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from capa.db.base import ArchivableMixin, Base, TimestampMixin


class FindingRow(Base, TimestampMixin, ArchivableMixin):
    __tablename__ = "findings"

    finding_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    finding_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Origin
    source_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    source_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    source_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    process_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    process_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Classification
    finding_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    responsible_person_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    responsible_person_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    evidence: Mapped[str | None] = mapped_column(Text, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Workflow state
    stage: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    iso_phase: Mapped[str] = mapped_column(String(20), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open", index=True)
    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Stage sub-records
    immediate_correction: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    root_cause_analysis: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    recurrence: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    verification: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Optimistic concurrency: every UPDATE is conditioned on the loaded version
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
