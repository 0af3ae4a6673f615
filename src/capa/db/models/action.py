"""Corrective/preventive actions table."""

from datetime import date

from sqlalchemy import JSON, Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from capa.db.base import ArchivableMixin, Base, TimestampMixin


class ActionRow(Base, TimestampMixin, ArchivableMixin):
    __tablename__ = "actions"

    action_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    action_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    finding_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("findings.finding_id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="planned", index=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    responsible_person_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    responsible_person_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    planned_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    comments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    effectiveness_plan: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    effectiveness_verification: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
