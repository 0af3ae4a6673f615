"""Sequence counters backing human-readable record numbers."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from capa.db.base import Base, TimestampMixin


class CounterRow(Base, TimestampMixin):
    __tablename__ = "counters"

    counter_key: Mapped[str] = mapped_column(String(32), primary_key=True)  # e.g. "HAL-2026"
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
