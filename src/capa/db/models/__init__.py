"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from capa.db.models.counter import CounterRow
from capa.db.models.finding import FindingRow
from capa.db.models.action import ActionRow

__all__ = [
    "CounterRow",
    "FindingRow",
    "ActionRow",
]
