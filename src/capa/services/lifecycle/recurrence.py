"""Recurrence detection for freshly root-caused findings."""

import logging
import re
import unicodedata
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from capa.config import Settings, settings as default_settings
from capa.db.base import as_utc
from capa.db.models.finding import FindingRow
from capa.errors.exceptions import InvalidStateError
from capa.models.finding import Recurrence
from capa.repositories.finding_repo import FindingRepository

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_text(text: str | None) -> str | None:
    """Case-, accent- and punctuation-insensitive form of free text."""
    if text is None:
        return None
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", stripped.lower()).strip()


def _root_cause(row: FindingRow) -> str | None:
    rca = row.root_cause_analysis or {}
    return normalize_text(rca.get("root_cause"))


_KEY_EXTRACTORS = {
    "source_type": lambda row: row.source_type,
    "source_id": lambda row: row.source_id,
    "category": lambda row: row.category,
    "process_id": lambda row: row.process_id,
    "finding_type": lambda row: row.finding_type,
    "root_cause": _root_cause,
}


class RecurrenceDetector:
    """Decides whether a root-caused finding repeats an earlier one.

    Two findings match when every configured key field is equal (root-cause
    text compared in normalized form). Only active, root-caused findings
    detected within the lookback window before the new finding count. The
    scan never writes to the findings it reads.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.repo = FindingRepository(session)
        self.settings = settings or default_settings

    def match_key(self, row: FindingRow) -> dict[str, str | None]:
        return {field: _KEY_EXTRACTORS[field](row) for field in self.settings.recurrence_key_fields}

    async def evaluate(self, finding: FindingRow) -> Recurrence:
        if finding.root_cause_analysis is None:
            raise InvalidStateError(
                "finding",
                finding.finding_id,
                "root cause analysis must be recorded before recurrence can be evaluated",
                state=finding.stage,
            )

        key = self.match_key(finding)
        lookback = self.settings.recurrence_lookback_days
        threshold = self.settings.recurrence_threshold
        window_end = as_utc(finding.detected_at)
        window_start = window_end - timedelta(days=lookback)

        candidates = await self.repo.list_recurrence_candidates(
            exclude_finding_id=finding.finding_id,
            window_start=window_start,
            window_end=window_end,
            category=key.get("category"),
        )
        matched = [c.finding_id for c in candidates if self.match_key(c) == key]
        is_recurrent = len(matched) >= threshold

        if is_recurrent:
            logger.info(
                "recurrence_detected",
                extra={
                    "finding_id": finding.finding_id,
                    "matched_finding_ids": matched,
                    "occurrence_count": len(matched) + 1,
                },
            )

        return Recurrence(
            is_recurrent=is_recurrent,
            matched_finding_ids=matched,
            occurrence_count=len(matched) + 1,
            match_key=key,
            lookback_days=lookback,
            threshold=threshold,
            evaluated_at=datetime.now(timezone.utc),
        )
