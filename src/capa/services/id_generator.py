"""Prefixed ID and sequential record number generation."""

import uuid
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from capa.repositories.counter_repo import CounterRepository

FINDING_NUMBER_PREFIX = "HAL"
ACTION_NUMBER_PREFIX = "ACC"


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique ID.

    Args:
        prefix: The prefix (e.g., "find_", "act_").

    Returns:
        A string like "find_a1b2c3d4e5f6a7b8".
    """
    short_uuid = uuid.uuid4().hex[:16]
    return f"{prefix}{short_uuid}"


async def generate_number(session: AsyncSession, prefix: str, year: int | None = None) -> str:
    """Allocate the next human-readable number for a prefix and year.

    Numbers look like ``HAL-2026-007``; the sequence restarts every year and
    is padded to three digits (longer once past 999). The counter row is
    version-checked, so two concurrent allocations cannot both commit the
    same number.
    """
    year = year or datetime.now(timezone.utc).year
    value = await CounterRepository(session).next_value(f"{prefix}-{year}")
    return f"{prefix}-{year}-{value:03d}"
