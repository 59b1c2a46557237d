"""Total professional experience from a developer's positions.

Overlapping or nested positions are merged so concurrent jobs are not
double-counted. Summaries are cached in Redis for a day and invalidated
whenever the profile's experience changes.
"""

import re
from dataclasses import dataclass
from datetime import date

from app.core.cache import delete_cache, get_cache, set_cache
from app.core.constants import DAYS_PER_YEAR, EXPERIENCE_CACHE_TTL, JUNIOR_MAX_YEARS
from app.core.logger import logger
from app.db.tables import Experience
from app.models import ExperienceSummary

_PARTIAL_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?")


def parse_partial_date(value: str | None) -> date | None:
    """Parse YYYY, YYYY-MM or YYYY-MM-DD (missing parts default to 1).

    Returns None for empty values, "Present", or anything unparseable.
    """
    if not value:
        return None
    match = _PARTIAL_DATE_RE.match(value.strip())
    if not match:
        return None
    year, month, day = match.groups()
    try:
        return date(int(year), int(month or 1), int(day or 1))
    except ValueError:
        return None


def is_present(value: str | None) -> bool:
    return bool(value) and value.strip().lower() in ("present", "current", "now")


@dataclass
class Position:
    start: date | None
    end: date | None
    is_current: bool = False


def calculate_total_years(positions: list[Position], today: date | None = None) -> float:
    """Merged duration of all positions in years, rounded to 2 decimals."""
    today = today or date.today()

    ranges: list[tuple[date, date]] = []
    for pos in positions:
        if pos.start is None:
            continue
        end = today if (pos.is_current or pos.end is None) else pos.end
        if end < pos.start:
            logger.debug(f"Skipping position with end {end} before start {pos.start}")
            continue
        ranges.append((pos.start, end))

    if not ranges:
        return 0.0

    ranges.sort()
    merged = [ranges[0]]
    for start, end in ranges[1:]:
        last_start, last_end = merged[-1]
        if start <= last_end:
            merged[-1] = (last_start, max(last_end, end))
        else:
            merged.append((start, end))

    total_days = sum((end - start).days for start, end in merged)
    return round(total_days / DAYS_PER_YEAR, 2)


def _cache_key(developer_id: str) -> str:
    return f"experience:{developer_id}"


async def get_experience_summary(developer_id: str, items: list[Experience]) -> ExperienceSummary:
    cached = await get_cache(_cache_key(developer_id))
    if cached:
        return ExperienceSummary(**{**cached, "cached": True})

    positions = [Position(item.start_date, item.end_date, item.is_current) for item in items]
    total = calculate_total_years(positions)
    summary = ExperienceSummary(
        total_years=total,
        is_junior=total <= JUNIOR_MAX_YEARS,
        position_count=len(items),
    )
    await set_cache(_cache_key(developer_id), summary.model_dump(), EXPERIENCE_CACHE_TTL)
    return summary


async def invalidate_experience_cache(developer_id: str) -> None:
    await delete_cache(_cache_key(developer_id))
