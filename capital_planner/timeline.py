from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

from .models import PortfolioItem, Program, Project, Timeline

logger = logging.getLogger(__name__)


def parse_date(value: object) -> Optional[date]:
    """Parse an ISO date; unparsable or empty values yield None instead of raising."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return dateparser.isoparse(value.strip()).date()
    except (ValueError, OverflowError):
        logger.debug("unparsable date %r", value)
        return None


def first_of_month(value: date) -> date:
    return date(value.year, value.month, 1)


def add_months(value: Optional[date], months: int) -> Optional[date]:
    if value is None:
        return None
    return value + relativedelta(months=months)


def month_difference(start: object, end: object) -> int:
    """Whole calendar months from start to end; 0 when either date is invalid."""
    start_date = parse_date(start)
    end_date = parse_date(end)
    if start_date is None or end_date is None:
        return 0
    return (end_date.year * 12 + end_date.month) - (start_date.year * 12 + start_date.month)


def phase_months(value: object) -> int:
    try:
        return max(0, int(value or 0))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return 0


def derive_timeline(item: PortfolioItem) -> Timeline:
    if isinstance(item, Project):
        design_start = parse_date(item.design_start_date)
        construction_start = parse_date(item.construction_start_date)
        return Timeline(
            item=item,
            design_start=design_start,
            design_end=add_months(design_start, phase_months(item.design_duration)),
            construction_start=construction_start,
            construction_end=add_months(construction_start, phase_months(item.construction_duration)),
        )
    if isinstance(item, Program):
        # Programs have no phase split: both windows are the program window.
        program_start = parse_date(item.program_start_date)
        program_end = parse_date(item.program_end_date)
        return Timeline(
            item=item,
            design_start=program_start,
            design_end=program_end,
            construction_start=program_start,
            construction_end=program_end,
        )
    raise TypeError(f"unsupported portfolio item: {type(item).__name__}")


def derive_timelines(items: Iterable[PortfolioItem]) -> List[Timeline]:
    return [derive_timeline(item) for item in items]


def earliest_start(timelines: Iterable[Timeline]) -> Optional[date]:
    starts = [timeline.design_start for timeline in timelines if timeline.design_start is not None]
    return min(starts) if starts else None
