from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

import pandas as pd

from .forecast import ForecastMonth
from .models import CRITICAL_GAP_FTE, GAP_THRESHOLD_FTE, StaffCategory

GAP_COLUMNS = ["month", "monthLabel", "category", "required", "available", "gap", "severity"]


def classify_gap(gap: float) -> str:
    return "Critical" if gap > CRITICAL_GAP_FTE else "Moderate"


@dataclass(frozen=True)
class StaffingGap:
    """Shortfall for one staff category in one month, in FTE."""

    month: str
    month_label: str
    category: str
    required: float
    available: float
    gap: float

    @property
    def severity(self) -> str:
        return classify_gap(self.gap)

    def to_dict(self) -> Dict[str, object]:
        return {
            "month": self.month,
            "monthLabel": self.month_label,
            "category": self.category,
            "required": round(self.required, 2),
            "available": round(self.available, 2),
            "gap": round(self.gap, 2),
            "severity": self.severity,
        }


def calculate_staffing_gaps(
    forecast: Sequence[ForecastMonth], categories: Iterable[StaffCategory]
) -> List[StaffingGap]:
    """Emit a gap for every (month, category) whose shortfall exceeds the threshold.

    Order follows the forecast months, then the category list. Categories without a
    name are skipped; each name is reported once per month.
    """
    names: List[str] = []
    for category in categories or ():
        if category is not None and category.name and category.name not in names:
            names.append(category.name)

    gaps: List[StaffingGap] = []
    for month in forecast or ():
        for name in names:
            required = month.required(name)
            available = month.available(name)
            gap = required - available
            if gap > GAP_THRESHOLD_FTE:
                gaps.append(
                    StaffingGap(
                        month=month.month,
                        month_label=month.month_label,
                        category=name,
                        required=required,
                        available=available,
                        gap=gap,
                    )
                )
    return gaps


@dataclass(frozen=True)
class GapSummary:
    total_gap: float = 0.0
    critical_count: int = 0
    moderate_count: int = 0
    worst_gap: float = 0.0
    worst_month_label: str = ""
    worst_category: str = ""
    shortage_month_count: int = 0
    affected_categories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "totalGap": round(self.total_gap, 2),
            "criticalCount": self.critical_count,
            "moderateCount": self.moderate_count,
            "worstGap": round(self.worst_gap, 2),
            "worstMonthLabel": self.worst_month_label,
            "worstCategory": self.worst_category,
            "shortageMonthCount": self.shortage_month_count,
            "affectedCategories": list(self.affected_categories),
        }


def summarize_gaps(gaps: Iterable[StaffingGap]) -> GapSummary:
    total = 0.0
    critical = 0
    moderate = 0
    worst: StaffingGap | None = None
    months: List[str] = []
    affected: List[str] = []
    for gap in gaps or ():
        total += gap.gap
        if gap.severity == "Critical":
            critical += 1
        else:
            moderate += 1
        # Ties keep the earliest record.
        if worst is None or gap.gap > worst.gap:
            worst = gap
        if gap.month not in months:
            months.append(gap.month)
        if gap.category not in affected:
            affected.append(gap.category)
    if worst is None:
        return GapSummary()
    return GapSummary(
        total_gap=total,
        critical_count=critical,
        moderate_count=moderate,
        worst_gap=worst.gap,
        worst_month_label=worst.month_label,
        worst_category=worst.category,
        shortage_month_count=len(months),
        affected_categories=affected,
    )


def gaps_to_frame(gaps: Sequence[StaffingGap]) -> pd.DataFrame:
    if not gaps:
        return pd.DataFrame(columns=GAP_COLUMNS)
    return pd.DataFrame([gap.to_dict() for gap in gaps], columns=GAP_COLUMNS)
