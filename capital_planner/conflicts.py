from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .forecast import Contribution, ForecastMonth
from .models import GAP_THRESHOLD_FTE, TOP_CONFLICT_PROJECTS


@dataclass(frozen=True)
class ResourceConflict:
    """A month/category shortfall with the projects driving the demand."""

    month: str
    month_label: str
    category_id: str
    category_name: str
    gap: float
    top_projects: List[Contribution] = field(default_factory=list)

    def involves(self, project_id: str) -> bool:
        return any(project.project_id == project_id for project in self.top_projects)

    def to_dict(self) -> Dict[str, object]:
        return {
            "monthKey": self.month,
            "monthLabel": self.month_label,
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "gap": round(self.gap, 2),
            "topProjects": [project.to_dict() for project in self.top_projects],
        }


@dataclass(frozen=True)
class PeakDemand:
    month: str
    month_label: str
    required: float
    available: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "monthKey": self.month,
            "monthLabel": self.month_label,
            "required": round(self.required, 2),
            "available": round(self.available, 2),
        }


@dataclass(frozen=True)
class ShortageCategory:
    id: str
    name: str
    gap: float


@dataclass(frozen=True)
class PeakShortage:
    month: str
    month_label: str
    shortage: float
    categories: List[ShortageCategory] = field(default_factory=list)

    @property
    def quarter_label(self) -> str:
        year, month = self.month.split("-")
        return f"Q{(int(month) - 1) // 3 + 1} {int(year)}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "monthKey": self.month,
            "monthLabel": self.month_label,
            "shortage": round(self.shortage, 2),
            "categories": [
                {"id": category.id, "name": category.name, "gap": round(category.gap, 2)}
                for category in self.categories
            ],
        }


@dataclass(frozen=True)
class CategoryPeak:
    month_label: str
    required: float
    available: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "monthLabel": self.month_label,
            "required": round(self.required, 2),
            "available": round(self.available, 2),
        }


@dataclass(frozen=True)
class ConflictHighlights:
    peak_demand: Optional[PeakDemand] = None
    peak_shortage: Optional[PeakShortage] = None
    conflicts: List[ResourceConflict] = field(default_factory=list)
    category_peaks: Dict[str, CategoryPeak] = field(default_factory=dict)

    def worst(self, limit: Optional[int] = None) -> List[ResourceConflict]:
        ranked = sorted(self.conflicts, key=lambda conflict: conflict.gap, reverse=True)
        return ranked if limit is None else ranked[:limit]

    def to_dict(self) -> Dict[str, object]:
        return {
            "peakDemand": self.peak_demand.to_dict() if self.peak_demand else None,
            "peakShortage": self.peak_shortage.to_dict() if self.peak_shortage else None,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "categoryPeaks": {key: peak.to_dict() for key, peak in self.category_peaks.items()},
        }


def identify_resource_conflicts(
    forecast: Sequence[ForecastMonth], top_n: int = TOP_CONFLICT_PROJECTS
) -> ConflictHighlights:
    """Find peak months and every month/category shortfall above the gap threshold."""
    months = sorted(forecast or (), key=lambda month: month.month_start)
    if not months:
        return ConflictHighlights()

    peak_demand: Optional[ForecastMonth] = None
    peak_shortage: Optional[ForecastMonth] = None
    category_peaks: Dict[str, CategoryPeak] = {}
    conflicts: List[ResourceConflict] = []

    for month in months:
        if peak_demand is None or month.total_required > peak_demand.total_required:
            peak_demand = month
        if peak_shortage is None or month.total_shortage > peak_shortage.total_shortage:
            peak_shortage = month

        for detail in month.categories.values():
            current = category_peaks.get(detail.category_id)
            if current is None or detail.required > current.required:
                category_peaks[detail.category_id] = CategoryPeak(
                    month_label=month.month_label,
                    required=detail.required,
                    available=detail.available,
                )
            if detail.gap > GAP_THRESHOLD_FTE:
                conflicts.append(
                    ResourceConflict(
                        month=month.month,
                        month_label=month.month_label,
                        category_id=detail.category_id,
                        category_name=detail.name,
                        gap=detail.gap,
                        top_projects=detail.top_projects(top_n),
                    )
                )

    shortage = None
    if peak_shortage is not None and peak_shortage.total_shortage > GAP_THRESHOLD_FTE:
        shortage = PeakShortage(
            month=peak_shortage.month,
            month_label=peak_shortage.month_label,
            shortage=peak_shortage.total_shortage,
            categories=[
                ShortageCategory(id=detail.category_id, name=detail.name, gap=detail.gap)
                for detail in peak_shortage.categories.values()
                if detail.gap > GAP_THRESHOLD_FTE
            ],
        )

    return ConflictHighlights(
        peak_demand=PeakDemand(
            month=peak_demand.month,
            month_label=peak_demand.month_label,
            required=peak_demand.total_required,
            available=peak_demand.total_available,
        ),
        peak_shortage=shortage,
        conflicts=conflicts,
        category_peaks=category_peaks,
    )
