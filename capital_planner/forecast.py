from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd
from dateutil.relativedelta import relativedelta

from .models import (
    HOURS_PER_FTE_MONTH,
    AllocationTable,
    Program,
    Project,
    StaffCategory,
    StaffMember,
    Timeline,
    clamp_horizon,
    sanitize_hours,
)
from .timeline import earliest_start, first_of_month, phase_months

logger = logging.getLogger(__name__)

MONTH_FMT = "%Y-%m"
_MONTH_ABBR = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

AllocationsInput = Union[AllocationTable, Mapping[object, object], None]


def month_label(value: date) -> str:
    return f"{_MONTH_ABBR[value.month - 1]} {value.year}"


@dataclass
class Contribution:
    project_id: str
    project_name: str
    fte: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {"projectId": self.project_id, "projectName": self.project_name, "fte": round(self.fte, 2)}


@dataclass
class CategoryMonth:
    """Demand and capacity for one staff category in one month, in FTE."""

    category_id: str
    name: str
    available: float
    required: float = 0.0
    contributions: Dict[str, Contribution] = field(default_factory=dict)

    @property
    def gap(self) -> float:
        return max(0.0, self.required - self.available)

    def add(self, project_id: str, project_name: str, fte: float) -> None:
        if fte <= 0:
            return
        self.required += fte
        contribution = self.contributions.get(project_id)
        if contribution is None:
            contribution = Contribution(project_id=project_id, project_name=project_name)
            self.contributions[project_id] = contribution
        contribution.fte += fte

    def top_projects(self, limit: Optional[int] = None) -> List[Contribution]:
        ranked = sorted(self.contributions.values(), key=lambda c: c.fte, reverse=True)
        return ranked if limit is None else ranked[:limit]


@dataclass
class ForecastMonth:
    month_start: date
    categories: Dict[str, CategoryMonth] = field(default_factory=dict)

    @property
    def month(self) -> str:
        return self.month_start.strftime(MONTH_FMT)

    @property
    def month_label(self) -> str:
        return month_label(self.month_start)

    def required(self, category_name: str) -> float:
        detail = self.categories.get(category_name)
        return detail.required if detail else 0.0

    def available(self, category_name: str) -> float:
        detail = self.categories.get(category_name)
        return detail.available if detail else 0.0

    @property
    def total_required(self) -> float:
        return sum(detail.required for detail in self.categories.values())

    @property
    def total_available(self) -> float:
        return sum(detail.available for detail in self.categories.values())

    @property
    def total_shortage(self) -> float:
        return sum(detail.gap for detail in self.categories.values())

    def to_record(self, precision: int = 2) -> Dict[str, object]:
        record: Dict[str, object] = {"month": self.month, "monthLabel": self.month_label}
        for name, detail in self.categories.items():
            record[f"{name}_required"] = round(detail.required, precision)
            record[f"{name}_actual"] = round(detail.available, precision)
        return record


def _usable_categories(categories: Iterable[StaffCategory]) -> List[StaffCategory]:
    usable: List[StaffCategory] = []
    seen = set()
    for category in categories or ():
        if category is None or not category.name:
            continue
        if category.name in seen:
            logger.debug("skipping duplicate staff category name %r", category.name)
            continue
        seen.add(category.name)
        usable.append(category)
    return usable


def capacity_fte(
    category: StaffCategory,
    availability_by_category: Optional[Mapping[str, float]] = None,
    *,
    include_pm: bool = False,
) -> float:
    override = (availability_by_category or {}).get(str(category.id))
    if isinstance(override, (int, float)) and not isinstance(override, bool):
        hours = sanitize_hours(override)
    else:
        hours = category.capacity_hours(include_pm=include_pm)
    return hours / HOURS_PER_FTE_MONTH


def aggregate_staff_availability(staff_members: Iterable[StaffMember]) -> Dict[str, float]:
    """Sum monthly available hours of active staff members by category id."""
    totals: Dict[str, float] = {}
    for member in staff_members:
        if not member.active or not member.category_id:
            continue
        key = str(member.category_id)
        totals[key] = totals.get(key, 0.0) + member.available_hours()
    return totals


def forecast_start_month(timelines: Iterable[Timeline], today: Optional[date] = None) -> date:
    start = earliest_start(timelines)
    if start is None:
        start = today or date.today()
    return first_of_month(start)


def build_month_sequence(start: date, horizon_months: object) -> List[date]:
    start = first_of_month(start)
    return [start + relativedelta(months=offset) for offset in range(clamp_horizon(horizon_months))]


def _in_window(month: date, start: Optional[date], end: Optional[date]) -> bool:
    return start is not None and end is not None and start <= month < end


def _in_window_inclusive(month: date, start: Optional[date], end: Optional[date]) -> bool:
    return start is not None and end is not None and start <= month <= end


def _add_project_demand(
    state: ForecastMonth,
    timeline: Timeline,
    project: Project,
    categories: Sequence[StaffCategory],
    allocations: AllocationTable,
    include_pm: bool,
) -> None:
    month = state.month_start
    in_design = _in_window(month, timeline.design_start, timeline.design_end)
    in_construction = _in_window(month, timeline.construction_start, timeline.construction_end)
    if not (in_design or in_construction):
        return
    design_months = phase_months(project.design_duration)
    construction_months = phase_months(project.construction_duration)
    total_months = design_months + construction_months
    for category in categories:
        allocation = allocations.get(project.id, category.id)
        if allocation is None:
            continue
        fte = 0.0
        if in_design and design_months > 0:
            fte += sanitize_hours(allocation.design_hours) / design_months / HOURS_PER_FTE_MONTH
        if in_construction and construction_months > 0:
            fte += sanitize_hours(allocation.construction_hours) / construction_months / HOURS_PER_FTE_MONTH
        # PM hours stay out of required FTE unless explicitly enabled.
        if include_pm and total_months > 0:
            fte += sanitize_hours(allocation.pm_hours) / total_months / HOURS_PER_FTE_MONTH
        state.categories[category.name].add(project.id, project.name, fte)


def _add_program_demand(
    state: ForecastMonth,
    timeline: Timeline,
    program: Program,
    categories: Sequence[StaffCategory],
    include_pm: bool,
) -> None:
    # Program windows include their end date; project windows do not.
    if not _in_window_inclusive(state.month_start, timeline.design_start, timeline.construction_end):
        return
    for category in categories:
        fte = 0.0
        if sanitize_hours(category.design_capacity) > 0:
            fte += sanitize_hours(program.continuous_design_hours) / HOURS_PER_FTE_MONTH
        if sanitize_hours(category.construction_capacity) > 0:
            fte += sanitize_hours(program.continuous_construction_hours) / HOURS_PER_FTE_MONTH
        if include_pm and sanitize_hours(category.pm_capacity) > 0:
            fte += sanitize_hours(program.continuous_pm_hours) / HOURS_PER_FTE_MONTH
        state.categories[category.name].add(program.id, program.name, fte)


def generate_resource_forecast(
    timelines: Iterable[Timeline],
    allocations: AllocationsInput,
    categories: Iterable[StaffCategory],
    horizon_months: object = None,
    availability_by_category: Optional[Mapping[str, float]] = None,
    *,
    include_pm_demand: bool = False,
    today: Optional[date] = None,
) -> List[ForecastMonth]:
    """Compute required vs available FTE per category for each month of the horizon.

    The horizon starts at the earliest valid design start (or the current month when
    no item has a valid date) and is clamped to 1..120 months. Items whose start date
    could not be parsed contribute nothing. Returns an empty list when there are no
    items or no staff categories.
    """
    timelines = list(timelines or ())
    usable = _usable_categories(categories)
    if not timelines or not usable:
        return []
    if not isinstance(allocations, AllocationTable):
        allocations = AllocationTable.from_mapping(allocations or {})

    start = forecast_start_month(timelines, today)
    month_starts = build_month_sequence(start, horizon_months)
    logger.debug("forecasting %d months from %s", len(month_starts), start.strftime(MONTH_FMT))

    capacities = {
        category.name: capacity_fte(category, availability_by_category, include_pm=include_pm_demand)
        for category in usable
    }

    forecast: List[ForecastMonth] = []
    for month_start in month_starts:
        state = ForecastMonth(
            month_start=month_start,
            categories={
                category.name: CategoryMonth(
                    category_id=str(category.id),
                    name=category.name,
                    available=capacities[category.name],
                )
                for category in usable
            },
        )
        for timeline in timelines:
            if timeline.design_start is None:
                continue
            item = timeline.item
            if isinstance(item, Project):
                _add_project_demand(state, timeline, item, usable, allocations, include_pm_demand)
            elif isinstance(item, Program):
                _add_program_demand(state, timeline, item, usable, include_pm_demand)
            else:
                raise TypeError(f"unsupported portfolio item: {type(item).__name__}")
        forecast.append(state)
    return forecast


def forecast_to_frame(forecast: Sequence[ForecastMonth]) -> pd.DataFrame:
    if not forecast:
        return pd.DataFrame(columns=["month", "monthLabel"])
    return pd.DataFrame([month.to_record() for month in forecast])
