from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import ClassVar, Dict, Iterable, Iterator, Mapping, Optional, Union

logger = logging.getLogger(__name__)

DateLike = Union[str, date, None]

WEEKS_PER_MONTH = 4.33
HOURS_PER_WEEK = 40.0
HOURS_PER_FTE_MONTH = WEEKS_PER_MONTH * HOURS_PER_WEEK

GAP_THRESHOLD_FTE = 0.1
CRITICAL_GAP_FTE = 1.0

MIN_HORIZON_MONTHS = 1
MAX_HORIZON_MONTHS = 120
DEFAULT_HORIZON_MONTHS = 36

BUDGET_OVERRUN_TOLERANCE = 0.10
TOP_CONFLICT_PROJECTS = 3

DELIVERY_TYPES = ("self-perform", "hybrid", "consultant")


def sanitize_hours(value: object) -> float:
    """Coerce an hour/capacity value to a finite non-negative float."""
    if isinstance(value, bool):
        return 0.0
    try:
        numeric = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(numeric) or numeric <= 0:
        return 0.0
    return numeric


def _pick(raw: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _date_text(value: DateLike) -> Optional[str]:
    if isinstance(value, date):
        return value.isoformat()
    return value or None


def clamp_horizon(value: object) -> int:
    if value is None:
        return DEFAULT_HORIZON_MONTHS
    try:
        months = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_HORIZON_MONTHS
    return max(MIN_HORIZON_MONTHS, min(months, MAX_HORIZON_MONTHS))


@dataclass(frozen=True)
class PhaseHours:
    pm_hours: float = 0.0
    design_hours: float = 0.0
    construction_hours: float = 0.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> "PhaseHours":
        return cls(
            pm_hours=sanitize_hours(_pick(raw, "pmHours", "pm_hours")),
            design_hours=sanitize_hours(_pick(raw, "designHours", "design_hours")),
            construction_hours=sanitize_hours(
                _pick(raw, "constructionHours", "construction_hours")
            ),
        )

    def total(self) -> float:
        return self.pm_hours + self.design_hours + self.construction_hours

    def is_empty(self) -> bool:
        return self.total() <= 0

    def to_dict(self) -> Dict[str, float]:
        return {
            "pmHours": self.pm_hours,
            "designHours": self.design_hours,
            "constructionHours": self.construction_hours,
        }


def normalize_category_hours(raw: object) -> Dict[str, PhaseHours]:
    """Sanitize a program's per-category hour map.

    Accepts a mapping or its JSON text. Negative or non-numeric hours become zero
    and entries whose hours are all zero are dropped. Keys are category ids as strings.
    """
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("ignoring unparsable continuous hours config: %r", raw)
            return {}
    if not isinstance(raw, Mapping):
        return {}
    normalized: Dict[str, PhaseHours] = {}
    for key, value in raw.items():
        if isinstance(value, PhaseHours):
            hours = PhaseHours(
                sanitize_hours(value.pm_hours),
                sanitize_hours(value.design_hours),
                sanitize_hours(value.construction_hours),
            )
        elif isinstance(value, Mapping):
            hours = PhaseHours.from_mapping(value)
        else:
            continue
        if not hours.is_empty():
            normalized[str(key)] = hours
    return normalized


def rollup_category_hours(hours_by_category: Mapping[str, PhaseHours]) -> PhaseHours:
    return PhaseHours(
        pm_hours=sum(h.pm_hours for h in hours_by_category.values()),
        design_hours=sum(h.design_hours for h in hours_by_category.values()),
        construction_hours=sum(h.construction_hours for h in hours_by_category.values()),
    )


@dataclass(frozen=True)
class Project:
    """Capital project with discrete design and construction phases."""

    kind: ClassVar[str] = "project"

    id: str
    name: str
    design_start_date: DateLike = None
    design_duration: int = 0
    construction_start_date: DateLike = None
    construction_duration: int = 0
    project_type_id: Optional[str] = None
    delivery_type: str = "self-perform"
    total_budget: float = 0.0
    design_budget: float = 0.0
    construction_budget: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "projectTypeId": self.project_type_id,
            "deliveryType": self.delivery_type,
            "totalBudget": self.total_budget,
            "designBudget": self.design_budget,
            "constructionBudget": self.construction_budget,
            "designStartDate": _date_text(self.design_start_date),
            "designDuration": self.design_duration,
            "constructionStartDate": _date_text(self.construction_start_date),
            "constructionDuration": self.construction_duration,
        }


@dataclass(frozen=True)
class Program:
    """Recurring program modelled as one continuous active window."""

    kind: ClassVar[str] = "program"

    id: str
    name: str
    program_start_date: DateLike = None
    program_end_date: DateLike = None
    continuous_hours_by_category: Mapping[str, PhaseHours] = field(default_factory=dict)
    continuous_pm_hours: float = 0.0
    continuous_design_hours: float = 0.0
    continuous_construction_hours: float = 0.0
    project_type_id: Optional[str] = None
    delivery_type: str = "self-perform"
    total_budget: float = 0.0
    annual_budget: float = 0.0

    def hours_for_category(self, category_id: object) -> PhaseHours:
        return self.continuous_hours_by_category.get(str(category_id), PhaseHours())

    def with_category_hours(self, raw: object) -> "Program":
        """Return a copy with a sanitized hour map and rollups kept in sync."""
        normalized = normalize_category_hours(raw)
        totals = rollup_category_hours(normalized)
        return replace(
            self,
            continuous_hours_by_category=normalized,
            continuous_pm_hours=totals.pm_hours,
            continuous_design_hours=totals.design_hours,
            continuous_construction_hours=totals.construction_hours,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "projectTypeId": self.project_type_id,
            "deliveryType": self.delivery_type,
            "totalBudget": self.total_budget,
            "annualBudget": self.annual_budget,
            "programStartDate": _date_text(self.program_start_date),
            "programEndDate": _date_text(self.program_end_date),
            "continuousHoursByCategory": {
                key: hours.to_dict() for key, hours in self.continuous_hours_by_category.items()
            },
            "continuousPmHours": self.continuous_pm_hours,
            "continuousDesignHours": self.continuous_design_hours,
            "continuousConstructionHours": self.continuous_construction_hours,
        }


PortfolioItem = Union[Project, Program]


@dataclass(frozen=True)
class StaffCategory:
    id: str
    name: str
    hourly_rate: float = 0.0
    design_capacity: float = 0.0
    construction_capacity: float = 0.0
    pm_capacity: float = 0.0

    def capacity_hours(self, *, include_pm: bool = False) -> float:
        total = sanitize_hours(self.design_capacity) + sanitize_hours(self.construction_capacity)
        if include_pm:
            total += sanitize_hours(self.pm_capacity)
        return total


@dataclass(frozen=True)
class StaffAllocation:
    """Hours a category spends on a project; totals for the whole phase, not per month."""

    project_id: str
    category_id: str
    pm_hours: float = 0.0
    design_hours: float = 0.0
    construction_hours: float = 0.0


class AllocationTable:
    """Sparse project -> category -> allocation lookup.

    Pairs that are absent contribute nothing; lookups never raise.
    """

    def __init__(self, allocations: Iterable[StaffAllocation] = ()) -> None:
        self._by_project: Dict[str, Dict[str, StaffAllocation]] = {}
        for allocation in allocations:
            self.add(allocation)

    @classmethod
    def from_mapping(cls, nested: Mapping[object, object]) -> "AllocationTable":
        allocations = []
        for project_id, by_category in nested.items():
            if not isinstance(by_category, Mapping):
                continue
            for category_id, value in by_category.items():
                if isinstance(value, StaffAllocation):
                    hours = PhaseHours(value.pm_hours, value.design_hours, value.construction_hours)
                elif isinstance(value, Mapping):
                    hours = PhaseHours.from_mapping(value)
                else:
                    continue
                allocations.append(
                    StaffAllocation(
                        project_id=str(project_id),
                        category_id=str(category_id),
                        pm_hours=hours.pm_hours,
                        design_hours=hours.design_hours,
                        construction_hours=hours.construction_hours,
                    )
                )
        return cls(allocations)

    def add(self, allocation: StaffAllocation) -> None:
        by_category = self._by_project.setdefault(str(allocation.project_id), {})
        by_category[str(allocation.category_id)] = allocation

    def get(self, project_id: object, category_id: object) -> Optional[StaffAllocation]:
        return self._by_project.get(str(project_id), {}).get(str(category_id))

    def for_project(self, project_id: object) -> Dict[str, StaffAllocation]:
        return dict(self._by_project.get(str(project_id), {}))

    def __iter__(self) -> Iterator[StaffAllocation]:
        for by_category in self._by_project.values():
            yield from by_category.values()

    def __len__(self) -> int:
        return sum(len(by_category) for by_category in self._by_project.values())


@dataclass(frozen=True)
class StaffMember:
    id: str
    name: str
    category_id: Optional[str]
    pm_availability: float = 0.0
    design_availability: float = 0.0
    construction_availability: float = 0.0
    active: bool = True

    def available_hours(self) -> float:
        return (
            sanitize_hours(self.pm_availability)
            + sanitize_hours(self.design_availability)
            + sanitize_hours(self.construction_availability)
        )


@dataclass(frozen=True)
class Timeline:
    """Concrete phase windows for one item; None marks an unparsable date."""

    item: PortfolioItem
    design_start: Optional[date]
    design_end: Optional[date]
    construction_start: Optional[date]
    construction_end: Optional[date]

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def kind(self) -> str:
        return self.item.kind

    def to_dict(self) -> Dict[str, object]:
        def _iso(value: Optional[date]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "designStart": _iso(self.design_start),
            "designEnd": _iso(self.design_end),
            "constructionStart": _iso(self.construction_start),
            "constructionEnd": _iso(self.construction_end),
        }


ADJUSTMENT_KEYS = {
    "design_start_date": ("designStartDate", "design_start_date"),
    "construction_start_date": ("constructionStartDate", "construction_start_date"),
    "program_start_date": ("programStartDate", "program_start_date"),
    "program_end_date": ("programEndDate", "program_end_date"),
}


@dataclass(frozen=True)
class ScheduleAdjustment:
    design_start_date: DateLike = None
    construction_start_date: DateLike = None
    program_start_date: DateLike = None
    program_end_date: DateLike = None

    @classmethod
    def coerce(cls, value: object) -> Optional["ScheduleAdjustment"]:
        """Build an adjustment from loose input; anything malformed means no override."""
        if isinstance(value, ScheduleAdjustment):
            return None if value.is_empty() else value
        if not isinstance(value, Mapping):
            return None
        fields: Dict[str, DateLike] = {}
        for attr, keys in ADJUSTMENT_KEYS.items():
            raw = _pick(value, *keys)
            if raw and isinstance(raw, (str, date)):
                fields[attr] = raw
        adjustment = cls(**fields)
        return None if adjustment.is_empty() else adjustment

    def is_empty(self) -> bool:
        return not any(getattr(self, attr) for attr in ADJUSTMENT_KEYS)

    def to_dict(self) -> Dict[str, str]:
        payload: Dict[str, str] = {}
        for attr, keys in ADJUSTMENT_KEYS.items():
            value = getattr(self, attr)
            if value:
                payload[keys[0]] = value.isoformat() if isinstance(value, date) else str(value)
        return payload


@dataclass(frozen=True)
class Scenario:
    id: str
    name: str
    description: str = ""
    is_baseline: bool = False
    adjustments: Mapping[str, ScheduleAdjustment] = field(default_factory=dict)
    created_at: Optional[str] = None

    def adjustment_for(self, project_id: object) -> Optional[ScheduleAdjustment]:
        return ScheduleAdjustment.coerce(self.adjustments.get(str(project_id)))

    @classmethod
    def from_dict(cls, raw: Mapping[str, object]) -> "Scenario":
        adjustments: Dict[str, ScheduleAdjustment] = {}
        raw_adjustments = raw.get("adjustments")
        if isinstance(raw_adjustments, Mapping):
            for project_id, value in raw_adjustments.items():
                adjustment = ScheduleAdjustment.coerce(value)
                if adjustment is not None:
                    adjustments[str(project_id)] = adjustment
        is_baseline = _pick(raw, "isBaseline", "is_baseline")
        created_at = _pick(raw, "createdAt", "created_at")
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or raw["id"]),
            description=str(raw.get("description") or ""),
            is_baseline=bool(is_baseline),
            adjustments=adjustments,
            created_at=str(created_at) if created_at else None,
        )

    def to_dict(self) -> Dict[str, object]:
        adjustments: Dict[str, Dict[str, str]] = {}
        for project_id in self.adjustments:
            adjustment = self.adjustment_for(project_id)
            if adjustment is not None:
                adjustments[str(project_id)] = adjustment.to_dict()
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isBaseline": self.is_baseline,
            "adjustments": adjustments,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class ForecastConfig:
    horizon_months: int = DEFAULT_HORIZON_MONTHS
    include_pm_demand: bool = False
    fiscal_year_start_month: int = 1
    gap_comparison_limit: Optional[int] = None
    logging_level: str = "INFO"

    def clamped_horizon(self) -> int:
        return clamp_horizon(self.horizon_months)
