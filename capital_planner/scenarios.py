from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .budget import BudgetImpact, calculate_budget_timing_impact
from .conflicts import ConflictHighlights, identify_resource_conflicts
from .forecast import AllocationsInput, ForecastMonth, forecast_start_month, generate_resource_forecast
from .gaps import GapSummary, StaffingGap, calculate_staffing_gaps, summarize_gaps
from .models import (
    ADJUSTMENT_KEYS,
    ForecastConfig,
    PortfolioItem,
    Program,
    Project,
    Scenario,
    ScheduleAdjustment,
    StaffCategory,
    Timeline,
)
from .recommendations import Recommendation, ScenarioRecommendationEngine
from .timeline import derive_timelines, month_difference, parse_date

logger = logging.getLogger(__name__)

BASELINE_SCENARIO_ID = "baseline"
BASELINE_NAME = "Baseline"
BASELINE_DESCRIPTION = "Current approved schedule and staffing plan."
DEFAULT_SCENARIO_DESCRIPTION = "Describe the goal for this scenario."


class ReadOnlyScenarioError(RuntimeError):
    """Raised when code tries to change the baseline scenario."""


class UnknownScenarioError(KeyError):
    """Raised when a scenario id is not in the scenario list."""


def _now_iso() -> str:
    """Return current UTC timestamp as ISO string with second precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _new_scenario_id() -> str:
    return f"scenario-{uuid.uuid4().hex[:12]}"


def _ensure_mutable(scenario: Scenario) -> None:
    if scenario.is_baseline or scenario.id == BASELINE_SCENARIO_ID:
        raise ReadOnlyScenarioError(f"scenario '{scenario.id}' is the baseline and cannot be changed")


# --- lifecycle -----------------------------------------------------------


def create_baseline_scenario() -> Scenario:
    return Scenario(
        id=BASELINE_SCENARIO_ID,
        name=BASELINE_NAME,
        description=BASELINE_DESCRIPTION,
        is_baseline=True,
        adjustments={},
        created_at=_now_iso(),
    )


def ensure_baseline(scenarios: Iterable[Scenario]) -> List[Scenario]:
    """Return the scenarios with exactly one baseline, placed first."""
    others = [s for s in scenarios if not (s.is_baseline or s.id == BASELINE_SCENARIO_ID)]
    return [create_baseline_scenario(), *others]


def create_scenario(
    existing: Sequence[Scenario], name: Optional[str] = None, description: Optional[str] = None
) -> Scenario:
    """New empty scenario; default name counts the scenarios already present, baseline included."""
    _check_text("name", name)
    _check_text("description", description)
    return Scenario(
        id=_new_scenario_id(),
        name=name or f"Scenario {len(existing)}",
        description=DEFAULT_SCENARIO_DESCRIPTION if description is None else description,
        is_baseline=False,
        adjustments={},
        created_at=_now_iso(),
    )


def _check_text(field_name: str, value: object) -> None:
    if value is not None and not isinstance(value, str):
        raise ValueError(f"scenario {field_name} must be a string")


def duplicate_scenario(source: Scenario) -> Scenario:
    return Scenario(
        id=_new_scenario_id(),
        name=f"{source.name} Copy",
        description=source.description,
        is_baseline=False,
        adjustments=copy.deepcopy(dict(source.adjustments)),
        created_at=_now_iso(),
    )


def update_scenario_meta(
    scenario: Scenario, *, name: Optional[str] = None, description: Optional[str] = None
) -> Scenario:
    _ensure_mutable(scenario)
    _check_text("name", name)
    _check_text("description", description)
    changes: Dict[str, str] = {}
    if name is not None:
        if not name.strip():
            raise ValueError("scenario name must not be empty")
        changes["name"] = name.strip()
    if description is not None:
        changes["description"] = description
    return replace(scenario, **changes)


def _resolve_field(key: str) -> str:
    for attr, aliases in ADJUSTMENT_KEYS.items():
        if key == attr or key in aliases:
            return attr
    raise ValueError(f"unknown adjustment field '{key}'")


def set_project_adjustment(
    scenario: Scenario,
    project_id: object,
    changes: Optional[Mapping[str, object]] = None,
    **fields: object,
) -> Scenario:
    """Override schedule dates for one item.

    Fields may use snake_case or camelCase names. A falsy value clears that
    override, and an adjustment left with no overrides is removed entirely.
    """
    _ensure_mutable(scenario)
    updates: Dict[str, object] = {}
    for key, value in {**dict(changes or {}), **fields}.items():
        attr = _resolve_field(key)
        if value and parse_date(value) is None:
            raise ValueError(f"{key} must be an ISO date, got {value!r}")
        updates[attr] = value.isoformat() if isinstance(value, date) else (value or None)

    key = str(project_id)
    current = scenario.adjustment_for(key) or ScheduleAdjustment()
    adjustment = replace(current, **updates)
    adjustments = dict(scenario.adjustments)
    if adjustment.is_empty():
        adjustments.pop(key, None)
    else:
        adjustments[key] = adjustment
    return replace(scenario, adjustments=adjustments)


def reset_project_adjustment(scenario: Scenario, project_id: object) -> Scenario:
    _ensure_mutable(scenario)
    adjustments = dict(scenario.adjustments)
    adjustments.pop(str(project_id), None)
    return replace(scenario, adjustments=adjustments)


def reset_all_adjustments(scenario: Scenario) -> Scenario:
    _ensure_mutable(scenario)
    return replace(scenario, adjustments={})


def find_scenario(scenarios: Iterable[Scenario], scenario_id: str) -> Scenario:
    for scenario in scenarios:
        if scenario.id == scenario_id:
            return scenario
    raise UnknownScenarioError(scenario_id)


def replace_scenario(scenarios: Iterable[Scenario], updated: Scenario) -> List[Scenario]:
    result = []
    found = False
    for scenario in scenarios:
        if scenario.id == updated.id:
            result.append(updated)
            found = True
        else:
            result.append(scenario)
    if not found:
        raise UnknownScenarioError(updated.id)
    return result


# --- analysis ------------------------------------------------------------


def apply_scenario_adjustments(
    items: Iterable[PortfolioItem], adjustments: Optional[Mapping[str, object]]
) -> List[PortfolioItem]:
    """Return copies of the items with the scenario's date overrides applied."""
    adjustments = adjustments or {}
    adjusted: List[PortfolioItem] = []
    for item in items or ():
        adjustment = ScheduleAdjustment.coerce(adjustments.get(str(item.id)))
        if adjustment is None:
            adjusted.append(item)
        elif isinstance(item, Project):
            adjusted.append(
                replace(
                    item,
                    design_start_date=adjustment.design_start_date or item.design_start_date,
                    construction_start_date=adjustment.construction_start_date or item.construction_start_date,
                )
            )
        elif isinstance(item, Program):
            adjusted.append(
                replace(
                    item,
                    program_start_date=adjustment.program_start_date or item.program_start_date,
                    program_end_date=adjustment.program_end_date or item.program_end_date,
                )
            )
        else:
            raise TypeError(f"unsupported portfolio item: {type(item).__name__}")
    known = {str(item.id) for item in adjusted}
    for project_id in adjustments:
        if str(project_id) not in known:
            logger.debug("ignoring adjustment for unknown item %s", project_id)
    return adjusted


@dataclass(frozen=True)
class ProjectShift:
    project_id: str
    name: str
    kind: str
    design_shift_months: int = 0
    construction_shift_months: int = 0
    program_shift_months: int = 0
    program_end_shift_months: int = 0

    def values(self) -> List[int]:
        return [
            self.design_shift_months,
            self.construction_shift_months,
            self.program_shift_months,
            self.program_end_shift_months,
        ]

    def nonzero_shifts(self) -> List[int]:
        return [value for value in self.values() if value]

    def primary_shift(self) -> int:
        """First non-zero shift, or 1 when nothing moved."""
        return next((value for value in self.values() if value), 1)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"projectId": self.project_id, "name": self.name, "type": self.kind}
        if self.kind == Project.kind:
            payload["designShiftMonths"] = self.design_shift_months
            payload["constructionShiftMonths"] = self.construction_shift_months
        else:
            payload["programShiftMonths"] = self.program_shift_months
            payload["programEndShiftMonths"] = self.program_end_shift_months
        return payload


def compute_project_shifts(
    baseline_items: Iterable[PortfolioItem], scenario_items: Iterable[PortfolioItem]
) -> List[ProjectShift]:
    by_id = {str(item.id): item for item in scenario_items or ()}
    shifts: List[ProjectShift] = []
    for baseline in baseline_items or ():
        scenario = by_id.get(str(baseline.id), baseline)
        if isinstance(baseline, Project) and isinstance(scenario, Project):
            shifts.append(
                ProjectShift(
                    project_id=str(baseline.id),
                    name=baseline.name,
                    kind=baseline.kind,
                    design_shift_months=month_difference(baseline.design_start_date, scenario.design_start_date),
                    construction_shift_months=month_difference(
                        baseline.construction_start_date, scenario.construction_start_date
                    ),
                )
            )
        elif isinstance(baseline, Program) and isinstance(scenario, Program):
            shifts.append(
                ProjectShift(
                    project_id=str(baseline.id),
                    name=baseline.name,
                    kind=baseline.kind,
                    program_shift_months=month_difference(baseline.program_start_date, scenario.program_start_date),
                    program_end_shift_months=month_difference(baseline.program_end_date, scenario.program_end_date),
                )
            )
        else:
            raise TypeError(f"cannot compare {type(baseline).__name__} with {type(scenario).__name__}")
    return shifts


@dataclass
class ScenarioAnalysis:
    """Everything computed for one scenario run against the baseline items."""

    scenario_id: Optional[str]
    name: Optional[str]
    description: Optional[str]
    projects: List[PortfolioItem]
    timelines: List[Timeline]
    forecast: List[ForecastMonth]
    gaps: List[StaffingGap]
    gap_summary: GapSummary
    budget_impacts: BudgetImpact
    conflict_highlights: ConflictHighlights
    project_shifts: List[ProjectShift]
    recommendation_details: List[Recommendation] = field(default_factory=list)
    start_date: Optional[date] = None

    @property
    def recommendations(self) -> List[str]:
        return [recommendation.message for recommendation in self.recommendation_details]

    def to_dict(self) -> Dict[str, object]:
        return {
            "scenarioId": self.scenario_id,
            "name": self.name,
            "description": self.description,
            "projects": [item.to_dict() for item in self.projects],
            "timelines": [timeline.to_dict() for timeline in self.timelines],
            "forecast": [month.to_record() for month in self.forecast],
            "gaps": [gap.to_dict() for gap in self.gaps],
            "gapSummary": self.gap_summary.to_dict(),
            "budgetImpacts": self.budget_impacts.to_dict(),
            "conflictHighlights": self.conflict_highlights.to_dict(),
            "deltaByProject": [shift.to_dict() for shift in self.project_shifts],
            "recommendations": self.recommendations,
            "recommendationDetails": [
                ScenarioRecommendationEngine.to_dict(r) for r in self.recommendation_details
            ],
            "startDate": self.start_date.isoformat() if self.start_date else None,
        }


def analyze_scenario(
    baseline_items: Sequence[PortfolioItem],
    scenario: Optional[Scenario],
    allocations: AllocationsInput,
    categories: Sequence[StaffCategory],
    availability_by_category: Optional[Mapping[str, float]] = None,
    horizon_months: Optional[int] = None,
    *,
    config: Optional[ForecastConfig] = None,
    today: Optional[date] = None,
) -> ScenarioAnalysis:
    """Run the full forecast/gap/budget/conflict pipeline for one scenario."""
    config = config or ForecastConfig()
    horizon = horizon_months if horizon_months is not None else config.clamped_horizon()
    baseline_items = list(baseline_items or ())
    adjustments = scenario.adjustments if scenario is not None else {}

    scenario_items = apply_scenario_adjustments(baseline_items, adjustments)
    timelines = derive_timelines(scenario_items)
    forecast = generate_resource_forecast(
        timelines,
        allocations,
        categories,
        horizon,
        availability_by_category,
        include_pm_demand=config.include_pm_demand,
        today=today,
    )
    gaps = calculate_staffing_gaps(forecast, categories)
    gap_summary = summarize_gaps(gaps)
    budget_impacts = calculate_budget_timing_impact(
        baseline_items, scenario_items, fiscal_year_start_month=config.fiscal_year_start_month
    )
    highlights = identify_resource_conflicts(forecast)
    shifts = compute_project_shifts(baseline_items, scenario_items)
    recommendations = ScenarioRecommendationEngine(gap_summary, highlights, shifts).analyze()

    logger.debug(
        "scenario %s: %d gaps, %.2f FTE-months short",
        scenario.id if scenario is not None else None,
        len(gaps),
        gap_summary.total_gap,
    )
    return ScenarioAnalysis(
        scenario_id=scenario.id if scenario is not None else None,
        name=scenario.name if scenario is not None else None,
        description=scenario.description if scenario is not None else None,
        projects=scenario_items,
        timelines=timelines,
        forecast=forecast,
        gaps=gaps,
        gap_summary=gap_summary,
        budget_impacts=budget_impacts,
        conflict_highlights=highlights,
        project_shifts=shifts,
        recommendation_details=recommendations,
        start_date=forecast[0].month_start if forecast else forecast_start_month(timelines, today),
    )


def analyze_scenarios(
    items: Sequence[PortfolioItem],
    scenarios: Iterable[Scenario],
    allocations: AllocationsInput,
    categories: Sequence[StaffCategory],
    availability_by_category: Optional[Mapping[str, float]] = None,
    horizon_months: Optional[int] = None,
    *,
    config: Optional[ForecastConfig] = None,
    today: Optional[date] = None,
) -> Dict[str, ScenarioAnalysis]:
    return {
        scenario.id: analyze_scenario(
            items,
            scenario,
            allocations,
            categories,
            availability_by_category,
            horizon_months,
            config=config,
            today=today,
        )
        for scenario in scenarios
    }


# --- comparison ----------------------------------------------------------


@dataclass(frozen=True)
class GapComparisonRow:
    month_key: str
    month_label: str
    baseline_gap: float
    scenario_gap: float

    @property
    def delta(self) -> float:
        return self.scenario_gap - self.baseline_gap

    def to_dict(self) -> Dict[str, object]:
        return {
            "monthKey": self.month_key,
            "monthLabel": self.month_label,
            "baselineGap": round(self.baseline_gap, 2),
            "scenarioGap": round(self.scenario_gap, 2),
            "delta": round(self.delta, 2),
        }


def compare_gaps(
    baseline_gaps: Iterable[StaffingGap], scenario_gaps: Iterable[StaffingGap], limit: Optional[int] = None
) -> List[GapComparisonRow]:
    """Month-by-month total gap for baseline vs scenario, over months where either is short."""
    labels: Dict[str, str] = {}
    baseline_totals: Dict[str, float] = {}
    scenario_totals: Dict[str, float] = {}
    for gaps, totals in ((baseline_gaps, baseline_totals), (scenario_gaps, scenario_totals)):
        for gap in gaps or ():
            labels.setdefault(gap.month, gap.month_label)
            totals[gap.month] = totals.get(gap.month, 0.0) + gap.gap

    rows = [
        GapComparisonRow(
            month_key=month,
            month_label=labels[month],
            baseline_gap=baseline_totals.get(month, 0.0),
            scenario_gap=scenario_totals.get(month, 0.0),
        )
        for month in sorted(labels)
    ]
    return rows if limit is None else rows[: max(0, limit)]


@dataclass(frozen=True)
class DemandComparisonRow:
    month_label: str
    baseline_required: float
    scenario_required: float
    available: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "monthLabel": self.month_label,
            "baselineRequired": round(self.baseline_required, 2),
            "scenarioRequired": round(self.scenario_required, 2),
            "available": round(self.available, 2),
        }


def compare_demand(
    baseline_forecast: Sequence[ForecastMonth],
    scenario_forecast: Sequence[ForecastMonth],
    categories: Iterable[StaffCategory],
) -> List[DemandComparisonRow]:
    """Total required FTE per forecast index for baseline and scenario, with baseline capacity."""
    names = list(dict.fromkeys(c.name for c in categories or () if c is not None and c.name))
    rows = []
    for baseline, scenario in zip(baseline_forecast or (), scenario_forecast or ()):
        rows.append(
            DemandComparisonRow(
                month_label=scenario.month_label,
                baseline_required=sum(baseline.required(name) for name in names),
                scenario_required=sum(scenario.required(name) for name in names),
                available=sum(baseline.available(name) for name in names),
            )
        )
    return rows
