from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List

from .models import BUDGET_OVERRUN_TOLERANCE, PortfolioItem, Program, Project
from .timeline import add_months, month_difference, parse_date, phase_months

logger = logging.getLogger(__name__)


def fiscal_year_for(day: date, start_month: int = 1) -> int:
    """Fiscal year a date falls in, named by the calendar year the fiscal year ends in."""
    if start_month <= 1:
        return day.year
    return day.year + 1 if day.month >= start_month else day.year


def _amount(value: object) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        numeric = float(value or 0)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return numeric if math.isfinite(numeric) else 0.0


def _spread(totals: Dict[int, float], start: object, months: int, monthly: float, start_month: int) -> None:
    start_date = parse_date(start)
    if start_date is None or months <= 0 or monthly == 0:
        return
    for offset in range(months):
        year = fiscal_year_for(add_months(start_date, offset), start_month)
        totals[year] = totals.get(year, 0.0) + monthly


def distribute_budget_by_year(
    items: Iterable[PortfolioItem], fiscal_year_start_month: int = 1
) -> Dict[int, float]:
    """Spread each item's budget across the months it is active and total by fiscal year.

    Projects spread their design and construction budgets evenly over each phase.
    Programs spend a twelfth of the annual budget in every month from start to end,
    end month included.
    """
    totals: Dict[int, float] = {}
    for item in items or ():
        if isinstance(item, Project):
            design_months = phase_months(item.design_duration)
            construction_months = phase_months(item.construction_duration)
            design_budget = _amount(item.design_budget)
            construction_budget = _amount(item.construction_budget)
            if design_months > 0 and design_budget:
                _spread(
                    totals,
                    item.design_start_date,
                    design_months,
                    design_budget / design_months,
                    fiscal_year_start_month,
                )
            if construction_months > 0 and construction_budget:
                _spread(
                    totals,
                    item.construction_start_date,
                    construction_months,
                    construction_budget / construction_months,
                    fiscal_year_start_month,
                )
        elif isinstance(item, Program):
            if parse_date(item.program_start_date) is None or parse_date(item.program_end_date) is None:
                logger.debug("program %s has no valid window; budget skipped", item.id)
                continue
            months = max(1, month_difference(item.program_start_date, item.program_end_date) + 1)
            _spread(
                totals,
                item.program_start_date,
                months,
                _amount(item.annual_budget) / 12,
                fiscal_year_start_month,
            )
        else:
            raise TypeError(f"unsupported portfolio item: {type(item).__name__}")
    return totals


@dataclass(frozen=True)
class BudgetYearImpact:
    year: int
    baseline: float
    scenario: float
    delta: float
    exceeded_limit: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "year": self.year,
            "baseline": round(self.baseline, 2),
            "scenario": round(self.scenario, 2),
            "delta": round(self.delta, 2),
            "exceededLimit": self.exceeded_limit,
        }


@dataclass(frozen=True)
class BudgetImpact:
    baseline_by_year: Dict[int, float] = field(default_factory=dict)
    scenario_by_year: Dict[int, float] = field(default_factory=dict)
    differences: List[BudgetYearImpact] = field(default_factory=list)

    @property
    def exceeded_years(self) -> List[BudgetYearImpact]:
        return [entry for entry in self.differences if entry.exceeded_limit]

    def to_dict(self) -> Dict[str, object]:
        return {
            "baselineByYear": {str(year): round(v, 2) for year, v in self.baseline_by_year.items()},
            "scenarioByYear": {str(year): round(v, 2) for year, v in self.scenario_by_year.items()},
            "differences": [entry.to_dict() for entry in self.differences],
            "exceededYears": [entry.to_dict() for entry in self.exceeded_years],
        }


def _exceeds(baseline: float, scenario: float) -> bool:
    if baseline > 0:
        return scenario > baseline * (1 + BUDGET_OVERRUN_TOLERANCE)
    return scenario > baseline


def calculate_budget_timing_impact(
    baseline_items: Iterable[PortfolioItem],
    scenario_items: Iterable[PortfolioItem],
    *,
    fiscal_year_start_month: int = 1,
) -> BudgetImpact:
    baseline_totals = distribute_budget_by_year(baseline_items, fiscal_year_start_month)
    scenario_totals = distribute_budget_by_year(scenario_items, fiscal_year_start_month)
    differences = []
    for year in sorted(set(baseline_totals) | set(scenario_totals)):
        baseline = baseline_totals.get(year, 0.0)
        scenario = scenario_totals.get(year, 0.0)
        differences.append(
            BudgetYearImpact(
                year=year,
                baseline=baseline,
                scenario=scenario,
                delta=scenario - baseline,
                exceeded_limit=_exceeds(baseline, scenario),
            )
        )
    return BudgetImpact(
        baseline_by_year=baseline_totals,
        scenario_by_year=scenario_totals,
        differences=differences,
    )
