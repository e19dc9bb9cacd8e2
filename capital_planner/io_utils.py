from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from .forecast import aggregate_staff_availability
from .models import (
    DELIVERY_TYPES,
    AllocationTable,
    ForecastConfig,
    PortfolioItem,
    Program,
    Project,
    Scenario,
    StaffAllocation,
    StaffCategory,
    StaffMember,
)
from .scenarios import ensure_baseline

logger = logging.getLogger(__name__)

PROJECTS_FILE = "projects.json"
CATEGORIES_FILE = "staff_categories.csv"
ALLOCATIONS_FILE = "staff_allocations.csv"
STAFF_FILE = "staff.json"
SCENARIOS_FILE = "scenarios.json"
CONFIG_FILE = "config.json"

_CATEGORY_REQUIRED_COLUMNS = {"id", "name", "design_capacity", "construction_capacity"}
_ALLOCATION_REQUIRED_COLUMNS = {"project_id", "category_id", "pm_hours", "design_hours", "construction_hours"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in sorted(required) if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _numeric_column(df: pd.DataFrame, col: str, source: str) -> None:
    try:
        df[col] = pd.to_numeric(df[col]).fillna(0.0)
    except ValueError as exc:
        raise ValueError(f"{source}: invalid numeric value in column '{col}'") from exc
    if (df[col] < 0).any():
        raise ValueError(f"{source}: column '{col}' contains negative values")


def _read_json(path: str | Path) -> object:
    try:
        return json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"{Path(path).name} is not valid JSON: {exc.msg}") from exc


def _number(entry: Mapping[str, object], key: str, source: str, default: float = 0.0) -> float:
    value = entry.get(key, default)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError(f"{source}: '{key}' must be a number")
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{source}: '{key}' must be a number") from exc


def _duration(entry: Mapping[str, object], key: str, source: str) -> int:
    value = _number(entry, key, source)
    if value < 0:
        raise ValueError(f"{source}: '{key}' must not be negative")
    return int(value)


def _project_from_record(entry: Mapping[str, object], source: str) -> Project:
    return Project(
        id=str(entry["id"]),
        name=str(entry["name"]),
        design_start_date=entry.get("designStartDate") or None,
        design_duration=_duration(entry, "designDuration", source),
        construction_start_date=entry.get("constructionStartDate") or None,
        construction_duration=_duration(entry, "constructionDuration", source),
        project_type_id=_optional_id(entry.get("projectTypeId")),
        delivery_type=str(entry.get("deliveryType") or "self-perform"),
        total_budget=_number(entry, "totalBudget", source),
        design_budget=_number(entry, "designBudget", source),
        construction_budget=_number(entry, "constructionBudget", source),
    )


def _program_from_record(entry: Mapping[str, object], source: str) -> Program:
    program = Program(
        id=str(entry["id"]),
        name=str(entry["name"]),
        program_start_date=entry.get("programStartDate") or None,
        program_end_date=entry.get("programEndDate") or None,
        continuous_pm_hours=max(0.0, _number(entry, "continuousPmHours", source)),
        continuous_design_hours=max(0.0, _number(entry, "continuousDesignHours", source)),
        continuous_construction_hours=max(0.0, _number(entry, "continuousConstructionHours", source)),
        project_type_id=_optional_id(entry.get("projectTypeId")),
        delivery_type=str(entry.get("deliveryType") or "self-perform"),
        total_budget=_number(entry, "totalBudget", source),
        annual_budget=_number(entry, "annualBudget", source),
    )
    # A per-category map, when present, is the source of truth for the rollups.
    hours_by_category = entry.get("continuousHoursByCategory")
    if hours_by_category:
        program = program.with_category_hours(hours_by_category)
    return program


def _optional_id(value: object) -> Optional[str]:
    return None if value is None or value == "" else str(value)


def items_from_records(records: Sequence[object], source: str = PROJECTS_FILE) -> List[PortfolioItem]:
    """Build projects and programs from camelCase records tagged with a `type`."""
    if not isinstance(records, list):
        raise ValueError(f"{source} must be a JSON array")
    items: List[PortfolioItem] = []
    seen = set()
    for index, entry in enumerate(records, start=1):
        if not isinstance(entry, dict):
            raise ValueError(f"{source}: entry {index} must be an object")
        if entry.get("id") in (None, "") or not entry.get("name"):
            raise ValueError(f"{source}: entry {index} requires 'id' and 'name'")
        item_id = str(entry["id"])
        if item_id in seen:
            raise ValueError(f"{source}: duplicate id '{item_id}'")
        seen.add(item_id)
        delivery_type = entry.get("deliveryType")
        if delivery_type and delivery_type not in DELIVERY_TYPES:
            raise ValueError(f"{source}: unsupported deliveryType '{delivery_type}' for {item_id}")
        kind = entry.get("type") or Project.kind
        where = f"{source} ({item_id})"
        if kind == Project.kind:
            items.append(_project_from_record(entry, where))
        elif kind == Program.kind:
            items.append(_program_from_record(entry, where))
        else:
            raise ValueError(f"{source}: unsupported type '{kind}' for {item_id}")
    return items


def load_portfolio_items(path: str | Path) -> List[PortfolioItem]:
    return items_from_records(_read_json(path), Path(path).name)


def load_staff_categories(path: str | Path) -> List[StaffCategory]:
    df = pd.read_csv(path, dtype={"id": str, "name": str})
    if df.empty:
        raise ValueError("staff categories file is empty")
    _require_columns(df, _CATEGORY_REQUIRED_COLUMNS, CATEGORIES_FILE)
    for col in ("hourly_rate", "design_capacity", "construction_capacity", "pm_capacity"):
        if col not in df.columns:
            df[col] = 0.0
        _numeric_column(df, col, CATEGORIES_FILE)
    if df["name"].isna().any() or df["id"].isna().any():
        raise ValueError(f"{CATEGORIES_FILE}: every row needs an id and a name")
    duplicated = df["name"][df["name"].duplicated()].tolist()
    if duplicated:
        raise ValueError(f"{CATEGORIES_FILE}: duplicate category names: {', '.join(duplicated)}")
    return [
        StaffCategory(
            id=str(row.id).strip(),
            name=str(row.name).strip(),
            hourly_rate=float(row.hourly_rate),
            design_capacity=float(row.design_capacity),
            construction_capacity=float(row.construction_capacity),
            pm_capacity=float(row.pm_capacity),
        )
        for row in df.itertuples(index=False)
    ]


def load_staff_allocations(path: str | Path) -> AllocationTable:
    df = pd.read_csv(path, dtype={"project_id": str, "category_id": str})
    _require_columns(df, _ALLOCATION_REQUIRED_COLUMNS, ALLOCATIONS_FILE)
    for col in ("pm_hours", "design_hours", "construction_hours"):
        _numeric_column(df, col, ALLOCATIONS_FILE)
    pairs = df[["project_id", "category_id"]]
    if pairs.isna().any().any():
        raise ValueError(f"{ALLOCATIONS_FILE}: every row needs a project_id and a category_id")
    duplicates = pairs[pairs.duplicated()]
    if not duplicates.empty:
        first = duplicates.iloc[0]
        raise ValueError(
            f"{ALLOCATIONS_FILE}: duplicate allocation for project '{first.project_id}' "
            f"and category '{first.category_id}'"
        )
    return AllocationTable(
        StaffAllocation(
            project_id=str(row.project_id).strip(),
            category_id=str(row.category_id).strip(),
            pm_hours=float(row.pm_hours),
            design_hours=float(row.design_hours),
            construction_hours=float(row.construction_hours),
        )
        for row in df.itertuples(index=False)
    )


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        raise ValueError("active field contains missing values")
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}'")


def load_staff_members(path: str | Path) -> List[StaffMember]:
    data = _read_json(path)
    if not isinstance(data, list):
        raise ValueError("staff file must be a JSON array")
    members = []
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("staff entries must be objects")
        name = entry.get("name")
        if not name or not isinstance(name, str):
            raise ValueError("staff member name is required")
        source = f"{STAFF_FILE} ({name})"
        for key in ("pmAvailability", "designAvailability", "constructionAvailability"):
            if _number(entry, key, source) < 0:
                raise ValueError(f"{source}: '{key}' must not be negative")
        members.append(
            StaffMember(
                id=str(entry.get("id") or name),
                name=name,
                category_id=_optional_id(entry.get("categoryId")),
                pm_availability=_number(entry, "pmAvailability", source),
                design_availability=_number(entry, "designAvailability", source),
                construction_availability=_number(entry, "constructionAvailability", source),
                active=_parse_bool(entry.get("active", True)),
            )
        )
    return members


def load_scenarios(path: str | Path) -> List[Scenario]:
    """Load saved scenarios; a missing file yields just the baseline."""
    target = Path(path)
    if not target.exists():
        return ensure_baseline([])
    data = _read_json(target)
    if not isinstance(data, list):
        raise ValueError("scenarios file must be a JSON array")
    scenarios = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ValueError("scenario entries must be objects with an 'id'")
        scenarios.append(Scenario.from_dict(entry))
    return ensure_baseline(scenarios)


def save_scenarios(path: str | Path, scenarios: Iterable[Scenario]) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = [scenario.to_dict() for scenario in scenarios]
    target.write_text(json.dumps(payload, indent=2) + "\n")


def load_config(path: str | Path) -> ForecastConfig:
    target = Path(path)
    if not target.exists():
        return ForecastConfig()
    data = _read_json(target)
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")

    horizon = data.get("horizon_months", ForecastConfig.horizon_months)
    if isinstance(horizon, bool) or not isinstance(horizon, int):
        raise ValueError("horizon_months must be an integer")

    include_pm = data.get("include_pm_demand", False)
    if not isinstance(include_pm, bool):
        raise ValueError("include_pm_demand must be a boolean")

    fiscal_start = data.get("fiscal_year_start_month", 1)
    if isinstance(fiscal_start, bool) or not isinstance(fiscal_start, int) or not 1 <= fiscal_start <= 12:
        raise ValueError("fiscal_year_start_month must be an integer in [1, 12]")

    limit = data.get("gap_comparison_limit")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
        raise ValueError("gap_comparison_limit must be null or a positive integer")

    logging_level = str(data.get("logging_level", "INFO")).upper()
    if logging_level not in _LOG_LEVELS:
        raise ValueError(f"logging_level must be one of {', '.join(sorted(_LOG_LEVELS))}")

    return ForecastConfig(
        horizon_months=horizon,
        include_pm_demand=include_pm,
        fiscal_year_start_month=fiscal_start,
        gap_comparison_limit=limit,
        logging_level=logging_level,
    )


@dataclass
class Portfolio:
    """All inputs found in a portfolio's `input/` directory."""

    items: List[PortfolioItem]
    categories: List[StaffCategory]
    allocations: AllocationTable
    config: ForecastConfig = field(default_factory=ForecastConfig)
    scenarios: List[Scenario] = field(default_factory=list)
    staff: List[StaffMember] = field(default_factory=list)

    @property
    def availability_by_category(self) -> Optional[Dict[str, float]]:
        if not self.staff:
            return None
        return aggregate_staff_availability(self.staff)


def load_portfolio(input_dir: str | Path) -> Portfolio:
    input_dir = Path(input_dir)
    for required in (PROJECTS_FILE, CATEGORIES_FILE, ALLOCATIONS_FILE):
        if not (input_dir / required).exists():
            raise FileNotFoundError(f"missing required input file: {input_dir / required}")
    staff_path = input_dir / STAFF_FILE
    portfolio = Portfolio(
        items=load_portfolio_items(input_dir / PROJECTS_FILE),
        categories=load_staff_categories(input_dir / CATEGORIES_FILE),
        allocations=load_staff_allocations(input_dir / ALLOCATIONS_FILE),
        config=load_config(input_dir / CONFIG_FILE),
        scenarios=load_scenarios(input_dir / SCENARIOS_FILE),
        staff=load_staff_members(staff_path) if staff_path.exists() else [],
    )
    logger.debug(
        "loaded %d items, %d categories, %d allocations from %s",
        len(portfolio.items),
        len(portfolio.categories),
        len(portfolio.allocations),
        input_dir,
    )
    return portfolio


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
