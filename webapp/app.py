from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from flask import Flask, jsonify, request

from capital_planner.io_utils import (
    ALLOCATIONS_FILE,
    CATEGORIES_FILE,
    PROJECTS_FILE,
    SCENARIOS_FILE,
    Portfolio,
    load_portfolio,
    save_scenarios,
)
from capital_planner.models import Scenario
from capital_planner.scenarios import (
    BASELINE_SCENARIO_ID,
    ReadOnlyScenarioError,
    UnknownScenarioError,
    analyze_scenario,
    compare_demand,
    compare_gaps,
    create_scenario,
    duplicate_scenario,
    find_scenario,
    replace_scenario,
    reset_all_adjustments,
    reset_project_adjustment,
    set_project_adjustment,
    update_scenario_meta,
)

REQUIRED_INPUT_FILES = (PROJECTS_FILE, CATEGORIES_FILE, ALLOCATIONS_FILE)


class PortfolioNotFoundError(LookupError):
    pass


def _default_portfolios_root() -> Path:
    return (Path(__file__).resolve().parent.parent / "portfolios").resolve()


def _resolve_portfolios_root() -> Path:
    env_value = os.getenv("PORTFOLIOS_ROOT")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_portfolios_root()


def _validate_within_root(path: Path, root: Path) -> None:
    try:
        path.relative_to(root)
    except ValueError as exc:
        raise ValueError(f"Portfolio directory must be inside {root}") from exc


def _check_input_dir(portfolio_dir: Path) -> Tuple[Path, List[str]]:
    input_dir = portfolio_dir / "input"
    missing: List[str] = []
    if not input_dir.is_dir():
        missing.extend(list(REQUIRED_INPUT_FILES))
        return input_dir, missing
    for name in REQUIRED_INPUT_FILES:
        if not (input_dir / name).is_file():
            missing.append(name)
    return input_dir, missing


def _list_portfolio_dirs(root: Path) -> List[Dict[str, object]]:
    entries: List[Dict[str, object]] = []
    if not root.exists():
        return entries
    for child in sorted(root.iterdir()):
        if not child.is_dir():
            continue
        input_dir, missing = _check_input_dir(child)
        entries.append(
            {
                "name": child.relative_to(root).as_posix(),
                "input_dir": input_dir.as_posix(),
                "is_valid": not missing,
            }
        )
    return entries


def _resolve_input_dir(portfolio_name: str, root: Path) -> Path:
    portfolio_dir = (root / portfolio_name).resolve()
    _validate_within_root(portfolio_dir, root)
    input_dir, missing = _check_input_dir(portfolio_dir)
    if not portfolio_dir.is_dir() or missing:
        raise PortfolioNotFoundError(f"Portfolio not found: {portfolio_name}")
    return input_dir


def _optional_int(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def create_app(portfolios_root: Optional[Path] = None) -> Flask:
    app = Flask(__name__)
    root = Path(portfolios_root).resolve() if portfolios_root else _resolve_portfolios_root()
    app.config["PORTFOLIOS_ROOT"] = root

    def _load(portfolio_name: str) -> Tuple[Path, Portfolio]:
        input_dir = _resolve_input_dir(portfolio_name, root)
        return input_dir, load_portfolio(input_dir)

    def _store(input_dir: Path, scenarios: List[Scenario]) -> None:
        save_scenarios(input_dir / SCENARIOS_FILE, scenarios)

    def _update(portfolio_name: str, scenario_id: str, change) -> Scenario:
        input_dir, portfolio = _load(portfolio_name)
        updated = change(find_scenario(portfolio.scenarios, scenario_id))
        _store(input_dir, replace_scenario(portfolio.scenarios, updated))
        return updated

    @app.errorhandler(ValueError)
    def bad_request(exc: ValueError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(PortfolioNotFoundError)
    def portfolio_not_found(exc: PortfolioNotFoundError):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(UnknownScenarioError)
    def scenario_not_found(exc: UnknownScenarioError):
        return jsonify({"error": f"Scenario not found: {exc.args[0]}"}), 404

    @app.errorhandler(ReadOnlyScenarioError)
    def read_only(exc: ReadOnlyScenarioError):
        return jsonify({"error": str(exc)}), 409

    @app.get("/dirs")
    def directories():
        return jsonify({"portfolios": _list_portfolio_dirs(root)})

    @app.get("/api/forecast/<portfolio_name>")
    def get_forecast(portfolio_name: str):
        _, portfolio = _load(portfolio_name)
        baseline = find_scenario(portfolio.scenarios, BASELINE_SCENARIO_ID)
        analysis = analyze_scenario(
            portfolio.items,
            baseline,
            portfolio.allocations,
            portfolio.categories,
            portfolio.availability_by_category,
            _optional_int("horizon"),
            config=portfolio.config,
        )
        payload = analysis.to_dict()
        return jsonify(
            {
                "startDate": payload["startDate"],
                "timelines": payload["timelines"],
                "forecast": payload["forecast"],
                "gaps": payload["gaps"],
                "gapSummary": payload["gapSummary"],
            }
        )

    @app.get("/api/scenarios/<portfolio_name>")
    def list_scenarios(portfolio_name: str):
        _, portfolio = _load(portfolio_name)
        return jsonify([scenario.to_dict() for scenario in portfolio.scenarios])

    @app.post("/api/scenarios/<portfolio_name>")
    def add_scenario(portfolio_name: str):
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "scenario data must be an object"}), 400
        input_dir, portfolio = _load(portfolio_name)
        source_id = data.get("duplicateOf")
        if source_id:
            scenario = duplicate_scenario(find_scenario(portfolio.scenarios, str(source_id)))
        else:
            scenario = create_scenario(portfolio.scenarios, data.get("name"), data.get("description"))
        _store(input_dir, [*portfolio.scenarios, scenario])
        return jsonify(scenario.to_dict()), 201

    @app.patch("/api/scenarios/<portfolio_name>/<scenario_id>")
    def edit_scenario(portfolio_name: str, scenario_id: str):
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "scenario data must be an object"}), 400
        updated = _update(
            portfolio_name,
            scenario_id,
            lambda s: update_scenario_meta(s, name=data.get("name"), description=data.get("description")),
        )
        return jsonify(updated.to_dict())

    @app.put("/api/scenarios/<portfolio_name>/<scenario_id>/adjustments/<project_id>")
    def put_adjustment(portfolio_name: str, scenario_id: str, project_id: str):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "adjustment must be an object"}), 400
        updated = _update(portfolio_name, scenario_id, lambda s: set_project_adjustment(s, project_id, data))
        return jsonify(updated.to_dict())

    @app.delete("/api/scenarios/<portfolio_name>/<scenario_id>/adjustments/<project_id>")
    def delete_adjustment(portfolio_name: str, scenario_id: str, project_id: str):
        updated = _update(portfolio_name, scenario_id, lambda s: reset_project_adjustment(s, project_id))
        return jsonify(updated.to_dict())

    @app.delete("/api/scenarios/<portfolio_name>/<scenario_id>/adjustments")
    def delete_all_adjustments(portfolio_name: str, scenario_id: str):
        updated = _update(portfolio_name, scenario_id, reset_all_adjustments)
        return jsonify(updated.to_dict())

    @app.get("/api/scenarios/<portfolio_name>/<scenario_id>/analysis")
    def scenario_analysis(portfolio_name: str, scenario_id: str):
        _, portfolio = _load(portfolio_name)
        scenario = find_scenario(portfolio.scenarios, scenario_id)
        baseline = find_scenario(portfolio.scenarios, BASELINE_SCENARIO_ID)
        horizon = _optional_int("horizon")
        common = dict(
            allocations=portfolio.allocations,
            categories=portfolio.categories,
            availability_by_category=portfolio.availability_by_category,
            horizon_months=horizon,
            config=portfolio.config,
        )
        baseline_analysis = analyze_scenario(portfolio.items, baseline, **common)
        analysis = analyze_scenario(portfolio.items, scenario, **common)
        payload = analysis.to_dict()
        payload["gapComparison"] = [
            row.to_dict()
            for row in compare_gaps(
                baseline_analysis.gaps, analysis.gaps, portfolio.config.gap_comparison_limit
            )
        ]
        payload["demandComparison"] = [
            row.to_dict()
            for row in compare_demand(baseline_analysis.forecast, analysis.forecast, portfolio.categories)
        ]
        return jsonify(payload)

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
