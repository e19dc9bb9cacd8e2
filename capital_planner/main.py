from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .forecast import forecast_to_frame
from .gaps import gaps_to_frame
from .io_utils import Portfolio, ensure_directory, load_portfolio, write_csv
from .scenarios import BASELINE_SCENARIO_ID, ScenarioAnalysis, analyze_scenarios, compare_gaps


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Capital planning batch tool: staffing forecast and scenario analysis (CSV in/out, no UI)."
    )
    parser.add_argument(
        "--project-dir",
        help="Portfolio directory containing input/ and output/ subfolders",
    )
    parser.add_argument("--input-dir", help="Directory with the input files (overrides project-dir default)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated files (default: <project-dir>/output or ./out)",
    )
    parser.add_argument(
        "--horizon",
        type=int,
        help="Override config.horizon_months (clamped to 1..120)",
    )
    parser.add_argument(
        "--include-pm",
        action="store_true",
        help="Count project-management hours as staffing demand",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Analyze and print summary without writing output files",
    )
    return parser.parse_args(argv)


def _resolve_io_paths(args: argparse.Namespace) -> Tuple[Path, Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir and not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")

    if args.input_dir:
        input_dir = Path(args.input_dir)
    elif project_dir:
        input_dir = project_dir / "input"
    else:
        raise ValueError("missing input location: --input-dir (or provide --project-dir)")
    if not input_dir.exists():
        raise ValueError(f"input directory not found at {input_dir}")

    if args.outdir:
        outdir = Path(args.outdir)
    elif project_dir:
        outdir = project_dir / "output"
    else:
        outdir = Path("out")
    return input_dir, outdir


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _print_dry_run_summary(analyses: Dict[str, ScenarioAnalysis]) -> None:
    for analysis in analyses.values():
        summary = analysis.gap_summary
        months = len(analysis.forecast)
        print(f"{analysis.name} ({analysis.scenario_id}): {months} months forecast")
        if summary.shortage_month_count:
            print(
                f"  {summary.total_gap:.1f} FTE-months short across {summary.shortage_month_count} months "
                f"({summary.critical_count} critical, {summary.moderate_count} moderate); "
                f"worst {summary.worst_gap:.2f} FTE in {summary.worst_category} ({summary.worst_month_label})"
            )
        else:
            print("  No staffing gaps.")
        for message in analysis.recommendations:
            print(f"  - {message}")


def _budget_frame(analysis: ScenarioAnalysis) -> pd.DataFrame:
    rows = [entry.to_dict() for entry in analysis.budget_impacts.differences]
    return pd.DataFrame(rows, columns=["year", "baseline", "scenario", "delta", "exceededLimit"])


def _gap_comparison_frame(
    baseline: ScenarioAnalysis, analysis: ScenarioAnalysis, limit: Optional[int]
) -> pd.DataFrame:
    rows = [row.to_dict() for row in compare_gaps(baseline.gaps, analysis.gaps, limit)]
    return pd.DataFrame(rows, columns=["monthKey", "monthLabel", "baselineGap", "scenarioGap", "delta"])


def _write_summary_markdown(analyses: Dict[str, ScenarioAnalysis], outdir: Path) -> Path:
    path = outdir / "scenario_summary.md"
    lines: List[str] = ["# Scenario Summary", ""]
    for analysis in analyses.values():
        summary = analysis.gap_summary
        lines.append(f"## {analysis.name}")
        lines.append("")
        if analysis.description:
            lines.append(analysis.description)
            lines.append("")
        lines.append(f"- Total gap: {summary.total_gap:.2f} FTE-months")
        lines.append(f"- Critical gaps: {summary.critical_count}")
        lines.append(f"- Moderate gaps: {summary.moderate_count}")
        if summary.worst_category:
            lines.append(
                f"- Worst gap: {summary.worst_gap:.2f} FTE in {summary.worst_category} "
                f"({summary.worst_month_label})"
            )
        exceeded = analysis.budget_impacts.exceeded_years
        if exceeded:
            years = ", ".join(str(entry.year) for entry in exceeded)
            lines.append(f"- Budget years over tolerance: {years}")
        lines.append("")
        lines.append("### Recommendations")
        lines.append("")
        for message in analysis.recommendations:
            lines.append(f"- {message}")
        lines.append("")
    path.write_text("\n".join(lines).strip() + "\n")
    return path


def _write_outputs(portfolio: Portfolio, analyses: Dict[str, ScenarioAnalysis], outdir: Path) -> List[Path]:
    outdir_path = ensure_directory(outdir)
    baseline = analyses[BASELINE_SCENARIO_ID]
    written: List[Path] = []

    forecast_path = outdir_path / "resource_forecast.csv"
    gaps_path = outdir_path / "staffing_gaps.csv"
    write_csv(forecast_to_frame(baseline.forecast), forecast_path)
    write_csv(gaps_to_frame(baseline.gaps), gaps_path)
    written.extend([forecast_path, gaps_path])

    for scenario_id, analysis in analyses.items():
        if scenario_id == BASELINE_SCENARIO_ID:
            continue
        comparison_path = outdir_path / f"scenario_{scenario_id}_gap_comparison.csv"
        budget_path = outdir_path / f"scenario_{scenario_id}_budget_impact.csv"
        write_csv(
            _gap_comparison_frame(baseline, analysis, portfolio.config.gap_comparison_limit),
            comparison_path,
        )
        write_csv(_budget_frame(analysis), budget_path)
        written.extend([comparison_path, budget_path])

    written.append(_write_summary_markdown(analyses, outdir_path))
    return written


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        input_dir, outdir = _resolve_io_paths(args)
        portfolio = load_portfolio(input_dir)
    except (ValueError, FileNotFoundError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    cfg = portfolio.config
    if args.horizon is not None:
        cfg = replace(cfg, horizon_months=args.horizon)
    if args.include_pm:
        cfg = replace(cfg, include_pm_demand=True)
    _configure_logging(cfg.logging_level)

    analyses = analyze_scenarios(
        portfolio.items,
        portfolio.scenarios,
        portfolio.allocations,
        portfolio.categories,
        portfolio.availability_by_category,
        config=cfg,
    )

    if args.dry_run:
        _print_dry_run_summary(analyses)
        return

    for path in _write_outputs(replace(portfolio, config=cfg), analyses, outdir):
        print(f"Wrote {path}")


if __name__ == "__main__":
    main()
