"""
Tests for the batch command line tool.
"""
import pandas as pd
import pytest

from capital_planner.main import main


class TestMain:

    def test_writes_outputs(self, portfolio_dir, capsys):
        main(["--project-dir", str(portfolio_dir)])
        outdir = portfolio_dir / "output"
        forecast = pd.read_csv(outdir / "resource_forecast.csv")
        assert len(forecast) == 12
        assert list(forecast.columns) == ["month", "monthLabel", "Engineer_required", "Engineer_actual"]

        gaps = pd.read_csv(outdir / "staffing_gaps.csv")
        assert gaps["month"].tolist() == ["2024-11", "2024-12", "2025-01"]

        comparison = pd.read_csv(outdir / "scenario_delay-p1_gap_comparison.csv")
        assert comparison["delta"].tolist() == [-0.69, -0.69, 0.0, 0.69, 0.69]

        budget = pd.read_csv(outdir / "scenario_delay-p1_budget_impact.csv")
        assert budget["exceededLimit"].tolist() == [False, True]

        summary = (outdir / "scenario_summary.md").read_text()
        assert "## Delay P1" in summary
        assert "Consider hiring 1 additional Engineer or delaying P1 by 2 months." in summary
        assert "Wrote" in capsys.readouterr().out

    def test_horizon_flag_overrides_config(self, portfolio_dir):
        main(["--project-dir", str(portfolio_dir), "--horizon", "3"])
        assert len(pd.read_csv(portfolio_dir / "output" / "resource_forecast.csv")) == 3

    def test_outdir_flag(self, portfolio_dir, tmp_path):
        outdir = tmp_path / "elsewhere"
        main(["--project-dir", str(portfolio_dir), "--outdir", str(outdir)])
        assert (outdir / "scenario_summary.md").exists()

    def test_dry_run_writes_nothing(self, portfolio_dir, capsys):
        main(["--project-dir", str(portfolio_dir), "--dry-run"])
        out = capsys.readouterr().out
        assert "Baseline (baseline): 12 months forecast" in out
        assert "Delaying P1 by 2 months" in out
        assert not (portfolio_dir / "output").exists()

    def test_missing_project_dir_exits_2(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["--project-dir", str(tmp_path / "nope")])
        assert excinfo.value.code == 2
        assert "project directory not found" in capsys.readouterr().err

    def test_invalid_input_exits_2(self, portfolio_dir, capsys):
        (portfolio_dir / "input" / "config.json").write_text('{"fiscal_year_start_month": 0}')
        with pytest.raises(SystemExit) as excinfo:
            main(["--project-dir", str(portfolio_dir)])
        assert excinfo.value.code == 2
        assert "fiscal_year_start_month" in capsys.readouterr().err

    def test_requires_an_input_location(self, capsys):
        with pytest.raises(SystemExit):
            main([])
        assert "--input-dir" in capsys.readouterr().err
