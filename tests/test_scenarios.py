"""
Tests for scenario lifecycle, adjustment application and scenario analysis.
"""
from datetime import date

import pytest

from capital_planner.models import (
    AllocationTable,
    ForecastConfig,
    Program,
    ScheduleAdjustment,
    Scenario,
    StaffAllocation,
)
from capital_planner.scenarios import (
    BASELINE_SCENARIO_ID,
    ReadOnlyScenarioError,
    UnknownScenarioError,
    analyze_scenario,
    analyze_scenarios,
    apply_scenario_adjustments,
    compare_demand,
    compare_gaps,
    compute_project_shifts,
    create_baseline_scenario,
    create_scenario,
    duplicate_scenario,
    ensure_baseline,
    find_scenario,
    replace_scenario,
    reset_all_adjustments,
    reset_project_adjustment,
    set_project_adjustment,
    update_scenario_meta,
)

FTE = 173.2
TODAY = date(2024, 10, 1)


@pytest.fixture
def baseline():
    return create_baseline_scenario()


class TestLifecycle:

    def test_baseline_shape(self, baseline):
        assert baseline.id == BASELINE_SCENARIO_ID
        assert baseline.name == "Baseline"
        assert baseline.is_baseline
        assert baseline.adjustments == {}

    def test_create_names_by_count(self, baseline):
        """The first scenario after the baseline is "Scenario 1"."""
        scenario = create_scenario([baseline])
        assert scenario.name == "Scenario 1"
        assert scenario.id.startswith("scenario-")
        assert not scenario.is_baseline
        assert create_scenario([baseline, scenario]).name == "Scenario 2"

    def test_duplicate_copies_adjustments(self, delay_scenario):
        copy = duplicate_scenario(delay_scenario)
        assert copy.name == "Delay P1 Copy"
        assert copy.id != delay_scenario.id
        assert copy.adjustments == delay_scenario.adjustments
        assert copy.adjustments is not delay_scenario.adjustments

    def test_duplicate_of_baseline_is_editable(self, baseline):
        copy = duplicate_scenario(baseline)
        assert not copy.is_baseline
        assert set_project_adjustment(copy, "p1", design_start_date="2025-01-01").adjustment_for("p1")

    def test_set_adjustment_accepts_both_key_styles(self, baseline):
        scenario = create_scenario([baseline])
        scenario = set_project_adjustment(scenario, "p1", {"designStartDate": "2025-01-01"})
        scenario = set_project_adjustment(scenario, "p1", construction_start_date=date(2025, 6, 1))
        assert scenario.adjustment_for("p1") == ScheduleAdjustment(
            design_start_date="2025-01-01", construction_start_date="2025-06-01"
        )

    def test_falsy_value_clears_field_and_empty_adjustment_removed(self, delay_scenario):
        scenario = set_project_adjustment(delay_scenario, "p1", design_start_date="")
        assert "p1" not in scenario.adjustments

    def test_invalid_input_rejected(self, delay_scenario):
        with pytest.raises(ValueError):
            set_project_adjustment(delay_scenario, "p1", design_start_date="next spring")
        with pytest.raises(ValueError):
            set_project_adjustment(delay_scenario, "p1", start="2025-01-01")

    def test_resets(self, delay_scenario):
        scenario = set_project_adjustment(delay_scenario, "p2", design_start_date="2025-03-01")
        assert set(reset_project_adjustment(scenario, "p1").adjustments) == {"p2"}
        assert reset_all_adjustments(scenario).adjustments == {}
        assert set(scenario.adjustments) == {"p1", "p2"}

    def test_baseline_is_read_only(self, baseline):
        with pytest.raises(ReadOnlyScenarioError):
            set_project_adjustment(baseline, "p1", design_start_date="2025-01-01")
        with pytest.raises(ReadOnlyScenarioError):
            reset_all_adjustments(baseline)
        with pytest.raises(ReadOnlyScenarioError):
            update_scenario_meta(baseline, name="Renamed")

    def test_update_meta(self, delay_scenario):
        updated = update_scenario_meta(delay_scenario, name="  Delay P1 to Q1 ", description="Budget relief")
        assert updated.name == "Delay P1 to Q1"
        assert updated.description == "Budget relief"
        with pytest.raises(ValueError):
            update_scenario_meta(delay_scenario, name=" ")

    def test_find_and_replace(self, baseline, delay_scenario):
        scenarios = [baseline, delay_scenario]
        assert find_scenario(scenarios, "delay-p1") is delay_scenario
        with pytest.raises(UnknownScenarioError):
            find_scenario(scenarios, "nope")
        renamed = update_scenario_meta(delay_scenario, name="Renamed")
        assert replace_scenario(scenarios, renamed)[1].name == "Renamed"

    def test_ensure_baseline(self, delay_scenario):
        stale = Scenario(
            id="baseline", name="Old", is_baseline=True, adjustments={"p1": {"designStartDate": "2030-01-01"}}
        )
        scenarios = ensure_baseline([delay_scenario, stale])
        assert [s.id for s in scenarios] == ["baseline", "delay-p1"]
        assert scenarios[0].adjustments == {}


class TestApplyAdjustments:

    def test_project_dates_overridden(self, shift_items, delay_scenario):
        adjusted = apply_scenario_adjustments(shift_items, delay_scenario.adjustments)
        assert adjusted[0].design_start_date == "2025-01-01"
        assert adjusted[0].construction_start_date == "2025-06-01"
        assert adjusted[1] is shift_items[1]
        assert shift_items[0].design_start_date == "2024-11-01"

    def test_program_window_overridden(self, paving_program):
        [adjusted] = apply_scenario_adjustments([paving_program], {"prog-1": {"programEndDate": "2025-12-01"}})
        assert adjusted.program_start_date == "2024-06-01"
        assert adjusted.program_end_date == "2025-12-01"

    def test_malformed_and_unknown_ignored(self, shift_items):
        adjusted = apply_scenario_adjustments(
            shift_items, {"p1": "2025-01-01", "p2": {"designStartDate": 7}, "ghost": {"designStartDate": "2025-01-01"}}
        )
        assert adjusted == shift_items

    def test_project_shifts(self, shift_items, paving_program, delay_scenario):
        baseline_items = [*shift_items, paving_program]
        adjustments = {**delay_scenario.adjustments, "prog-1": {"programStartDate": "2024-03-01"}}
        shifts = compute_project_shifts(baseline_items, apply_scenario_adjustments(baseline_items, adjustments))
        assert shifts[0].design_shift_months == 2
        assert shifts[0].construction_shift_months == 0
        assert shifts[1].nonzero_shifts() == []
        assert shifts[2].program_shift_months == -3
        assert shifts[2].to_dict()["programEndShiftMonths"] == 0


class TestAnalyzeScenario:

    def test_delay_scenario_end_to_end(self, shift_items, delay_scenario, shift_allocations, shift_category):
        """Moving P1 two months later shifts the Engineer shortfall into Q1 2025."""
        baseline = analyze_scenario(
            shift_items, create_baseline_scenario(), shift_allocations, [shift_category], None, 12, today=TODAY
        )
        scenario = analyze_scenario(
            shift_items, delay_scenario, shift_allocations, [shift_category], None, 12, today=TODAY
        )
        assert scenario.start_date == date(2024, 11, 1)
        assert [gap.month for gap in baseline.gaps] == ["2024-11", "2024-12", "2025-01"]
        assert [gap.month for gap in scenario.gaps] == ["2025-01", "2025-02", "2025-03"]
        assert scenario.gaps[0].gap == pytest.approx(120 / FTE)

        rows = compare_gaps(baseline.gaps, scenario.gaps)
        assert [row.month_key for row in rows] == ["2024-11", "2024-12", "2025-01", "2025-02", "2025-03"]
        assert [round(row.delta, 2) for row in rows] == [-0.69, -0.69, 0.0, 0.69, 0.69]

        [first_year, second_year] = scenario.budget_impacts.differences
        assert first_year.year == 2024 and not first_year.exceeded_limit
        assert second_year.year == 2025 and second_year.exceeded_limit

        assert scenario.recommendations == [
            "Delaying P1 by 2 months creates a 0.7 FTE gap in Engineer (Jan 2025).",
            "Consider hiring 1 additional Engineer or delaying P1 by 2 months.",
            "Peak conflict occurs in Q1 2025 with a 0.7 FTE shortage across Engineer.",
        ]

    def test_no_adjustments_matches_baseline(self, shift_items, shift_allocations, shift_category):
        """A scenario without adjustments reproduces the baseline exactly."""
        empty = create_scenario([create_baseline_scenario()])
        baseline = analyze_scenario(shift_items, create_baseline_scenario(), shift_allocations, [shift_category])
        scenario = analyze_scenario(shift_items, empty, shift_allocations, [shift_category])
        assert [m.to_record() for m in scenario.forecast] == [m.to_record() for m in baseline.forecast]
        assert scenario.gaps == baseline.gaps
        assert scenario.gap_summary == baseline.gap_summary
        assert all(not entry.exceeded_limit for entry in scenario.budget_impacts.differences)
        assert compare_gaps(baseline.gaps, scenario.gaps)[0].delta == 0

    def test_config_controls_horizon_and_pm(self, shift_items, shift_category):
        allocations = AllocationTable([StaffAllocation("p1", "1", pm_hours=300)])
        config = ForecastConfig(horizon_months=4, include_pm_demand=True)
        analysis = analyze_scenario(shift_items, None, allocations, [shift_category], config=config)
        assert len(analysis.forecast) == 4
        assert analysis.forecast[0].required("Engineer") == pytest.approx(100 / FTE)
        assert analysis.scenario_id is None

    def test_to_dict_is_json_ready(self, shift_items, delay_scenario, shift_allocations, shift_category):
        payload = analyze_scenario(shift_items, delay_scenario, shift_allocations, [shift_category], None, 6).to_dict()
        assert payload["scenarioId"] == "delay-p1"
        assert payload["startDate"] == "2024-11-01"
        assert payload["projects"][0]["designStartDate"] == "2025-01-01"
        assert payload["deltaByProject"][0]["designShiftMonths"] == 2
        assert payload["recommendationDetails"][0]["type"] == "shift"
        assert payload["gapSummary"]["moderateCount"] == 3

    def test_analyze_scenarios_keyed_by_id(self, shift_items, delay_scenario, shift_allocations, shift_category):
        analyses = analyze_scenarios(
            shift_items, [create_baseline_scenario(), delay_scenario], shift_allocations, [shift_category], None, 6
        )
        assert list(analyses) == ["baseline", "delay-p1"]

    def test_program_analysis(self, paving_program, designer):
        analysis = analyze_scenario([paving_program], None, {}, [designer], None, 13)
        assert analysis.gap_summary.moderate_count == 12
        assert analysis.gap_summary.shortage_month_count == 12


class TestComparisons:

    def test_compare_gaps_limit(self, shift_items, delay_scenario, shift_allocations, shift_category):
        baseline = analyze_scenario(shift_items, None, shift_allocations, [shift_category], None, 12)
        scenario = analyze_scenario(shift_items, delay_scenario, shift_allocations, [shift_category], None, 12)
        assert len(compare_gaps(baseline.gaps, scenario.gaps, limit=2)) == 2
        assert compare_gaps([], []) == []

    def test_compare_demand(self, shift_items, delay_scenario, shift_allocations, shift_category):
        baseline = analyze_scenario(shift_items, None, shift_allocations, [shift_category], None, 5)
        scenario = analyze_scenario(shift_items, delay_scenario, shift_allocations, [shift_category], None, 5)
        rows = compare_demand(baseline.forecast, scenario.forecast, [shift_category])
        assert len(rows) == 5
        assert rows[0].month_label == "Nov 2024"
        assert rows[0].baseline_required == pytest.approx(200 / FTE)
        assert rows[0].scenario_required == 0
        assert rows[3].scenario_required == pytest.approx(200 / FTE)
        assert rows[0].available == pytest.approx(80 / FTE)


class TestProgramAdjustment:

    def test_program_shift_moves_demand(self, paving_program, designer):
        scenario = Scenario(id="s", name="S", adjustments={"prog-1": {"programStartDate": "2024-09-01"}})
        analysis = analyze_scenario([paving_program], scenario, {}, [designer], None, 3)
        assert analysis.forecast[0].month == "2024-09"
        assert isinstance(analysis.projects[0], Program)
