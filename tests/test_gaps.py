"""
Tests for staffing gap detection and summaries.
"""
import pytest

from capital_planner.forecast import generate_resource_forecast
from capital_planner.gaps import (
    GAP_COLUMNS,
    StaffingGap,
    calculate_staffing_gaps,
    classify_gap,
    gaps_to_frame,
    summarize_gaps,
)
from capital_planner.models import AllocationTable
from capital_planner.timeline import derive_timelines

FTE = 173.2


def _gap(month, gap, category="Engineer"):
    return StaffingGap(
        month=month, month_label=month, category=category, required=gap + 1, available=1, gap=gap
    )


class TestClassification:

    @pytest.mark.parametrize("gap,label", [(0.2, "Moderate"), (1.0, "Moderate"), (1.01, "Critical")])
    def test_threshold(self, gap, label):
        """Only gaps strictly above one FTE are critical."""
        assert classify_gap(gap) == label
        assert _gap("2024-01", gap).severity == label


class TestCalculateGaps:

    def test_no_gaps_when_capacity_covers_demand(self, single_project, single_project_allocations, engineer):
        forecast = generate_resource_forecast(
            derive_timelines([single_project]), single_project_allocations, [engineer], 12
        )
        assert calculate_staffing_gaps(forecast, [engineer]) == []

    def test_program_shortfall(self, paving_program, designer):
        """100 h demand against 50 h capacity is a 0.29 FTE gap for twelve months."""
        forecast = generate_resource_forecast(derive_timelines([paving_program]), AllocationTable(), [designer], 13)
        gaps = calculate_staffing_gaps(forecast, [designer])
        assert len(gaps) == 12
        assert gaps[0].month == "2024-06"
        assert gaps[-1].month == "2025-05"
        assert gaps[0].gap == pytest.approx(50 / FTE)
        assert all(gap.severity == "Moderate" for gap in gaps)

    def test_small_shortfall_below_threshold_ignored(self, single_project, engineer):
        """A shortfall of 0.1 FTE or less is not reported."""
        allocations = AllocationTable.from_mapping({"p1": {"1": {"designHours": 3 * (240 + 0.09 * FTE)}}})
        forecast = generate_resource_forecast(derive_timelines([single_project]), allocations, [engineer], 3)
        assert forecast[0].required("Engineer") - forecast[0].available("Engineer") == pytest.approx(0.09)
        assert calculate_staffing_gaps(forecast, [engineer]) == []

    def test_empty_inputs(self, engineer):
        assert calculate_staffing_gaps([], [engineer]) == []
        assert calculate_staffing_gaps(None, None) == []


class TestSummarize:

    def test_empty(self):
        summary = summarize_gaps([])
        assert summary.total_gap == 0
        assert summary.worst_month_label == ""
        assert summary.affected_categories == []

    def test_counts_and_worst(self):
        gaps = [
            _gap("2024-01", 0.5),
            _gap("2024-01", 2.0, "Inspector"),
            _gap("2024-02", 2.0),
            _gap("2024-03", 0.3, "Inspector"),
        ]
        summary = summarize_gaps(gaps)
        assert summary.total_gap == pytest.approx(4.8)
        assert summary.critical_count == 2
        assert summary.moderate_count == 2
        assert summary.worst_gap == 2.0
        # first strict maximum wins a tie
        assert summary.worst_category == "Inspector"
        assert summary.worst_month_label == "2024-01"
        assert summary.shortage_month_count == 3
        assert summary.affected_categories == ["Engineer", "Inspector"]

    def test_to_dict_rounds(self):
        payload = summarize_gaps([_gap("2024-01", 0.123456)]).to_dict()
        assert payload["totalGap"] == 0.12
        assert payload["moderateCount"] == 1


class TestFrame:

    def test_columns(self):
        df = gaps_to_frame([_gap("2024-01", 1.5)])
        assert list(df.columns) == GAP_COLUMNS
        assert df.loc[0, "severity"] == "Critical"

    def test_empty(self):
        df = gaps_to_frame([])
        assert df.empty
        assert list(df.columns) == GAP_COLUMNS
