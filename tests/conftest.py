"""Shared fixtures: small portfolios with hand-checked FTE numbers."""
import json
from pathlib import Path

import pytest

from capital_planner.models import (
    AllocationTable,
    Program,
    Project,
    Scenario,
    StaffAllocation,
    StaffCategory,
)


@pytest.fixture
def engineer():
    """240 h/month of capacity: 1.3857 FTE."""
    return StaffCategory(id="1", name="Engineer", hourly_rate=95, design_capacity=120, construction_capacity=120)


@pytest.fixture
def single_project():
    """Design Jan-Mar 2024, construction Apr-Sep 2024."""
    return Project(
        id="p1",
        name="Main Street Rehab",
        design_start_date="2024-01-01",
        design_duration=3,
        construction_start_date="2024-04-01",
        construction_duration=6,
        design_budget=90000,
        construction_budget=600000,
    )


@pytest.fixture
def single_project_allocations():
    """240 design hours (80/month) and 960 construction hours (160/month)."""
    return AllocationTable(
        [StaffAllocation(project_id="p1", category_id="1", pm_hours=500, design_hours=240, construction_hours=960)]
    )


@pytest.fixture
def designer():
    """Design-only category with 50 h/month."""
    return StaffCategory(id="2", name="Designer", design_capacity=50, construction_capacity=0)


@pytest.fixture
def paving_program():
    """Program from Jun 2024 through May 2025 needing 100 design hours every month."""
    return Program(
        id="prog-1",
        name="Annual Paving",
        program_start_date="2024-06-01",
        program_end_date="2025-05-01",
        continuous_design_hours=100,
        annual_budget=120000,
    )


@pytest.fixture
def shift_category():
    """80 h/month: 0.4619 FTE."""
    return StaffCategory(id="1", name="Engineer", design_capacity=40, construction_capacity=40)


@pytest.fixture
def shift_items():
    """P1 needs 600 design hours over Nov 2024-Jan 2025; P2 only anchors the forecast start."""
    return [
        Project(
            id="p1",
            name="P1",
            design_start_date="2024-11-01",
            design_duration=3,
            construction_start_date="2025-06-01",
            construction_duration=0,
            design_budget=300000,
        ),
        Project(
            id="p2",
            name="P2",
            design_start_date="2024-11-01",
            design_duration=1,
            construction_start_date="2024-12-01",
            construction_duration=0,
        ),
    ]


@pytest.fixture
def shift_allocations():
    return AllocationTable([StaffAllocation(project_id="p1", category_id="1", design_hours=600)])


@pytest.fixture
def delay_scenario():
    return Scenario(id="delay-p1", name="Delay P1", adjustments={"p1": {"designStartDate": "2025-01-01"}})


def write_portfolio(root: Path, name: str = "downtown") -> Path:
    """Write the two-project shift portfolio to <root>/<name>/input."""
    input_dir = root / name / "input"
    input_dir.mkdir(parents=True)
    projects = [
        {
            "id": "p1",
            "name": "P1",
            "type": "project",
            "deliveryType": "self-perform",
            "designStartDate": "2024-11-01",
            "designDuration": 3,
            "constructionStartDate": "2025-06-01",
            "constructionDuration": 0,
            "designBudget": 300000,
            "totalBudget": 300000,
        },
        {
            "id": "p2",
            "name": "P2",
            "type": "project",
            "designStartDate": "2024-11-01",
            "designDuration": 1,
            "constructionStartDate": "2024-12-01",
            "constructionDuration": 0,
        },
    ]
    scenarios = [
        {"id": "delay-p1", "name": "Delay P1", "adjustments": {"p1": {"designStartDate": "2025-01-01"}}}
    ]
    (input_dir / "projects.json").write_text(json.dumps(projects))
    (input_dir / "staff_categories.csv").write_text(
        "id,name,hourly_rate,design_capacity,construction_capacity\n1,Engineer,95,40,40\n"
    )
    (input_dir / "staff_allocations.csv").write_text(
        "project_id,category_id,pm_hours,design_hours,construction_hours\np1,1,0,600,0\n"
    )
    (input_dir / "config.json").write_text(json.dumps({"horizon_months": 12}))
    (input_dir / "scenarios.json").write_text(json.dumps(scenarios))
    return input_dir.parent


@pytest.fixture
def portfolio_dir(tmp_path):
    return write_portfolio(tmp_path)
