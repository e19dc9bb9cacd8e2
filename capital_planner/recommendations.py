"""
Recommendation engine for scenario analysis.

Turns a scenario's gap summary, conflict highlights and project shifts into
short, ranked, human-readable advice:
- Which schedule shifts create which shortfalls
- How many people to hire (or how long to delay) for the worst conflict
- Which quarter carries the peak shortage
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from .conflicts import ConflictHighlights, ResourceConflict
from .gaps import GapSummary, classify_gap

if TYPE_CHECKING:
    from .scenarios import ProjectShift

ALIGNED_MESSAGE = "Scenario aligns with baseline staffing capacity. No major conflicts detected."
SEVERITY_ORDER = {"critical": 0, "moderate": 1, "low": 2}
DEFAULT_SUGGESTED_DELAY = 3


@dataclass(frozen=True)
class Recommendation:
    kind: str  # "shift", "hiring", "peak", "summary"
    severity: str  # "critical", "moderate", "low"
    message: str


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ScenarioRecommendationEngine:
    """Builds recommendations for one analyzed scenario."""

    def __init__(
        self,
        gap_summary: GapSummary,
        conflict_highlights: ConflictHighlights,
        project_shifts: Sequence["ProjectShift"] = (),
    ):
        self.gap_summary = gap_summary
        self.conflict_highlights = conflict_highlights
        self.project_shifts = list(project_shifts or ())
        self.recommendations: List[Recommendation] = []

    def analyze(self) -> List[Recommendation]:
        """Run every rule and return recommendations, most severe first."""
        self.recommendations = []
        self._analyze_shifts()
        self._analyze_worst_conflict()
        self._analyze_peak_shortage()
        self._add_fallback()
        self._prioritize_recommendations()
        return self.recommendations

    def messages(self) -> List[str]:
        return [recommendation.message for recommendation in self.analyze()]

    def _first_conflict_for(self, project_id: str) -> Optional[ResourceConflict]:
        for conflict in self.conflict_highlights.conflicts:
            if conflict.involves(project_id):
                return conflict
        return None

    def _analyze_shifts(self):
        """Explain shifted projects that drive a conflict."""
        for shift in self.project_shifts:
            values = shift.nonzero_shifts()
            if not values:
                continue
            conflict = self._first_conflict_for(shift.project_id)
            if conflict is None:
                continue
            magnitude = max(abs(value) for value in values)
            direction = "Accelerating" if any(value < 0 for value in values) else "Delaying"
            self.recommendations.append(Recommendation(
                kind="shift",
                severity=classify_gap(conflict.gap).lower(),
                message=(
                    f"{direction} {shift.name} by {magnitude} {_plural(magnitude, 'month')} "
                    f"creates a {conflict.gap:.1f} FTE gap in {conflict.category_name} "
                    f"({conflict.month_label})."
                ),
            ))

    def _analyze_worst_conflict(self):
        """Suggest hiring or a delay sized to the largest conflict."""
        conflicts = self.conflict_highlights.conflicts
        if not conflicts:
            return
        # First strict maximum wins.
        worst = conflicts[0]
        for conflict in conflicts[1:]:
            if conflict.gap > worst.gap:
                worst = conflict
        if not worst.top_projects:
            return

        needed = max(1, _round_half_up(worst.gap))
        primary = worst.top_projects[0]
        related = next(
            (shift for shift in self.project_shifts if shift.project_id == primary.project_id),
            None,
        )
        delay = max(1, abs(related.primary_shift())) if related is not None else DEFAULT_SUGGESTED_DELAY
        self.recommendations.append(Recommendation(
            kind="hiring",
            severity=classify_gap(worst.gap).lower(),
            message=(
                f"Consider hiring {needed} additional {worst.category_name}"
                f"{'s' if needed > 1 else ''} or delaying {primary.project_name} "
                f"by {delay} {_plural(delay, 'month')}."
            ),
        ))

    def _analyze_peak_shortage(self):
        peak = self.conflict_highlights.peak_shortage
        if peak is None:
            return
        categories = ", ".join(category.name for category in peak.categories)
        self.recommendations.append(Recommendation(
            kind="peak",
            severity=classify_gap(peak.shortage).lower(),
            message=(
                f"Peak conflict occurs in {peak.quarter_label} with a {peak.shortage:.1f} "
                f"FTE shortage across {categories}."
            ),
        ))

    def _add_fallback(self):
        if self.recommendations:
            return
        if self.gap_summary.total_gap > 0:
            self.recommendations.append(Recommendation(
                kind="summary",
                severity="moderate",
                message=(
                    f"Scenario introduces {self.gap_summary.total_gap:.1f} FTE shortage across "
                    f"{len(self.gap_summary.affected_categories)} staff categories."
                ),
            ))
        else:
            self.recommendations.append(Recommendation(kind="summary", severity="low", message=ALIGNED_MESSAGE))

    def _prioritize_recommendations(self):
        """Drop repeated messages, then sort by severity keeping rule order."""
        seen = set()
        unique = []
        for recommendation in self.recommendations:
            if recommendation.message in seen:
                continue
            seen.add(recommendation.message)
            unique.append(recommendation)
        unique.sort(key=lambda r: SEVERITY_ORDER.get(r.severity, 999))
        self.recommendations = unique

    @staticmethod
    def to_dict(recommendation: Recommendation) -> Dict[str, str]:
        return {
            "type": recommendation.kind,
            "severity": recommendation.severity,
            "message": recommendation.message,
        }
