"""
Fairness Engine
===============
Distributional fairness of a roster.

Measures:
    - Gini coefficient of total hours across in-scope employees (idle ones count)
    - Gini of night and weekend load
    - per-employee fairness score and equity deltas versus the mean
    - team rollups and cross-team Gini

All aggregation sorts its inputs first, so results do not depend on the order
of assignments or employees. Empty input yields a neutral result (gini 0,
score 100).
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from rostering.models.employee import Employee
from rostering.models.rules import RuleSet
from rostering.models.shift import WORK_SHIFTS, ShiftType, is_weekend
from rostering.utils.logging_setup import get_logger

logger = get_logger("rostering.solver.fairness")

GRADES = ((90, "excellent"), (80, "good"), (60, "fair"), (40, "poor"))


def gini(values: Iterable[float]) -> float:
    """
    Gini coefficient of non-negative values.

    0 = perfectly equal, values approach 1 as one member holds everything.
    Returns 0 for empty input or an all-zero distribution.
    """
    data = sorted(max(0.0, float(v)) for v in values)
    n = len(data)
    total = sum(data)
    if n == 0 or total == 0:
        return 0.0
    weighted = sum((2 * (i + 1) - n - 1) * v for i, v in enumerate(data))
    return round(min(1.0, max(0.0, weighted / (n * total))), 6)


def fairness_score(gini_value: float) -> int:
    """Monotonically decreasing in Gini: (1 - gini) * 100, rounded."""
    return int(round((1.0 - gini_value) * 100))


def fairness_grade(score: float) -> str:
    for threshold, grade in GRADES:
        if score >= threshold:
            return grade
    return "unacceptable"


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


@dataclass
class EmployeeWorkload:
    """Per-employee totals for one roster."""
    employee_id: str
    team_id: str = ""
    shift_counts: Dict[ShiftType, int] = field(default_factory=dict)
    weekend_shifts: int = 0
    total_hours: float = 0.0
    overtime_hours: float = 0.0

    @property
    def total_shifts(self) -> int:
        return sum(self.shift_counts.values())

    @property
    def nights(self) -> int:
        return self.shift_counts.get(ShiftType.NIGHT, 0)

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "team_id": self.team_id,
            "total_shifts": self.total_shifts,
            "day": self.shift_counts.get(ShiftType.DAY, 0),
            "evening": self.shift_counts.get(ShiftType.EVENING, 0),
            "night": self.nights,
            "weekend_shifts": self.weekend_shifts,
            "total_hours": self.total_hours,
            "overtime_hours": self.overtime_hours,
        }


@dataclass
class EmployeeFairness:
    """Fairness position of one employee relative to the group."""
    employee_id: str
    fairness_score: float
    total_delta: float
    night_delta: float
    weekend_delta: float

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "fairness_score": self.fairness_score,
            "total_delta": self.total_delta,
            "night_delta": self.night_delta,
            "weekend_delta": self.weekend_delta,
        }


@dataclass
class TeamFairness:
    """Rollup for one team."""
    team_id: str
    members: int
    avg_shifts: float
    avg_nights: float
    avg_weekend_shifts: float
    avg_hours: float
    gini: float
    delta_vs_overall: float

    def to_dict(self) -> dict:
        return {
            "team_id": self.team_id,
            "members": self.members,
            "avg_shifts": self.avg_shifts,
            "avg_nights": self.avg_nights,
            "avg_weekend_shifts": self.avg_weekend_shifts,
            "avg_hours": self.avg_hours,
            "gini": self.gini,
            "delta_vs_overall": self.delta_vs_overall,
        }


@dataclass
class FairnessMetrics:
    """Per-run fairness aggregate."""
    overall_gini: float = 0.0
    night_gini: float = 0.0
    weekend_gini: float = 0.0
    fairness_score: int = 100
    target_gini: float = 0.3
    grade: str = "excellent"
    workloads: Dict[str, EmployeeWorkload] = field(default_factory=dict)
    employees: Dict[str, EmployeeFairness] = field(default_factory=dict)
    teams: Dict[str, TeamFairness] = field(default_factory=dict)
    cross_team_gini: float = 0.0

    @property
    def meets_target(self) -> bool:
        return self.overall_gini <= self.target_gini

    def to_dict(self) -> dict:
        return {
            "overall_gini": self.overall_gini,
            "night_gini": self.night_gini,
            "weekend_gini": self.weekend_gini,
            "fairness_score": self.fairness_score,
            "target_gini": self.target_gini,
            "meets_target": self.meets_target,
            "grade": self.grade,
            "cross_team_gini": self.cross_team_gini,
            "workloads": {k: v.to_dict() for k, v in self.workloads.items()},
            "employees": {k: v.to_dict() for k, v in self.employees.items()},
            "teams": {k: v.to_dict() for k, v in self.teams.items()},
        }


class FairnessEngine:
    """Computes FairnessMetrics for a set of assignments."""

    def __init__(self, rules: Optional[RuleSet] = None):
        self.rules = rules or RuleSet()

    def workloads(
        self,
        assignments: Iterable[Any],
        employees: Iterable[Employee],
    ) -> Dict[str, EmployeeWorkload]:
        """Per-employee totals, keyed and ordered by employee id."""
        roster = sorted(employees, key=lambda e: e.id)
        loads = {
            e.id: EmployeeWorkload(
                employee_id=e.id,
                team_id=e.team_id,
                shift_counts={s: 0 for s in WORK_SHIFTS},
            )
            for e in roster
        }
        weekly: Dict[str, Dict[tuple, float]] = {e.id: {} for e in roster}

        for a in sorted(assignments, key=lambda a: (a.employee_id, a.date, a.shift_type.value)):
            load = loads.get(a.employee_id)
            if load is None or not a.shift_type.is_work:
                continue
            load.shift_counts[a.shift_type] += 1
            load.total_hours += a.shift_type.hours
            if is_weekend(a.date):
                load.weekend_shifts += 1
            week = a.date.isocalendar()[:2]
            weekly[a.employee_id][week] = weekly[a.employee_id].get(week, 0.0) + a.shift_type.hours

        for emp_id, weeks in weekly.items():
            loads[emp_id].overtime_hours = sum(
                max(0.0, hours - self.rules.standard_weekly_hours) for hours in weeks.values()
            )
        return loads

    def evaluate(
        self,
        assignments: Iterable[Any],
        employees: Iterable[Employee],
    ) -> FairnessMetrics:
        """
        Fairness of ``assignments`` across ``employees``.

        Assignments of employees outside ``employees`` are ignored.
        """
        loads = self.workloads(assignments, employees)
        metrics = FairnessMetrics(target_gini=self.rules.target_gini, workloads=loads)
        if not loads:
            return metrics

        hours = [w.total_hours for w in loads.values()]
        nights = [w.nights for w in loads.values()]
        weekends = [w.weekend_shifts for w in loads.values()]
        shifts = [w.total_shifts for w in loads.values()]

        metrics.overall_gini = gini(hours)
        metrics.night_gini = gini(nights)
        metrics.weekend_gini = gini(weekends)
        metrics.fairness_score = fairness_score(metrics.overall_gini)
        metrics.grade = fairness_grade(metrics.fairness_score)

        mean_hours = _mean(hours)
        mean_shifts, mean_nights, mean_weekends = _mean(shifts), _mean(nights), _mean(weekends)
        for emp_id, w in loads.items():
            if mean_hours > 0:
                deviation = abs(w.total_hours - mean_hours) / mean_hours * 100
                score = round(max(0.0, 100.0 - deviation), 1)
            else:
                score = 100.0
            metrics.employees[emp_id] = EmployeeFairness(
                employee_id=emp_id,
                fairness_score=score,
                total_delta=round(w.total_shifts - mean_shifts, 3),
                night_delta=round(w.nights - mean_nights, 3),
                weekend_delta=round(w.weekend_shifts - mean_weekends, 3),
            )

        metrics.teams = self._teams(loads, mean_shifts)
        metrics.cross_team_gini = gini(t.avg_hours for t in metrics.teams.values())

        logger.debug(
            f"fairness: gini={metrics.overall_gini:.3f} score={metrics.fairness_score} "
            f"teams={len(metrics.teams)}"
        )
        return metrics

    @staticmethod
    def _teams(loads: Dict[str, EmployeeWorkload], overall_mean_shifts: float) -> Dict[str, TeamFairness]:
        grouped: Dict[str, List[EmployeeWorkload]] = {}
        for w in loads.values():
            grouped.setdefault(w.team_id or "unassigned", []).append(w)

        teams = {}
        for team_id in sorted(grouped):
            members = grouped[team_id]
            avg_shifts = _mean([m.total_shifts for m in members])
            teams[team_id] = TeamFairness(
                team_id=team_id,
                members=len(members),
                avg_shifts=round(avg_shifts, 3),
                avg_nights=round(_mean([m.nights for m in members]), 3),
                avg_weekend_shifts=round(_mean([m.weekend_shifts for m in members]), 3),
                avg_hours=round(_mean([m.total_hours for m in members]), 3),
                gini=gini(m.total_hours for m in members),
                delta_vs_overall=round(avg_shifts - overall_mean_shifts, 3),
            )
        return teams


def fairness_context(metrics: FairnessMetrics, employee_id: str) -> Dict[str, Any]:
    """Slice of the metrics relevant to one employee's assignment."""
    emp = metrics.employees.get(employee_id)
    load = metrics.workloads.get(employee_id)
    if emp is None or load is None:
        return {}
    team = metrics.teams.get(load.team_id or "unassigned")
    return {
        "employee_fairness_score": emp.fairness_score,
        "total_delta": emp.total_delta,
        "night_delta": emp.night_delta,
        "weekend_delta": emp.weekend_delta,
        "team_id": load.team_id,
        "team_delta": team.delta_vs_overall if team else 0.0,
        "overall_gini": metrics.overall_gini,
    }
