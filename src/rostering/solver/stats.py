"""
Per-Employee Statistics
=======================
Single source of truth for per-employee numbers shown alongside a roster.
Used by the run summary, the JSON export and the CLI table.
"""
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

import pandas as pd

from rostering.models.employee import Employee
from rostering.models.schedule import GenerationResult
from rostering.models.shift import ShiftType
from rostering.utils.logging_setup import get_logger

logger = get_logger("rostering.solver.stats")


@dataclass
class EmployeeStats:
    """Statistics for a single employee over one run."""
    employee_id: str
    name: str
    team_id: str
    day: int
    evening: int
    night: int
    total: int
    weekend: int
    hours: float
    overtime_hours: float
    fairness_score: float
    risk_score: float
    risk_level: str
    avg_confidence: Optional[float] = None


def calculate_employee_stats(
    result: GenerationResult,
    employees: List[Employee],
) -> List[EmployeeStats]:
    """
    Calculate statistics for every employee in the run's scope.

    Employees missing from the fairness metrics (out of scope) are skipped.
    """
    metrics = result.fairness_metrics
    if metrics is None:
        return []

    confidences: Dict[str, List[float]] = {}
    for a in result.assignments:
        confidences.setdefault(a.employee_id, []).append(a.confidence_score)

    stats = []
    for emp in sorted(employees, key=lambda e: e.id):
        load = metrics.workloads.get(emp.id)
        if load is None:
            continue
        fairness = metrics.employees.get(emp.id)
        report = result.pattern_analysis.get(emp.id)
        conf = confidences.get(emp.id)
        stats.append(EmployeeStats(
            employee_id=emp.id,
            name=emp.name,
            team_id=emp.team_id,
            day=load.shift_counts.get(ShiftType.DAY, 0),
            evening=load.shift_counts.get(ShiftType.EVENING, 0),
            night=load.nights,
            total=load.total_shifts,
            weekend=load.weekend_shifts,
            hours=load.total_hours,
            overtime_hours=load.overtime_hours,
            fairness_score=fairness.fairness_score if fairness else 100.0,
            risk_score=report.risk_score if report else 0.0,
            risk_level=report.risk_level if report else "low",
            avg_confidence=round(sum(conf) / len(conf), 3) if conf else None,
        ))

    logger.debug(f"Calculated stats for {len(stats)} employees")
    return stats


def stats_to_dataframe(stats: List[EmployeeStats]) -> pd.DataFrame:
    """Convert stats to a DataFrame indexed by employee id."""
    if not stats:
        return pd.DataFrame()
    return pd.DataFrame([asdict(s) for s in stats]).set_index("employee_id")


def team_summary(stats: List[EmployeeStats]) -> pd.DataFrame:
    """Mean shift counts and hours per team."""
    df = stats_to_dataframe(stats)
    if df.empty:
        return df
    return (
        df.groupby("team_id")[["total", "night", "weekend", "hours", "risk_score"]]
        .mean()
        .round(2)
        .sort_index()
    )
