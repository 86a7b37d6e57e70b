"""
Pattern Safety Analysis
=======================
Detects dangerous shift sequences in each employee's roster.

The analyzer is a pure function of its inputs: the same assignment sequence
always yields the same findings in the same order.

Detections:
    - configured exact sequences (sliding window, OFF = no work that day)
    - night runs against ``max_consecutive_nights`` and night-run patterns
    - work-day runs against ``max_consecutive_days`` and work-run patterns
    - triple-shift rotation (day, evening and night within three days)
    - double shift without rest (D→E→off→work, E→N→off→work)
    - excessive night ratio
    - repeated Friday nights
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rostering.models.employee import Employee
from rostering.models.rules import RUN_NIGHT, RUN_WORK, RuleSet
from rostering.models.shift import ShiftType, date_range, is_friday
from rostering.utils.logging_setup import get_logger

from .constraints import is_night, is_work

logger = get_logger("rostering.solver.patterns")


class Severity(str, Enum):
    WARNING = "warning"
    DANGER = "danger"
    CRITICAL = "critical"


NIGHT_RATIO_LIMIT = 0.4
NIGHT_RATIO_MIN_SHIFTS = 5
FRIDAY_NIGHT_LIMIT = 2

RISK_LEVELS = ((80, "critical"), (60, "high"), (30, "medium"))

RECOMMENDATIONS = {
    "consecutive_nights": "Cap consecutive nights and follow night blocks with at least two rest days",
    "consecutive_work_days": "Insert a rest day to break the work block",
    "dangerous_sequence": "Reorder shifts so rotations move forward (day → evening → night)",
    "triple_shift_rotation": "Avoid cycling through all three shift types within three days",
    "double_without_rest": "Give a full rest day after back-to-back shift changes",
    "excessive_nights": "Redistribute night shifts across the team",
    "friday_nights": "Rotate Friday night coverage",
}


@dataclass
class PatternRisk:
    """One dangerous-pattern finding."""
    risk_type: str
    severity: Severity
    description: str
    start_date: date
    end_date: date
    risk_score: int
    pattern: Optional[str] = None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def to_dict(self) -> dict:
        return {
            "risk_type": self.risk_type,
            "severity": self.severity.value,
            "description": self.description,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "risk_score": self.risk_score,
            "pattern": self.pattern,
        }


@dataclass
class EmployeePatternReport:
    """Aggregated pattern risk for one employee."""
    employee_id: str
    risks: List[PatternRisk] = field(default_factory=list)
    risk_score: float = 0.0
    risk_level: str = "low"
    recommendations: List[str] = field(default_factory=list)

    @property
    def safety_score(self) -> float:
        return round(100.0 - self.risk_score, 1)

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "safety_score": self.safety_score,
            "risks": [r.to_dict() for r in self.risks],
            "recommendations": list(self.recommendations),
        }


def _as_pair(item: Any) -> Tuple[date, ShiftType]:
    if isinstance(item, tuple):
        return item[0], ShiftType.from_string(item[1])
    return item.date, item.shift_type


def build_calendar(
    sequence: Iterable[Any],
    end_date: Optional[date] = None,
) -> List[Tuple[date, ShiftType]]:
    """Day-by-day sequence from the first assignment to ``end_date`` (OFF where idle)."""
    worked: Dict[date, ShiftType] = {}
    for item in sequence:
        day, shift = _as_pair(item)
        if shift.is_work:
            worked[day] = shift
    if not worked:
        return []
    first = min(worked)
    last = max(worked) if end_date is None else max(max(worked), end_date)
    return [(d, worked.get(d, ShiftType.OFF)) for d in date_range(first, last)]


def _runs(calendar: List[Tuple[date, ShiftType]], predicate) -> List[Tuple[date, date, int]]:
    runs = []
    start = None
    length = 0
    prev = None
    for day, shift in calendar:
        if predicate(shift):
            if start is None:
                start = day
            length += 1
        elif start is not None:
            runs.append((start, prev, length))
            start, length = None, 0
        prev = day
    if start is not None:
        runs.append((start, prev, length))
    return runs


def risk_level(score: float) -> str:
    for threshold, level in RISK_LEVELS:
        if score >= threshold:
            return level
    return "low"


def aggregate_risk(risks: List[PatternRisk]) -> float:
    """Top finding weighted 0.7 plus the mean of the rest weighted 0.3."""
    if not risks:
        return 0.0
    scores = sorted((r.risk_score for r in risks), reverse=True)
    top, rest = scores[0], scores[1:]
    if not rest:
        return float(top)
    return round(min(100.0, top * 0.7 + (sum(rest) / len(rest)) * 0.3), 1)


class PatternSafetyAnalyzer:
    """Per-employee dangerous-pattern scan."""

    def __init__(self, rules: RuleSet):
        self.rules = rules

    def analyze(
        self,
        employee: Employee,
        assignment_sequence: Iterable[Any],
        end_date: Optional[date] = None,
    ) -> List[PatternRisk]:
        """
        Scan an employee's assignments.

        Args:
            employee: The employee (used for labelling)
            assignment_sequence: ScheduleAssignment/ShiftRecord objects or (date, shift) pairs
            end_date: Last day of the period; idle days up to it count as OFF

        Returns:
            Findings ordered by start date, then risk type
        """
        calendar = build_calendar(assignment_sequence, end_date)
        if not calendar:
            return []

        risks: List[PatternRisk] = []
        risks.extend(self._run_risks(calendar, RUN_NIGHT))
        risks.extend(self._run_risks(calendar, RUN_WORK))
        risks.extend(self._sequence_risks(calendar))
        risks.extend(self._rotation_risks(calendar))
        risks.extend(self._double_without_rest(calendar))
        risks.extend(self._night_ratio(calendar))
        risks.extend(self._friday_nights(calendar))

        risks.sort(key=lambda r: (r.start_date, r.risk_type, r.end_date))
        if risks:
            logger.debug(f"{employee.id}: {len(risks)} pattern risks")
        return risks

    def report(
        self,
        employee: Employee,
        assignment_sequence: Iterable[Any],
        end_date: Optional[date] = None,
    ) -> EmployeePatternReport:
        risks = self.analyze(employee, assignment_sequence, end_date)
        score = aggregate_risk(risks)
        recommendations = []
        for risk in risks:
            text = RECOMMENDATIONS.get(risk.risk_type)
            if text and text not in recommendations:
                recommendations.append(text)
        return EmployeePatternReport(
            employee_id=employee.id,
            risks=risks,
            risk_score=score,
            risk_level=risk_level(score),
            recommendations=recommendations,
        )

    def analyze_schedule(
        self,
        assignments: Iterable[Any],
        employees: Iterable[Employee],
        end_date: Optional[date] = None,
    ) -> Dict[str, EmployeePatternReport]:
        """Reports for every employee, keyed and ordered by employee id."""
        by_employee: Dict[str, List[Any]] = {}
        for a in assignments:
            by_employee.setdefault(a.employee_id, []).append(a)
        return {
            emp.id: self.report(emp, by_employee.get(emp.id, []), end_date)
            for emp in sorted(employees, key=lambda e: e.id)
        }

    # ------------------------------------------------------------------

    def _run_risks(self, calendar, run_of: str) -> List[PatternRisk]:
        if run_of == RUN_NIGHT:
            cap = self.rules.max_consecutive_nights
            predicate = is_night
            risk_type, noun = "consecutive_nights", "night shifts"
            base_warning, base_critical = 50, 80
        else:
            cap = self.rules.max_consecutive_days
            predicate = is_work
            risk_type, noun = "consecutive_work_days", "work days"
            base_warning, base_critical = 40, 75

        pattern_runs = [p for p in self.rules.dangerous_patterns if p.run_of == run_of]
        threshold = min([cap] + [p.min_run for p in pattern_runs])

        risks = []
        for start, end, length in _runs(calendar, predicate):
            if length < threshold:
                continue
            matched = next((p for p in pattern_runs if length >= p.min_run), None)
            if length > cap:
                severity = Severity.CRITICAL
                score = min(100, base_critical + 5 * (length - cap - 1))
            else:
                # at or below the cap: a warning that weakens with distance from it
                severity = Severity.WARNING
                score = max(10, base_warning - 5 * (cap - length))
            risks.append(PatternRisk(
                risk_type=risk_type,
                severity=severity,
                description=f"{length} consecutive {noun} (limit {cap})",
                start_date=start,
                end_date=end,
                risk_score=score,
                pattern=matched.name if matched else None,
            ))
        return risks

    def _sequence_risks(self, calendar) -> List[PatternRisk]:
        shifts = [s for _, s in calendar]
        risks = []
        for pattern in self.rules.dangerous_patterns:
            if pattern.is_run:
                continue
            size = len(pattern.sequence)
            for i in range(len(shifts) - size + 1):
                if tuple(shifts[i:i + size]) == pattern.sequence:
                    risks.append(PatternRisk(
                        risk_type="dangerous_sequence",
                        severity=Severity.DANGER,
                        description=f"Dangerous sequence {pattern.describe()}",
                        start_date=calendar[i][0],
                        end_date=calendar[i + size - 1][0],
                        risk_score=70,
                        pattern=pattern.name,
                    ))
        return risks

    @staticmethod
    def _rotation_risks(calendar) -> List[PatternRisk]:
        full = {ShiftType.DAY, ShiftType.EVENING, ShiftType.NIGHT}
        risks = []
        for i in range(len(calendar) - 2):
            window = calendar[i:i + 3]
            if {s for _, s in window} == full:
                risks.append(PatternRisk(
                    risk_type="triple_shift_rotation",
                    severity=Severity.CRITICAL,
                    description="Day, evening and night shifts within three days",
                    start_date=window[0][0],
                    end_date=window[-1][0],
                    risk_score=95,
                ))
        return risks

    @staticmethod
    def _double_without_rest(calendar) -> List[PatternRisk]:
        pairs = {(ShiftType.DAY, ShiftType.EVENING), (ShiftType.EVENING, ShiftType.NIGHT)}
        risks = []
        for i in range(len(calendar) - 3):
            (d0, s0), (_, s1), (_, s2), (d3, s3) = calendar[i:i + 4]
            if (s0, s1) in pairs and s2 is ShiftType.OFF and s3.is_work:
                risks.append(PatternRisk(
                    risk_type="double_without_rest",
                    severity=Severity.DANGER,
                    description=f"{s0.value}→{s1.value} followed by a single rest day",
                    start_date=d0,
                    end_date=d3,
                    risk_score=75,
                ))
        return risks

    @staticmethod
    def _night_ratio(calendar) -> List[PatternRisk]:
        work = [s for _, s in calendar if s.is_work]
        nights = sum(1 for s in work if s is ShiftType.NIGHT)
        if len(work) < NIGHT_RATIO_MIN_SHIFTS or nights / len(work) <= NIGHT_RATIO_LIMIT:
            return []
        ratio = nights / len(work)
        return [PatternRisk(
            risk_type="excessive_nights",
            severity=Severity.WARNING,
            description=f"{ratio:.0%} of shifts are nights",
            start_date=calendar[0][0],
            end_date=calendar[-1][0],
            risk_score=60,
        )]

    @staticmethod
    def _friday_nights(calendar) -> List[PatternRisk]:
        fridays = [d for d, s in calendar if s is ShiftType.NIGHT and is_friday(d)]
        if len(fridays) < FRIDAY_NIGHT_LIMIT:
            return []
        return [PatternRisk(
            risk_type="friday_nights",
            severity=Severity.WARNING,
            description=f"{len(fridays)} Friday night shifts",
            start_date=fridays[0],
            end_date=fridays[-1],
            risk_score=50,
        )]


def consecutive_counts(shifts: Dict[date, ShiftType], day: date) -> Tuple[int, int]:
    """(consecutive work days, consecutive nights) ending at ``day``."""
    days = nights = 0
    cursor = day
    while cursor in shifts and shifts[cursor].is_work:
        days += 1
        cursor -= timedelta(days=1)
    cursor = day
    while shifts.get(cursor) is ShiftType.NIGHT:
        nights += 1
        cursor -= timedelta(days=1)
    return days, nights
