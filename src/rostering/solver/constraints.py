"""
Hard Constraints
================
Eligibility checks evaluated against the in-progress roster.

``RosterState`` is the run accumulator: each employee's committed history plus
every placement made so far in the run. Checks look both backwards and
forwards in time, so a placement can never break a neighbouring assignment
that already exists.

Always enforced:
    - one work shift per employee per date
    - approved leave, active flag, minimum experience
    - minimum rest between shifts (from shift clock times)
    - hours in every rolling 7-day window

Enforced when enabled by rules/options:
    - consecutive nights cap
    - consecutive work days cap
    - dangerous patterns
"""
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from rostering.models.coverage import CoverageRequirement
from rostering.models.employee import Employee
from rostering.models.rules import RUN_NIGHT, DangerousPattern, GenerationOptions, RuleSet
from rostering.models.shift import ShiftType, rest_hours_between
from rostering.utils.logging_setup import get_logger

logger = get_logger("rostering.solver.constraints")

# Exclusion reason codes
INACTIVE = "inactive"
UNAVAILABLE = "unavailable"
ALREADY_ASSIGNED = "already_assigned"
INSUFFICIENT_EXPERIENCE = "insufficient_experience"
REST_HOURS = "rest_hours"
WEEKLY_HOURS = "weekly_hours"
CONSECUTIVE_NIGHTS = "consecutive_nights"
CONSECUTIVE_DAYS = "consecutive_days"
DANGEROUS_PATTERN = "dangerous_pattern"

# Codes that an emergency override may relax
RELAXABLE = frozenset({REST_HOURS, WEEKLY_HOURS, CONSECUTIVE_NIGHTS, CONSECUTIVE_DAYS, DANGEROUS_PATTERN})
SAFETY_CODES = frozenset({REST_HOURS, CONSECUTIVE_NIGHTS, CONSECUTIVE_DAYS, DANGEROUS_PATTERN})


class RosterState:
    """Per-run accumulator of work shifts by employee and date."""

    def __init__(self, employees: Iterable[Employee] = ()):
        self._shifts: Dict[str, Dict[date, ShiftType]] = {}
        self._run_counts: Dict[str, int] = {}
        for emp in employees:
            self._shifts[emp.id] = {
                r.date: r.shift_type for r in emp.history if r.shift_type.is_work
            }
            self._run_counts[emp.id] = 0

    def shift_on(self, employee_id: str, day: date) -> Optional[ShiftType]:
        return self._shifts.get(employee_id, {}).get(day)

    def is_committed(self, employee_id: str, day: date) -> bool:
        return self.shift_on(employee_id, day) is not None

    def add(self, employee_id: str, day: date, shift: ShiftType) -> None:
        if not shift.is_work:
            return
        shifts = self._shifts.setdefault(employee_id, {})
        if day in shifts:
            raise ValueError(f"{employee_id} already works {shifts[day].value} on {day.isoformat()}")
        shifts[day] = shift
        self._run_counts[employee_id] = self._run_counts.get(employee_id, 0) + 1

    def remove(self, employee_id: str, day: date) -> Optional[ShiftType]:
        removed = self._shifts.get(employee_id, {}).pop(day, None)
        if removed is not None and self._run_counts.get(employee_id, 0) > 0:
            self._run_counts[employee_id] -= 1
        return removed

    def shifts_of(self, employee_id: str) -> Dict[date, ShiftType]:
        """Read-only copy of an employee's work shifts keyed by date."""
        return dict(self._shifts.get(employee_id, {}))

    def run_count(self, employee_id: str) -> int:
        return self._run_counts.get(employee_id, 0)

    def workload(self, employee_id: str, day: date, lookback_days: int) -> int:
        """Work shifts within ``lookback_days`` either side of ``day`` (excluding it)."""
        lo = day - timedelta(days=lookback_days)
        hi = day + timedelta(days=lookback_days)
        return sum(
            1 for d in self._shifts.get(employee_id, {})
            if lo <= d <= hi and d != day
        )

    def copy(self) -> "RosterState":
        clone = RosterState()
        clone._shifts = {k: dict(v) for k, v in self._shifts.items()}
        clone._run_counts = dict(self._run_counts)
        return clone


def run_length(
    shifts: Dict[date, ShiftType],
    day: date,
    predicate: Callable[[ShiftType], bool],
) -> int:
    """Length of the run of consecutive dates around ``day`` whose shift satisfies ``predicate``."""
    if day not in shifts or not predicate(shifts[day]):
        return 0
    length = 1
    cursor = day - timedelta(days=1)
    while cursor in shifts and predicate(shifts[cursor]):
        length += 1
        cursor -= timedelta(days=1)
    cursor = day + timedelta(days=1)
    while cursor in shifts and predicate(shifts[cursor]):
        length += 1
        cursor += timedelta(days=1)
    return length


def is_night(shift: ShiftType) -> bool:
    return shift is ShiftType.NIGHT


def is_work(shift: ShiftType) -> bool:
    return shift.is_work


def completes_sequence(shifts: Dict[date, ShiftType], day: date, pattern: DangerousPattern) -> bool:
    """True if some window through ``day`` matches the pattern's trigger."""
    trigger = pattern.trigger
    for offset in range(len(trigger)):
        start = day - timedelta(days=offset)
        matched = True
        for i, expected in enumerate(trigger):
            actual = shifts.get(start + timedelta(days=i), ShiftType.OFF)
            if actual is not expected:
                matched = False
                break
        if matched:
            return True
    return False


class HardConstraints:
    """Eligibility filter for one (date, shift) placement."""

    def __init__(self, rules: RuleSet, options: Optional[GenerationOptions] = None):
        self.rules = rules
        self.options = options or GenerationOptions()
        self.cap_nights = self.options.caps_nights(rules)
        self.avoid_patterns = self.options.avoids_patterns(rules)

    def check(
        self,
        state: RosterState,
        employee: Employee,
        day: date,
        shift: ShiftType,
        requirement: Optional[CoverageRequirement] = None,
        relaxed: bool = False,
    ) -> Optional[str]:
        """
        Return the first exclusion code for this placement, or None if eligible.

        With ``relaxed=True`` only the non-relaxable checks run.
        """
        if not employee.is_active:
            return INACTIVE
        if day in employee.unavailable_dates:
            return UNAVAILABLE
        if state.is_committed(employee.id, day):
            return ALREADY_ASSIGNED
        if (
            requirement is not None
            and requirement.minimum_experience_level is not None
            and employee.experience_years < requirement.minimum_experience_level
        ):
            return INSUFFICIENT_EXPERIENCE
        if relaxed:
            return None

        shifts = state.shifts_of(employee.id)
        if not self._rest_ok(shifts, day, shift):
            return REST_HOURS
        if not self._weekly_hours_ok(shifts, day, shift):
            return WEEKLY_HOURS

        shifts[day] = shift
        if self.cap_nights and shift is ShiftType.NIGHT:
            if run_length(shifts, day, is_night) > self.rules.max_consecutive_nights:
                return CONSECUTIVE_NIGHTS
        if self.avoid_patterns:
            if run_length(shifts, day, is_work) > self.rules.max_consecutive_days:
                return CONSECUTIVE_DAYS
            for pattern in self.rules.dangerous_patterns:
                if self._pattern_hit(shifts, day, pattern):
                    logger.debug(f"{employee.id} {day.isoformat()} {shift.value}: completes {pattern.name}")
                    return DANGEROUS_PATTERN
        return None

    def excluded_by(
        self,
        state: RosterState,
        employees: Iterable[Employee],
        day: date,
        shift: ShiftType,
        requirement: Optional[CoverageRequirement] = None,
    ) -> Dict[str, List[str]]:
        """Group excluded employee ids by exclusion code."""
        excluded: Dict[str, List[str]] = {}
        for emp in employees:
            code = self.check(state, emp, day, shift, requirement)
            if code is not None:
                excluded.setdefault(code, []).append(emp.id)
        return excluded

    def _rest_ok(self, shifts: Dict[date, ShiftType], day: date, shift: ShiftType) -> bool:
        for offset in (-2, -1, 1, 2):
            other_day = day + timedelta(days=offset)
            other = shifts.get(other_day)
            if other is None:
                continue
            if rest_hours_between((other_day, other), (day, shift)) < self.rules.min_rest_hours:
                return False
        return True

    def _weekly_hours_ok(self, shifts: Dict[date, ShiftType], day: date, shift: ShiftType) -> bool:
        for start_offset in range(-6, 1):
            window_start = day + timedelta(days=start_offset)
            hours = shift.hours
            for i in range(7):
                d = window_start + timedelta(days=i)
                if d != day and d in shifts:
                    hours += shifts[d].hours
            if hours > self.rules.max_weekly_hours:
                return False
        return True

    def _pattern_hit(self, shifts: Dict[date, ShiftType], day: date, pattern: DangerousPattern) -> bool:
        if pattern.is_run:
            predicate = is_night if pattern.run_of == RUN_NIGHT else is_work
            return run_length(shifts, day, predicate) >= pattern.min_run
        return completes_sequence(shifts, day, pattern)
