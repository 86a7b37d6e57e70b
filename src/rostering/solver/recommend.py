"""
Replacement Recommendations
===========================
Ranks who could take over an existing slot.

Two kinds of candidate:
    - direct: off that date, passes every hard constraint with the current
      assignee's placement removed
    - trade: a same-level colleague who is off on the target date and works a
      date on which the current assignee is off; both sides must stay valid
      after the swap

Candidates scoring below ``RECOMMENDATION_THRESHOLD`` are dropped.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from rostering.models.coverage import CoverageRequirement
from rostering.models.employee import Employee
from rostering.models.rules import GenerationOptions, RuleSet
from rostering.models.shift import ShiftType, parse_date
from rostering.utils.logging_setup import get_logger, log_function_call

from .constraints import HardConstraints, RosterState
from .scoring import (
    RECOMMENDATION_THRESHOLD,
    CandidateScorer,
    ScoreBreakdown,
    ScoringContext,
    ScoringFactor,
)

logger = get_logger("rostering.solver.recommend")

MAX_TRADES = 5

TRADE = "trade"
SAME_LEVEL = "same_level"
PREFERENCE_MATCH = "preference_match"
AVAILABILITY = "availability"


@dataclass
class RankedCandidate:
    """A replacement option for one slot."""
    employee_id: str
    score: float
    recommendation_type: str
    explanation: str
    breakdown: ScoreBreakdown
    workload: int = 0
    trade_date: Optional[date] = None
    trade_shift: Optional[ShiftType] = None

    @property
    def is_trade(self) -> bool:
        return self.recommendation_type == TRADE

    @property
    def sort_key(self):
        return (-self.score, self.workload, 1 if self.is_trade else 0, self.employee_id)

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "score": self.score,
            "recommendation_type": self.recommendation_type,
            "explanation": self.explanation,
            "workload": self.workload,
            "trade_date": self.trade_date.isoformat() if self.trade_date else None,
            "trade_shift": self.trade_shift.value if self.trade_shift else None,
            "sub_scores": {f.key: v for f, v in self.breakdown.sub_scores.items()},
        }


def _classify(breakdown: ScoreBreakdown, candidate: Employee, reference: Optional[Employee]) -> str:
    if reference is not None and candidate.hierarchy_level == reference.hierarchy_level:
        return SAME_LEVEL
    if breakdown.level(ScoringFactor.PREFERENCE_ALIGNMENT) >= 1.0:
        return PREFERENCE_MATCH
    return AVAILABILITY


_EXPLANATIONS = {
    SAME_LEVEL: "Same hierarchy level as the current assignee",
    PREFERENCE_MATCH: "Prefers this shift on this weekday",
    AVAILABILITY: "Available and within every hard limit",
}


@log_function_call
def recommend_candidates(
    assignments: Iterable[Any],
    employees: Iterable[Employee],
    rules: RuleSet,
    date: Any,
    shift_type: Any,
    top_n: int = 10,
    current_employee_id: Optional[str] = None,
    options: Optional[GenerationOptions] = None,
) -> List[RankedCandidate]:
    """
    Rank replacement candidates for the ``(date, shift_type)`` slot.

    Args:
        assignments: The current roster (ScheduleAssignment-like objects)
        employees: Employee pool
        rules: Tenant rules used for constraints and scoring
        date: Target date
        shift_type: Target shift
        top_n: Maximum number of candidates returned
        current_employee_id: Assignee being replaced; defaults to the first
            assignee of the slot by id
        options: Generation toggles (preferences, workload balancing, scope)

    Returns:
        Candidates sorted by score desc, workload asc, direct before trade, id

    Raises:
        ValueError: an assignment clashes with a different shift the employee
            already works that date
    """
    day = parse_date(date)
    shift = ShiftType.from_string(shift_type)
    options = options or GenerationOptions()
    roster = sorted(
        (e for e in employees if e.is_active and options.in_scope(e.team_id)),
        key=lambda e: e.id,
    )
    by_id: Dict[str, Employee] = {e.id: e for e in roster}

    assignments = list(assignments)
    state = RosterState(roster)
    for a in assignments:
        # committed history may already hold the stored assignment
        if state.shift_on(a.employee_id, a.date) is a.shift_type:
            continue
        state.add(a.employee_id, a.date, a.shift_type)

    if current_employee_id is None:
        assignees = sorted(a.employee_id for a in assignments if a.date == day and a.shift_type == shift)
        current_employee_id = assignees[0] if assignees else None
    reference = by_id.get(current_employee_id) if current_employee_id else None

    base = state.copy()
    if current_employee_id is not None and base.shift_on(current_employee_id, day) is shift:
        base.remove(current_employee_id, day)

    slot = CoverageRequirement(
        date=day,
        shift_type=shift,
        required_count=1,
        reference_level=reference.hierarchy_level if reference else None,
    )
    constraints = HardConstraints(rules, options)
    scorer = CandidateScorer(rules, options)
    context = ScoringContext(state=base, roster=roster, reference=reference, lookback_days=rules.lookback_days)

    ranked: List[RankedCandidate] = []
    for emp in roster:
        if emp.id == current_employee_id or base.is_committed(emp.id, day):
            continue
        if constraints.check(base, emp, day, shift, slot) is not None:
            continue
        bd = scorer.score(slot, emp, context)
        if bd.total < RECOMMENDATION_THRESHOLD:
            continue
        kind = _classify(bd, emp, reference)
        ranked.append(RankedCandidate(
            employee_id=emp.id,
            score=bd.total,
            recommendation_type=kind,
            explanation=_EXPLANATIONS[kind],
            breakdown=bd,
            workload=bd.workload,
        ))

    if reference is not None:
        ranked.extend(_trades(assignments, roster, reference, base, day, shift, slot, constraints, scorer, context))

    ranked.sort(key=lambda c: c.sort_key)
    logger.debug(f"{len(ranked)} candidates for {day.isoformat()} {shift.value}")
    return ranked[:top_n]


def _trades(
    assignments: List[Any],
    roster: List[Employee],
    reference: Employee,
    base: RosterState,
    day: date,
    shift: ShiftType,
    slot: CoverageRequirement,
    constraints: HardConstraints,
    scorer: CandidateScorer,
    context: ScoringContext,
) -> List[RankedCandidate]:
    """Reciprocal swaps with same-level colleagues, at most one per colleague."""
    worked: Dict[str, List[date]] = {}
    for a in assignments:
        if a.shift_type.is_work:
            worked.setdefault(a.employee_id, []).append(a.date)

    trades: List[RankedCandidate] = []
    for emp in roster:
        if len(trades) >= MAX_TRADES:
            break
        if emp.id == reference.id or emp.hierarchy_level != reference.hierarchy_level:
            continue
        if base.is_committed(emp.id, day):
            continue
        for other_day in sorted(worked.get(emp.id, [])):
            if other_day == day or base.is_committed(reference.id, other_day):
                continue
            trial = base.copy()
            other_shift = trial.remove(emp.id, other_day)
            if other_shift is None:
                continue
            if constraints.check(trial, emp, day, shift, slot) is not None:
                continue
            trial.add(emp.id, day, shift)
            if constraints.check(trial, reference, other_day, other_shift) is not None:
                continue

            bd = scorer.score(slot, emp, context)
            if bd.total < RECOMMENDATION_THRESHOLD:
                break
            trades.append(RankedCandidate(
                employee_id=emp.id,
                score=bd.total,
                recommendation_type=TRADE,
                explanation=(
                    f"Swap: takes {day.isoformat()} {shift.value}, gives "
                    f"{other_day.isoformat()} {other_shift.value} to {reference.id}"
                ),
                breakdown=bd,
                workload=bd.workload,
                trade_date=other_day,
                trade_shift=other_shift,
            ))
            break
    return trades
