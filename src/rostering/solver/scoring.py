"""
Candidate Scoring
=================
Multi-factor suitability score for placing an employee on a (date, shift) slot.

Each factor produces a level in [0, 1]; the level is multiplied by the
factor's effective weight and the weighted levels add up to a total in [0, 1].

Base weights live on ``ScoringFactor`` and must sum to 1.0 (checked at import).
Tenant rule weights (fairness/preference/seniority/workload) tilt the base
weights, which are then renormalised so the effective weights still sum to 1.0.

Fatigue and workload inputs come from the roster accumulator (history plus
the run so far). Nothing here is random.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from rostering.models.coverage import CoverageRequirement
from rostering.models.employee import Employee
from rostering.models.rules import GenerationOptions, RuleSet
from rostering.models.shift import ShiftType

from .constraints import RosterState


class ScoringFactor(Enum):
    """Scoring factors with their base weight and rule-weight group."""
    HIERARCHY_MATCH = ("hierarchy_match", 0.35, "seniority")
    PREFERENCE_ALIGNMENT = ("preference_alignment", 0.25, "preference")
    FATIGUE_BALANCE = ("fatigue_balance", 0.15, "workload")
    EXPERIENCE_MATCH = ("experience_match", 0.10, "seniority")
    AVAILABILITY = ("availability", 0.10, None)
    RECENT_WORKLOAD = ("recent_workload", 0.05, "fairness")

    def __init__(self, key: str, weight: float, group: Optional[str]):
        self.key = key
        self.weight = weight
        self.group = group


BASE_WEIGHT_TOTAL = sum(f.weight for f in ScoringFactor)
if abs(BASE_WEIGHT_TOTAL - 1.0) > 1e-9:
    raise RuntimeError(f"ScoringFactor weights must sum to 1.0, got {BASE_WEIGHT_TOTAL}")

# Factor levels
HIERARCHY_SAME = 1.0
HIERARCHY_ADJACENT = 0.5
HIERARCHY_OPEN_SLOT = 0.75

PREFERENCE_EXACT = 1.0
PREFERENCE_PARTIAL = 0.4
PREFERENCE_NEUTRAL = 0.4  # employee has no pattern

FATIGUE_BANDS = ((4.0, 1.0), (7.0, 0.5))  # (upper bound exclusive, level)
FATIGUE_SCALE = 0.5
FATIGUE_MAX = 10.0

EXPERIENCE_BANDS = ((2.0, 1.0), (5.0, 0.5))  # (max |Δ years|, level)
EXPERIENCE_NO_REFERENCE = 0.8

AVAILABILITY_FULL = 1.0
AVAILABILITY_AVOIDED_DAY = 0.5

RECOMMENDATION_THRESHOLD = 0.2
SCORE_PRECISION = 9


def effective_weights(rules: RuleSet) -> Dict[ScoringFactor, float]:
    """Base weights tilted by the tenant's rule weights, renormalised to 1.0."""
    groups = rules.weights
    n_groups = len(groups)
    raw = {}
    for factor in ScoringFactor:
        emphasis = 1.0 if factor.group is None else n_groups * groups[factor.group]
        raw[factor] = factor.weight * emphasis
    total = sum(raw.values())
    return {factor: value / total for factor, value in raw.items()}


def fatigue_score(shifts: Dict[date, ShiftType], day: date, lookback_days: int) -> float:
    """
    Fatigue accumulated over the days before ``day`` (0-10).

    Night 3, evening 2, day 1 point per shift, plus 0.5 per day beyond three
    consecutive work days; each rest day recovers 1 point.
    """
    score = 0.0
    consecutive = 0
    cursor = day - timedelta(days=lookback_days)
    while cursor < day:
        shift = shifts.get(cursor)
        if shift is None or not shift.is_work:
            consecutive = 0
            score = max(0.0, score - 1.0)
        else:
            consecutive += 1
            score += shift.fatigue + 0.5 * max(0, consecutive - 3)
        cursor += timedelta(days=1)
    return min(FATIGUE_MAX, score * FATIGUE_SCALE)


@dataclass
class ScoringContext:
    """Run context for scoring one slot position."""
    state: RosterState
    roster: Sequence[Employee]
    reference: Optional[Employee] = None  # assignee being replaced, if any
    lookback_days: int = 14
    _max_load: Dict[date, int] = field(default_factory=dict, repr=False)

    def workload(self, employee_id: str, day: date) -> int:
        return self.state.workload(employee_id, day, self.lookback_days)

    def max_workload(self, day: date) -> int:
        if day not in self._max_load:
            self._max_load[day] = max((self.workload(e.id, day) for e in self.roster), default=0)
        return self._max_load[day]


@dataclass
class ScoreBreakdown:
    """Named, additive sub-scores for one candidate on one slot."""
    employee_id: str
    sub_scores: Dict[ScoringFactor, float]
    levels: Dict[ScoringFactor, float]
    weights: Dict[ScoringFactor, float]
    disabled: FrozenSet[ScoringFactor] = frozenset()
    workload: int = 0
    fatigue: float = 0.0

    @property
    def total(self) -> float:
        return round(sum(self.sub_scores[f] for f in ScoringFactor), SCORE_PRECISION)

    @property
    def dominant_factor(self) -> ScoringFactor:
        order = list(ScoringFactor)
        return max(order, key=lambda f: (self.sub_scores[f], -order.index(f)))

    def level(self, factor: ScoringFactor) -> float:
        return self.levels[factor]

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "total": self.total,
            "sub_scores": {f.key: self.sub_scores[f] for f in ScoringFactor},
            "disabled": sorted(f.key for f in self.disabled),
            "workload": self.workload,
            "fatigue": self.fatigue,
        }


def rank_key(breakdown: ScoreBreakdown):
    """Score descending, then lower workload, then employee id."""
    return (-breakdown.total, breakdown.workload, breakdown.employee_id)


class CandidateScorer:
    """Scores eligible candidates. Callers filter hard constraints first."""

    def __init__(self, rules: RuleSet, options: Optional[GenerationOptions] = None):
        self.rules = rules
        self.options = options or GenerationOptions()
        self.weights = effective_weights(rules)
        disabled = set()
        if not self.options.respect_preferences:
            disabled.add(ScoringFactor.PREFERENCE_ALIGNMENT)
        if not self.options.balance_workload:
            disabled.update({ScoringFactor.FATIGUE_BALANCE, ScoringFactor.RECENT_WORKLOAD})
        self.disabled = frozenset(disabled)

    def score(
        self,
        slot: CoverageRequirement,
        candidate: Employee,
        context: ScoringContext,
    ) -> ScoreBreakdown:
        day, shift = slot.date, slot.shift_type
        reference = context.reference
        reference_level = reference.hierarchy_level if reference is not None else slot.reference_level

        workload = context.workload(candidate.id, day)
        if candidate.tracked_fatigue is not None:
            fatigue = candidate.tracked_fatigue
        else:
            fatigue = fatigue_score(context.state.shifts_of(candidate.id), day, context.lookback_days)

        levels = {
            ScoringFactor.HIERARCHY_MATCH: self._hierarchy_level(candidate, reference_level),
            ScoringFactor.PREFERENCE_ALIGNMENT: self._preference_level(candidate, day, shift),
            ScoringFactor.FATIGUE_BALANCE: self._fatigue_level(fatigue),
            ScoringFactor.EXPERIENCE_MATCH: self._experience_level(candidate, reference),
            ScoringFactor.AVAILABILITY: self._availability_level(candidate, day),
            ScoringFactor.RECENT_WORKLOAD: self._workload_level(workload, context.max_workload(day)),
        }
        for factor in self.disabled:
            levels[factor] = 0.0

        sub_scores = {
            factor: round(levels[factor] * self.weights[factor], SCORE_PRECISION)
            for factor in ScoringFactor
        }
        return ScoreBreakdown(
            employee_id=candidate.id,
            sub_scores=sub_scores,
            levels=levels,
            weights=dict(self.weights),
            disabled=self.disabled,
            workload=workload,
            fatigue=round(fatigue, 3),
        )

    def rank(
        self,
        slot: CoverageRequirement,
        candidates: Iterable[Employee],
        context: ScoringContext,
    ) -> List[ScoreBreakdown]:
        """Score all candidates and sort best first."""
        return sorted((self.score(slot, c, context) for c in candidates), key=rank_key)

    @staticmethod
    def _hierarchy_level(candidate: Employee, reference_level: Optional[int]) -> float:
        if reference_level is None:
            return HIERARCHY_OPEN_SLOT
        distance = abs(candidate.hierarchy_level - reference_level)
        if distance == 0:
            return HIERARCHY_SAME
        if distance == 1:
            return HIERARCHY_ADJACENT
        return 0.0

    @staticmethod
    def _preference_level(candidate: Employee, day: date, shift: ShiftType) -> float:
        preferred = candidate.preferred_shift(day)
        if preferred is None:
            return PREFERENCE_NEUTRAL
        if preferred is shift:
            return PREFERENCE_EXACT
        if preferred is ShiftType.OFF:
            return 0.0
        return PREFERENCE_PARTIAL

    @staticmethod
    def _fatigue_level(fatigue: float) -> float:
        for bound, level in FATIGUE_BANDS:
            if fatigue < bound:
                return level
        return 0.0

    @staticmethod
    def _experience_level(candidate: Employee, reference: Optional[Employee]) -> float:
        if reference is None:
            return EXPERIENCE_NO_REFERENCE
        diff = abs(candidate.experience_years - reference.experience_years)
        for bound, level in EXPERIENCE_BANDS:
            if diff <= bound:
                return level
        return 0.0

    @staticmethod
    def _availability_level(candidate: Employee, day: date) -> float:
        if day.isoweekday() in candidate.avoid_weekdays:
            return AVAILABILITY_AVOIDED_DAY
        return AVAILABILITY_FULL

    @staticmethod
    def _workload_level(workload: int, max_workload: int) -> float:
        if max_workload <= 0:
            return 1.0
        return max(0.0, 1.0 - workload / max_workload)
