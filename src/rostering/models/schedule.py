"""Schedule assignments, decision reasons and run results."""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import pandas as pd

from .coverage import CoverageGap
from .shift import ShiftType, parse_date, shift_rank

if TYPE_CHECKING:
    from rostering.errors import SchedulingError
    from rostering.solver.fairness import FairnessMetrics
    from rostering.solver.patterns import EmployeePatternReport


class ScheduleStatus(str, Enum):
    """Lifecycle of a generation run."""
    PENDING = "pending"
    GENERATING = "generating"
    DRAFT = "draft"
    FAILED = "failed"

    def can_transition(self, target: "ScheduleStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    ScheduleStatus.PENDING: {ScheduleStatus.GENERATING},
    ScheduleStatus.GENERATING: {ScheduleStatus.DRAFT, ScheduleStatus.FAILED},
    ScheduleStatus.DRAFT: set(),
    ScheduleStatus.FAILED: set(),
}


class ReasonCategory(str, Enum):
    PREFERENCE = "preference"
    FAIRNESS = "fairness"
    CONSTRAINT = "constraint"
    PATTERN_SAFETY = "pattern_safety"
    COVERAGE = "coverage"
    OPTIMIZATION = "optimization"


@dataclass
class AssignmentReason:
    """One entry of an assignment's decision trail."""
    category: ReasonCategory
    priority: int  # 1-10, higher first
    score: float   # 0-100
    explanation: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.category = ReasonCategory(self.category)
        if not 1 <= self.priority <= 10:
            raise ValueError(f"priority must be in [1, 10], got {self.priority}")
        if not 0 <= self.score <= 100:
            raise ValueError(f"score must be in [0, 100], got {self.score}")

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "priority": self.priority,
            "score": self.score,
            "explanation": self.explanation,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "AssignmentReason":
        return cls(
            category=d["category"],
            priority=int(d["priority"]),
            score=float(d["score"]),
            explanation=str(d.get("explanation", "")),
            details=dict(d.get("details") or {}),
        )


def sort_reasons(reasons: List[AssignmentReason]) -> List[AssignmentReason]:
    """Priority descending; stable for equal priorities."""
    return sorted(reasons, key=lambda r: -r.priority)


@dataclass
class ScheduleAssignment:
    """The solver's output unit: one employee on one shift."""
    schedule_id: str
    employee_id: str
    date: date
    shift_type: ShiftType
    reasons: List[AssignmentReason] = field(default_factory=list)
    confidence_score: float = 1.0
    score: float = 0.0
    is_override: bool = False

    def __post_init__(self):
        self.date = parse_date(self.date)
        self.shift_type = ShiftType.from_string(self.shift_type)

    @property
    def reason(self) -> Optional[AssignmentReason]:
        """Highest-priority reason."""
        return self.reasons[0] if self.reasons else None

    @property
    def sort_key(self):
        return (self.date, shift_rank(self.shift_type), self.employee_id)

    def to_dict(self) -> dict:
        return {
            "schedule_id": self.schedule_id,
            "employee_id": self.employee_id,
            "date": self.date.isoformat(),
            "shift_type": self.shift_type.value,
            "confidence_score": self.confidence_score,
            "score": self.score,
            "is_override": self.is_override,
            "reasons": [r.to_dict() for r in self.reasons],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ScheduleAssignment":
        return cls(
            schedule_id=str(d.get("schedule_id", "")),
            employee_id=str(d["employee_id"]),
            date=d["date"],
            shift_type=d["shift_type"],
            reasons=[AssignmentReason.from_dict(r) for r in d.get("reasons", [])],
            confidence_score=float(d.get("confidence_score", 1.0)),
            score=float(d.get("score", 0.0)),
            is_override=bool(d.get("is_override", False)),
        )


@dataclass
class SlotResult:
    """Per-slot coverage accounting."""
    date: date
    shift_type: ShiftType
    required_count: int
    employee_ids: List[str] = field(default_factory=list)

    @property
    def actual_filled(self) -> int:
        return len(self.employee_ids)

    @property
    def gap_count(self) -> int:
        return self.required_count - self.actual_filled

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "shift_type": self.shift_type.value,
            "required_count": self.required_count,
            "actual_filled": self.actual_filled,
            "gap_count": self.gap_count,
            "employee_ids": list(self.employee_ids),
        }


@dataclass
class ErrorDetail:
    """Serializable description of why a run failed."""
    kind: str
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "detail": dict(self.detail)}


@dataclass
class GenerationResult:
    """Outcome of one generation run."""
    schedule_id: str
    tenant_id: str
    status: ScheduleStatus = ScheduleStatus.PENDING
    assignments: List[ScheduleAssignment] = field(default_factory=list)
    partial_assignments: List[ScheduleAssignment] = field(default_factory=list)
    slots: List[SlotResult] = field(default_factory=list)
    coverage_gaps: List[CoverageGap] = field(default_factory=list)
    coverage_rate: float = 0.0
    fairness_metrics: Optional["FairnessMetrics"] = None
    pattern_analysis: Dict[str, "EmployeePatternReport"] = field(default_factory=dict)
    generation_time_ms: int = 0
    error: Optional[ErrorDetail] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    exception: Optional["SchedulingError"] = field(default=None, repr=False, compare=False)

    @property
    def success(self) -> bool:
        return self.status == ScheduleStatus.DRAFT

    @property
    def total_required(self) -> int:
        return sum(s.required_count for s in self.slots)

    @property
    def total_filled(self) -> int:
        return sum(s.actual_filled for s in self.slots)

    def raise_for_error(self) -> None:
        """Re-raise the captured error of a failed run."""
        if self.exception is not None:
            raise self.exception

    def for_employee(self, employee_id: str) -> List[ScheduleAssignment]:
        return [a for a in self.assignments if a.employee_id == employee_id]

    def to_dataframe(self) -> pd.DataFrame:
        """Assignments (or partial ones on failure) as a DataFrame."""
        rows = [
            {
                "date": a.date,
                "shift_type": a.shift_type.value,
                "employee_id": a.employee_id,
                "score": a.score,
                "confidence_score": a.confidence_score,
                "is_override": a.is_override,
                "primary_reason": a.reason.category.value if a.reason else None,
            }
            for a in (self.assignments or self.partial_assignments)
        ]
        columns = ["date", "shift_type", "employee_id", "score", "confidence_score", "is_override", "primary_reason"]
        return pd.DataFrame(rows, columns=columns)

    def to_roster_frame(self) -> pd.DataFrame:
        """Employee × date grid of shift codes ('' where unassigned)."""
        df = self.to_dataframe()
        if df.empty:
            return pd.DataFrame()
        df["code"] = df["shift_type"].map(lambda s: ShiftType(s).code)
        return df.pivot(index="employee_id", columns="date", values="code").fillna("")

    def to_dict(self) -> dict:
        return {
            "schedule_id": self.schedule_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "success": self.success,
            "assignments": [a.to_dict() for a in self.assignments],
            "partial_assignments": [a.to_dict() for a in self.partial_assignments],
            "coverage_rate": self.coverage_rate,
            "coverage_gaps": [g.to_dict() for g in self.coverage_gaps],
            "slots": [s.to_dict() for s in self.slots],
            "fairness_metrics": self.fairness_metrics.to_dict() if self.fairness_metrics else None,
            "pattern_analysis": {k: v.to_dict() for k, v in self.pattern_analysis.items()},
            "generation_time_ms": self.generation_time_ms,
            "error": self.error.to_dict() if self.error else None,
            "stats": dict(self.stats),
        }
