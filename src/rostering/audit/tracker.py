"""
Assignment Audit Trail
======================
Append-only record of why each assignment was made.

Records carry the decision reasons, the fairness and pattern context at
commit time, the confidence score and the full scoring breakdown. The
externally-facing read path (``get_employee_assignment_reasons``) strips
algorithm internals before anything leaves the engine.
"""
import hashlib
import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Protocol

from rostering.models.schedule import AssignmentReason, ScheduleAssignment
from rostering.models.shift import ShiftType, parse_date, shift_rank
from rostering.utils.logging_setup import get_logger

logger = get_logger("rostering.audit.tracker")

INTERNAL_DETAIL_KEYS = frozenset({
    "internal_score_calculation",
    "algorithm_parameters",
    "debug_info",
    "effective_weights",
})


def audit_id(schedule_id: str, employee_id: str, day: date, shift: ShiftType) -> str:
    """Deterministic 16-character id for one (schedule, employee, date, shift)."""
    key = json.dumps([schedule_id, employee_id, day.isoformat(), shift.value])
    return hashlib.sha256(key.encode()).hexdigest()[:16]


@dataclass
class AuditRecord:
    """One audited assignment."""
    id: str
    schedule_id: str
    employee_id: str
    date: date
    shift_type: ShiftType
    reasons: List[AssignmentReason] = field(default_factory=list)
    fairness_context: Dict[str, Any] = field(default_factory=dict)
    pattern_context: Dict[str, Any] = field(default_factory=dict)
    confidence_score: float = 0.0
    is_override: bool = False
    scoring_breakdown: Optional[Dict[str, Any]] = None

    @property
    def sort_key(self):
        """Date descending, then shift order, then employee."""
        return (-self.date.toordinal(), shift_rank(self.shift_type), self.employee_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "employee_id": self.employee_id,
            "date": self.date.isoformat(),
            "shift_type": self.shift_type.value,
            "reasons": [r.to_dict() for r in self.reasons],
            "fairness_context": dict(self.fairness_context),
            "pattern_context": dict(self.pattern_context),
            "confidence_score": self.confidence_score,
            "is_override": self.is_override,
            "scoring_breakdown": self.scoring_breakdown,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "AuditRecord":
        return cls(
            id=str(d["id"]),
            schedule_id=str(d["schedule_id"]),
            employee_id=str(d["employee_id"]),
            date=parse_date(d["date"]),
            shift_type=ShiftType.from_string(d["shift_type"]),
            reasons=[AssignmentReason.from_dict(r) for r in d.get("reasons", [])],
            fairness_context=dict(d.get("fairness_context") or {}),
            pattern_context=dict(d.get("pattern_context") or {}),
            confidence_score=float(d.get("confidence_score", 0.0)),
            is_override=bool(d.get("is_override", False)),
            scoring_breakdown=d.get("scoring_breakdown"),
        )


class AuditStore(Protocol):
    def append(self, record: AuditRecord) -> None:
        ...

    def append_many(self, records: List[AuditRecord]) -> None:
        ...

    def discard(self, record_ids: Iterable[str]) -> int:
        ...

    def query(
        self,
        employee_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[AuditRecord]:
        ...


def sanitize_details(details: Dict[str, Any]) -> Dict[str, Any]:
    """Drop internal keys at any depth."""
    clean = {}
    for key, value in details.items():
        if key in INTERNAL_DETAIL_KEYS:
            continue
        clean[key] = sanitize_details(value) if isinstance(value, dict) else value
    return clean


def sanitize_record(record: AuditRecord) -> Dict[str, Any]:
    """Public view of a record: no scoring breakdown, no internal reason details."""
    d = record.to_dict()
    d.pop("scoring_breakdown", None)
    for reason in d["reasons"]:
        reason["details"] = sanitize_details(reason["details"])
    return d


class AssignmentAuditTracker:
    """
    Writes and reads audit records through an ``AuditStore``.

    Usage:
        tracker = AssignmentAuditTracker(SqliteAuditStore(Path("data/audit.db")))
        engine = SchedulingEngine(rules, audit_tracker=tracker)
        ...
        tracker.get_employee_assignment_reasons("e-1", schedule_id="s-1")
    """

    def __init__(self, store: Optional[AuditStore] = None):
        if store is None:
            from .store import InMemoryAuditStore
            store = InMemoryAuditStore()
        self.store = store

    @staticmethod
    def build_record(
        assignment: ScheduleAssignment,
        reasons: Iterable[AssignmentReason],
        fairness_context: Optional[Dict[str, Any]],
        pattern_context: Optional[Dict[str, Any]],
        confidence: float,
        scoring_breakdown: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        """The record for ``assignment``, not yet written anywhere."""
        return AuditRecord(
            id=audit_id(assignment.schedule_id, assignment.employee_id, assignment.date, assignment.shift_type),
            schedule_id=assignment.schedule_id,
            employee_id=assignment.employee_id,
            date=assignment.date,
            shift_type=assignment.shift_type,
            reasons=list(reasons),
            fairness_context=dict(fairness_context or {}),
            pattern_context=dict(pattern_context or {}),
            confidence_score=confidence,
            is_override=assignment.is_override,
            scoring_breakdown=scoring_breakdown,
        )

    def record(
        self,
        assignment: ScheduleAssignment,
        reasons: Iterable[AssignmentReason],
        fairness_context: Optional[Dict[str, Any]],
        pattern_context: Optional[Dict[str, Any]],
        confidence: float,
        scoring_breakdown: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        """
        Append a record for ``assignment``.

        Raises:
            ValueError: a record for the same schedule/employee/date/shift exists
        """
        record = self.build_record(
            assignment, reasons, fairness_context, pattern_context, confidence, scoring_breakdown
        )
        self.store.append(record)
        logger.debug(f"audit {record.id}: {record.employee_id} {record.date.isoformat()} {record.shift_type.value}")
        return record

    def record_many(self, records: List[AuditRecord]) -> None:
        """
        Append a batch built with ``build_record``; all of it is written or none.

        Raises:
            ValueError: any record id already exists
        """
        self.store.append_many(records)
        logger.debug(f"audited {len(records)} assignments")

    def discard(self, records: Iterable[AuditRecord]) -> int:
        """Withdraw a batch whose run did not commit."""
        return self.store.discard(r.id for r in records)

    def query(
        self,
        employee_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
    ) -> List[AuditRecord]:
        """Records matching the filters, most recent date first."""
        start = parse_date(start_date) if start_date is not None else None
        end = parse_date(end_date) if end_date is not None else None
        records = self.store.query(employee_id, schedule_id, start, end)
        return sorted(records, key=lambda r: r.sort_key)

    def get_employee_assignment_reasons(
        self,
        employee_id: str,
        schedule_id: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
    ) -> List[Dict[str, Any]]:
        """Sanitised records for one employee."""
        return [sanitize_record(r) for r in self.query(employee_id, schedule_id, start_date, end_date)]

    @staticmethod
    def summarize(records: Iterable[AuditRecord]) -> Dict[str, Any]:
        """Confidence statistics and reason category counts."""
        records = list(records)
        if not records:
            return {"count": 0, "average_confidence": None, "min_confidence": None,
                    "overrides": 0, "categories": {}, "primary_categories": {}}

        categories: Dict[str, int] = {}
        primary: Dict[str, int] = {}
        for r in records:
            for reason in r.reasons:
                categories[reason.category.value] = categories.get(reason.category.value, 0) + 1
            if r.reasons:
                top = r.reasons[0].category.value
                primary[top] = primary.get(top, 0) + 1

        confidences = [r.confidence_score for r in records]
        return {
            "count": len(records),
            "average_confidence": round(sum(confidences) / len(confidences), 3),
            "min_confidence": min(confidences),
            "overrides": sum(1 for r in records if r.is_override),
            "categories": dict(sorted(categories.items())),
            "primary_categories": dict(sorted(primary.items())),
        }
