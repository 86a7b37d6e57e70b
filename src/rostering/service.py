"""
Schedule Service
================
Calling layer around the engine: loads a tenant snapshot once per request,
runs generation, persists through the configured sinks and exposes the audit
and recommendation read paths.

Usage:
    source = StaticRosterSource(employees, coverage, rules)
    service = ScheduleService(source, audit_tracker=AssignmentAuditTracker())
    result = service.generate(ScheduleRequest("s-1", "t-1", "2024-03-04", "2024-03-10"))
"""
import concurrent.futures
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from rostering.audit.tracker import AssignmentAuditTracker
from rostering.errors import GenerationError, SchedulingError
from rostering.models.coverage import CoverageRequirement
from rostering.models.employee import Employee
from rostering.models.rules import GenerationOptions, RuleSet
from rostering.models.schedule import ErrorDetail, GenerationResult, ScheduleAssignment, ScheduleStatus
from rostering.models.shift import parse_date
from rostering.solver.base import CancellationToken
from rostering.solver.engine import SchedulingEngine
from rostering.solver.recommend import RankedCandidate, recommend_candidates
from rostering.utils.logging_setup import get_logger

logger = get_logger("rostering.service")

DEFAULT_MAX_WORKERS = 4


@dataclass
class ScheduleRequest:
    """One generation request."""
    schedule_id: str
    tenant_id: str
    start_date: Any
    end_date: Any
    options: GenerationOptions = field(default_factory=GenerationOptions)

    def __post_init__(self):
        self.start_date = parse_date(self.start_date)
        self.end_date = parse_date(self.end_date)


class RosterSource(Protocol):
    """Read-only access to a tenant's employees, coverage and rules."""

    def load_employees(self, tenant_id: str) -> List[Employee]:
        ...

    def load_coverage(self, tenant_id: str, start_date: date, end_date: date) -> List[CoverageRequirement]:
        ...

    def load_rules(self, tenant_id: str) -> RuleSet:
        ...


class StaticRosterSource:
    """Serves the same snapshot to every tenant; for the CLI and tests."""

    def __init__(
        self,
        employees: Sequence[Employee],
        coverage: Sequence[CoverageRequirement],
        rules: Optional[RuleSet] = None,
    ):
        self.employees = list(employees)
        self.coverage = list(coverage)
        self.rules = rules or RuleSet()

    def load_employees(self, tenant_id: str) -> List[Employee]:
        return list(self.employees)

    def load_coverage(self, tenant_id: str, start_date: date, end_date: date) -> List[CoverageRequirement]:
        return [c for c in self.coverage if start_date <= c.date <= end_date]

    def load_rules(self, tenant_id: str) -> RuleSet:
        return self.rules


class InMemoryAssignmentStore:
    """Insert-only assignment sink keyed by schedule id."""

    def __init__(self):
        self._schedules: Dict[str, Tuple[str, List[ScheduleAssignment], Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def save(
        self,
        schedule_id: str,
        tenant_id: str,
        assignments: List[ScheduleAssignment],
        stats: Dict[str, Any],
    ) -> None:
        with self._lock:
            if schedule_id in self._schedules:
                raise ValueError(f"Schedule {schedule_id} already stored")
            self._schedules[schedule_id] = (tenant_id, list(assignments), dict(stats))
        logger.debug(f"Stored {len(assignments)} assignments for {schedule_id}")

    def get(self, schedule_id: str) -> List[ScheduleAssignment]:
        with self._lock:
            if schedule_id not in self._schedules:
                raise KeyError(schedule_id)
            return list(self._schedules[schedule_id][1])

    def stats(self, schedule_id: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._schedules[schedule_id][2])

    def tenant_of(self, schedule_id: str) -> str:
        with self._lock:
            return self._schedules[schedule_id][0]

    def __contains__(self, schedule_id: str) -> bool:
        with self._lock:
            return schedule_id in self._schedules


def failed_result(schedule_id: str, tenant_id: str, error: SchedulingError) -> GenerationResult:
    """A failed result for errors raised before the engine ran."""
    return GenerationResult(
        schedule_id=schedule_id,
        tenant_id=tenant_id,
        status=ScheduleStatus.FAILED,
        error=ErrorDetail(kind=error.kind, message=error.message, detail=error.detail),
        exception=error,
    )


class ScheduleService:
    """Loads snapshots, runs the engine and serves read paths."""

    def __init__(
        self,
        source: RosterSource,
        engine: Optional[SchedulingEngine] = None,
        assignment_store: Optional[InMemoryAssignmentStore] = None,
        audit_tracker: Optional[AssignmentAuditTracker] = None,
    ):
        self.source = source
        self.assignment_store = assignment_store if assignment_store is not None else InMemoryAssignmentStore()
        self.audit_tracker = audit_tracker
        self.engine = engine or SchedulingEngine(
            audit_tracker=audit_tracker,
            assignment_sink=self.assignment_store,
        )

    def _snapshot(self, request: ScheduleRequest) -> Tuple[List[Employee], List[CoverageRequirement], RuleSet]:
        try:
            employees = self.source.load_employees(request.tenant_id)
            coverage = self.source.load_coverage(request.tenant_id, request.start_date, request.end_date)
            rules = self.source.load_rules(request.tenant_id)
        except SchedulingError:
            raise
        except Exception as e:
            raise GenerationError(
                f"Failed to load snapshot for tenant {request.tenant_id}: {e}",
                detail={"tenant_id": request.tenant_id, "cause": type(e).__name__},
            ) from e
        return employees, coverage, rules

    def generate(
        self,
        request: ScheduleRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> GenerationResult:
        """Run one request. Loader failures come back as a failed result."""
        try:
            employees, coverage, rules = self._snapshot(request)
        except SchedulingError as e:
            logger.error(f"{request.schedule_id}: {e.kind}: {e.message}")
            return failed_result(request.schedule_id, request.tenant_id, e)

        return self.engine.generate_schedule(
            request.schedule_id,
            request.tenant_id,
            request.start_date,
            request.end_date,
            employees,
            coverage,
            options=request.options,
            cancel_token=cancel_token,
            rules=rules,
        )

    def generate_many(
        self,
        requests: Sequence[ScheduleRequest],
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> List[GenerationResult]:
        """Run independent requests concurrently; results follow request order."""
        if not requests:
            return []
        workers = max(1, min(max_workers, len(requests)))
        logger.info(f"Generating {len(requests)} schedules with {workers} workers")
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.generate, requests))

    def get_employee_assignment_reasons(
        self,
        employee_id: str,
        schedule_id: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
    ) -> List[Dict[str, Any]]:
        if self.audit_tracker is None:
            raise ValueError("No audit tracker configured")
        return self.audit_tracker.get_employee_assignment_reasons(employee_id, schedule_id, start_date, end_date)

    def recommend_candidates(
        self,
        schedule_id: str,
        date: Any,
        shift_type: Any,
        top_n: int = 10,
        current_employee_id: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
    ) -> List[RankedCandidate]:
        """
        Replacement candidates for a slot of a stored schedule.

        Raises:
            KeyError: unknown schedule id
        """
        assignments = self.assignment_store.get(schedule_id)
        tenant_id = self.assignment_store.tenant_of(schedule_id)
        return recommend_candidates(
            assignments,
            self.source.load_employees(tenant_id),
            self.source.load_rules(tenant_id),
            date,
            shift_type,
            top_n=top_n,
            current_employee_id=current_employee_id,
            options=options,
        )
