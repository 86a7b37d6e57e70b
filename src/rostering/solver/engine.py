"""
Scheduling Engine
=================
Greedy, deterministic slot-filling solver.

Run lifecycle: pending → generating → draft | failed.

Per run:
    1. validate rules, date range and coverage
    2. scope the roster (active employees, optional team filter)
    3. fill slots in (date, day/evening/night) order, one position at a time:
       filter by hard constraints against the in-progress roster, score the
       survivors, take the best (score, then lower workload, then id)
    4. record a coverage gap when nobody is eligible
    5. post-pass: pattern safety and fairness over the final roster
    6. build reasons and confidence, then commit to the sinks

The engine owns nothing between runs: all mutable state lives in a ``_Run``
created per call.
"""
import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from rostering.errors import (
    ConfigValidation,
    ConstraintContradiction,
    GenerationError,
    InvalidRange,
    NoEligibleEmployees,
    SchedulingError,
)
from rostering.models.coverage import CoverageGap, CoverageRequirement, expand_slots
from rostering.models.employee import Employee
from rostering.models.rules import GenerationOptions, RuleSet
from rostering.models.schedule import (
    AssignmentReason,
    ErrorDetail,
    GenerationResult,
    ReasonCategory,
    ScheduleAssignment,
    ScheduleStatus,
    SlotResult,
    sort_reasons,
)
from rostering.models.shift import parse_date
from rostering.models.validated import validate_rules
from rostering.utils.logging_setup import SolverLogger, get_logger, log_constraint
from rostering.utils.structured_logging import get_structured_logger, run_context

from .base import CancellationToken, RunBudget, RunControl
from .constraints import RELAXABLE, SAFETY_CODES, HardConstraints, RosterState
from .fairness import FairnessEngine, FairnessMetrics, fairness_context
from .patterns import EmployeePatternReport, PatternSafetyAnalyzer, consecutive_counts
from .scoring import CandidateScorer, ScoreBreakdown, ScoringContext, ScoringFactor

logger = get_logger("rostering.solver.engine")
slog = SolverLogger("rostering.solver.engine")
events = get_structured_logger("rostering.solver.engine")

ENGINE_VERSION = "1.0"
MAX_RANGE_DAYS = 90

# Reason priorities (higher first)
PRIORITY_CONSTRAINT = 10
PRIORITY_PATTERN_SAFETY = 9
PRIORITY_PREFERENCE = 8
PRIORITY_COVERAGE = 7
PRIORITY_FAIRNESS = 6
PRIORITY_OPTIMIZATION = 5

FAIRNESS_REASON_LEVEL = 0.75
CONFIDENCE_MARGIN_SPAN = 0.2
CONFIDENCE_FLOOR = 0.1
OVERRIDE_CONFIDENCE_CAP = 0.3


class AssignmentSink(Protocol):
    """Insert-only store for committed assignments."""

    def save(
        self,
        schedule_id: str,
        tenant_id: str,
        assignments: List[ScheduleAssignment],
        stats: Dict[str, Any],
    ) -> None:
        ...


class AuditRecorder(Protocol):
    """Batch audit writer (see ``AssignmentAuditTracker``)."""

    def build_record(self, assignment, reasons, fairness_context, pattern_context, confidence, **kwargs) -> Any:
        ...

    def record_many(self, records: List[Any]) -> None:
        ...

    def discard(self, records: List[Any]) -> int:
        ...


@dataclass
class _Decision:
    """Why one position went to one employee."""
    requirement: CoverageRequirement
    position: int
    breakdown: ScoreBreakdown
    runner_up: Optional[float]
    eligible: int
    excluded: Dict[str, List[str]]
    is_override: bool = False


@dataclass
class _Run:
    """Mutable accumulator owned by a single run."""
    schedule_id: str
    state: RosterState
    roster: List[Employee]
    decisions: List[_Decision] = field(default_factory=list)
    slots: List[SlotResult] = field(default_factory=list)
    gaps: List[CoverageGap] = field(default_factory=list)


def validate_range(start: date, end: date, max_days: int = MAX_RANGE_DAYS) -> None:
    """
    Raises:
        InvalidRange: start is not before end, or the span exceeds ``max_days``
    """
    detail = {"start": start.isoformat(), "end": end.isoformat(), "max_days": max_days}
    if start >= end:
        raise InvalidRange("start_date must be before end_date", detail=detail)
    if (end - start).days > max_days:
        raise InvalidRange(f"Date range exceeds {max_days} days", detail=detail)


def scope_roster(employees: Sequence[Employee], options: GenerationOptions) -> List[Employee]:
    """Active, in-scope employees sorted by id."""
    seen = set()
    for emp in employees:
        if emp.id in seen:
            raise ConfigValidation("Duplicate employee id", detail={"employee_id": emp.id})
        seen.add(emp.id)
    roster = [e for e in employees if e.is_active and options.in_scope(e.team_id)]
    return sorted(roster, key=lambda e: e.id)


def coverage_rate(slots: Sequence[SlotResult]) -> float:
    required = sum(s.required_count for s in slots)
    if required == 0:
        return 1.0
    return round(sum(s.actual_filled for s in slots) / required, 6)


def confidence_score(breakdown: ScoreBreakdown, runner_up: Optional[float], is_override: bool) -> float:
    """Blend of the winning score and its margin over the runner-up."""
    if runner_up is None:
        margin_factor = 1.0
    else:
        margin_factor = min(1.0, max(0.0, (breakdown.total - runner_up) / CONFIDENCE_MARGIN_SPAN))
    confidence = 0.6 * breakdown.total + 0.4 * margin_factor
    confidence = min(1.0, max(CONFIDENCE_FLOOR, confidence))
    if is_override:
        confidence = min(confidence, OVERRIDE_CONFIDENCE_CAP)
    return round(confidence, 3)


def build_reasons(decision: _Decision, rules: RuleSet) -> List[AssignmentReason]:
    """Decision trail for one assignment, highest priority first."""
    req, bd = decision.requirement, decision.breakdown
    total = bd.total
    reasons = [
        AssignmentReason(
            category=ReasonCategory.COVERAGE,
            priority=PRIORITY_COVERAGE,
            score=round(100.0 * (decision.position + 1) / req.required_count, 1),
            explanation=(
                f"Fills position {decision.position + 1} of {req.required_count} "
                f"for the {req.shift_type.value} shift on {req.date.isoformat()}"
            ),
            details={
                "position": decision.position + 1,
                "required_count": req.required_count,
                "eligible_candidates": decision.eligible,
            },
        )
    ]

    pref = ScoringFactor.PREFERENCE_ALIGNMENT
    if pref not in bd.disabled and bd.level(pref) >= 1.0:
        reasons.append(AssignmentReason(
            category=ReasonCategory.PREFERENCE,
            priority=PRIORITY_PREFERENCE,
            score=100.0,
            explanation=f"Matches the employee's preferred {req.shift_type.value} shift",
            details={"preferred_shift": req.shift_type.value},
        ))

    workload = ScoringFactor.RECENT_WORKLOAD
    if workload not in bd.disabled and bd.level(workload) >= FAIRNESS_REASON_LEVEL:
        reasons.append(AssignmentReason(
            category=ReasonCategory.FAIRNESS,
            priority=PRIORITY_FAIRNESS,
            score=round(bd.level(workload) * 100, 1),
            explanation=(
                f"Among the least-loaded candidates ({bd.workload} shifts within "
                f"{rules.lookback_days} days)"
            ),
            details={"recent_shifts": bd.workload},
        ))

    safety_excluded = {
        code: len(ids) for code, ids in sorted(decision.excluded.items()) if code in SAFETY_CODES
    }
    if safety_excluded and not decision.is_override:
        count = sum(safety_excluded.values())
        reasons.append(AssignmentReason(
            category=ReasonCategory.PATTERN_SAFETY,
            priority=PRIORITY_PATTERN_SAFETY,
            score=round(bd.level(ScoringFactor.FATIGUE_BALANCE) * 100, 1),
            explanation=f"{count} other candidate(s) excluded by rest or pattern rules",
            details={"excluded": safety_excluded},
        ))

    if decision.is_override:
        relaxed = sorted(code for code in decision.excluded if code in RELAXABLE)
        reasons.append(AssignmentReason(
            category=ReasonCategory.CONSTRAINT,
            priority=PRIORITY_CONSTRAINT,
            score=round(total * 100, 1),
            explanation="Emergency override: no candidate satisfied every hard constraint",
            details={"relaxed_constraints": relaxed},
        ))

    dominant = bd.dominant_factor
    margin = None if decision.runner_up is None else round(total - decision.runner_up, 6)
    reasons.append(AssignmentReason(
        category=ReasonCategory.OPTIMIZATION,
        priority=PRIORITY_OPTIMIZATION,
        score=round(total * 100, 1),
        explanation=f"Best score {total:.3f} among {decision.eligible} candidate(s); led by {dominant.key}",
        details={
            "dominant_factor": dominant.key,
            "runner_up_margin": margin,
            "internal_score_calculation": {f.key: bd.sub_scores[f] for f in ScoringFactor},
            "algorithm_parameters": {
                "effective_weights": {f.key: round(bd.weights[f], 6) for f in ScoringFactor},
                "lookback_days": rules.lookback_days,
            },
        },
    ))
    return sort_reasons(reasons)


class SchedulingEngine:
    """
    Orchestrates a generation run.

    Usage:
        engine = SchedulingEngine(rules, audit_tracker=tracker, assignment_sink=store)
        result = engine.generate_schedule("s-1", "t-1", start, end, employees, coverage)
        if not result.success:
            result.raise_for_error()
    """

    def __init__(
        self,
        rules: Optional[RuleSet] = None,
        audit_tracker: Optional[AuditRecorder] = None,
        assignment_sink: Optional[AssignmentSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rules = rules or RuleSet()
        self.audit_tracker = audit_tracker
        self.assignment_sink = assignment_sink
        self.clock = clock

    def generate_schedule(
        self,
        schedule_id: str,
        tenant_id: str,
        start_date: Any,
        end_date: Any,
        employees: Sequence[Employee],
        coverage_requirements: Sequence[CoverageRequirement],
        options: Optional[GenerationOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
        rules: Optional[RuleSet] = None,
    ) -> GenerationResult:
        """
        Generate a schedule for ``[start_date, end_date]``.

        Never raises scheduling errors: failures come back as a result with
        ``status=failed``, the error detail and whatever was built so far in
        ``partial_assignments``/``coverage_gaps``.
        """
        rules = rules or self.rules
        options = options or GenerationOptions()
        budget = RunBudget(options.deadline_seconds, self.clock)
        control = RunControl(budget, cancel_token)
        result = GenerationResult(schedule_id=schedule_id, tenant_id=tenant_id)
        run: Optional[_Run] = None

        control.transition(ScheduleStatus.GENERATING)
        result.status = control.status
        slog.phase(f"Generating schedule {schedule_id}")
        with run_context(schedule_id, tenant_id):
            try:
                start, end = parse_date(start_date), parse_date(end_date)
                validate_rules(rules)
                validate_range(start, end)
                requirements = expand_slots(coverage_requirements, start, end)
                roster = scope_roster(employees, options)
                if not roster:
                    raise NoEligibleEmployees(
                        "No active employees in scope",
                        detail={"employees_supplied": len(employees), "team_ids": options.team_ids},
                    )

                run = _Run(schedule_id=schedule_id, state=RosterState(roster), roster=roster)
                events.info(
                    "generation_started",
                    slots=len(requirements),
                    employees=len(roster),
                    start=start.isoformat(),
                    end=end.isoformat(),
                )
                self._fill(run, requirements, rules, options, control)

                slog.step("Post-pass analysis")
                assignments = self._assignments(run, rules)
                patterns, fairness = self._post_pass(assignments, roster, rules, end, options)
                log_constraint(
                    logger,
                    "target_gini",
                    fairness.meets_target,
                    f"gini={fairness.overall_gini:.3f} target={fairness.target_gini:.3f}",
                    level=logging.INFO,
                )

                result.assignments = assignments
                result.slots = run.slots
                result.coverage_gaps = run.gaps
                result.coverage_rate = coverage_rate(run.slots)
                result.pattern_analysis = patterns
                result.fairness_metrics = fairness
                result.stats = self._stats(run, assignments, fairness, patterns)

                self._commit(run, result, tenant_id)
                control.transition(ScheduleStatus.DRAFT)
                result.status = control.status
                events.info(
                    "generation_finished",
                    assignments=len(assignments),
                    gaps=len(run.gaps),
                    coverage_rate=result.coverage_rate,
                    fairness_score=fairness.fairness_score,
                )
            except SchedulingError as e:
                self._fail(result, control, run, rules, e)
            except Exception as e:
                logger.exception(f"Unexpected error during generation of {schedule_id}")
                wrapped = GenerationError(
                    f"Unexpected error: {type(e).__name__}: {e}",
                    detail={"cause": type(e).__name__},
                )
                wrapped.__cause__ = e
                self._fail(result, control, run, rules, wrapped)

        result.generation_time_ms = int(budget.elapsed * 1000)
        slog.step(
            f"{result.status.value}: {len(result.assignments)} assignments, "
            f"{len(result.coverage_gaps)} gaps in {result.generation_time_ms} ms"
        )
        return result

    # ------------------------------------------------------------------
    # Slot loop
    # ------------------------------------------------------------------

    def _fill(
        self,
        run: _Run,
        requirements: List[CoverageRequirement],
        rules: RuleSet,
        options: GenerationOptions,
        control: RunControl,
    ) -> None:
        constraints = HardConstraints(rules, options)
        scorer = CandidateScorer(rules, options)
        total_positions = sum(r.required_count for r in requirements)
        position = 0

        for req in requirements:
            slot = SlotResult(date=req.date, shift_type=req.shift_type, required_count=req.required_count)
            run.slots.append(slot)
            with slog.slot(slot):
                for k in range(req.required_count):
                    control.checkpoint(position, total_positions)
                    decision, excluded = self._fill_position(run, req, k, rules, constraints, scorer)
                    position += 1
                    slog.exclusions(excluded)
                    if decision is None:
                        self._record_gap(run, req, slot, excluded, rules)
                        position += req.required_count - k - 1
                        break
                    slot.employee_ids.append(decision.breakdown.employee_id)

    def _fill_position(
        self,
        run: _Run,
        req: CoverageRequirement,
        position: int,
        rules: RuleSet,
        constraints: HardConstraints,
        scorer: CandidateScorer,
    ) -> Tuple[Optional[_Decision], Dict[str, List[str]]]:
        eligible: List[Employee] = []
        excluded: Dict[str, List[str]] = {}
        for emp in run.roster:
            code = constraints.check(run.state, emp, req.date, req.shift_type, req)
            if code is None:
                eligible.append(emp)
            else:
                excluded.setdefault(code, []).append(emp.id)

        is_override = False
        if not eligible and rules.emergency_override_enabled:
            relaxable = {emp_id for code, ids in excluded.items() if code in RELAXABLE for emp_id in ids}
            eligible = [
                emp for emp in run.roster
                if emp.id in relaxable
                and constraints.check(run.state, emp, req.date, req.shift_type, req, relaxed=True) is None
            ]
            is_override = bool(eligible)

        if not eligible:
            return None, excluded

        context = ScoringContext(state=run.state, roster=run.roster, lookback_days=rules.lookback_days)
        ranked = scorer.rank(req, eligible, context)
        best = ranked[0]
        runner_up = ranked[1].total if len(ranked) > 1 else None
        run.state.add(best.employee_id, req.date, req.shift_type)

        decision = _Decision(
            requirement=req,
            position=position,
            breakdown=best,
            runner_up=runner_up,
            eligible=len(eligible),
            excluded=excluded,
            is_override=is_override,
        )
        run.decisions.append(decision)
        slog.candidate(best.employee_id, best.total, len(eligible), is_override)
        if is_override:
            logger.warning(
                f"Emergency override on {req.date.isoformat()} {req.shift_type.value}: {best.employee_id}"
            )
        return decision, excluded

    def _record_gap(
        self,
        run: _Run,
        req: CoverageRequirement,
        slot: SlotResult,
        excluded: Dict[str, List[str]],
        rules: RuleSet,
    ) -> None:
        gap = CoverageGap(
            date=req.date,
            shift_type=req.shift_type,
            required_count=req.required_count,
            actual_filled=slot.actual_filled,
            considered=[e.id for e in run.roster],
            excluded={code: sorted(ids) for code, ids in sorted(excluded.items())},
        )
        if not rules.allow_partial_solutions:
            raise ConstraintContradiction(
                f"No eligible candidate for {req.shift_type.value} on {req.date.isoformat()}",
                detail=gap.to_dict(),
            )
        run.gaps.append(gap)
        logger.warning(
            f"Coverage gap {req.date.isoformat()} {req.shift_type.value}: "
            f"{gap.actual_filled}/{gap.required_count} filled"
        )

    # ------------------------------------------------------------------
    # Post-pass and results
    # ------------------------------------------------------------------

    @staticmethod
    def _assignments(run: _Run, rules: RuleSet) -> List[ScheduleAssignment]:
        assignments = []
        for d in run.decisions:
            assignments.append(ScheduleAssignment(
                schedule_id=run.schedule_id,
                employee_id=d.breakdown.employee_id,
                date=d.requirement.date,
                shift_type=d.requirement.shift_type,
                reasons=build_reasons(d, rules),
                confidence_score=confidence_score(d.breakdown, d.runner_up, d.is_override),
                score=d.breakdown.total,
                is_override=d.is_override,
            ))
        return sorted(assignments, key=lambda a: a.sort_key)

    @staticmethod
    def _post_pass(
        assignments: List[ScheduleAssignment],
        roster: List[Employee],
        rules: RuleSet,
        end: date,
        options: GenerationOptions,
    ) -> Tuple[Dict[str, EmployeePatternReport], FairnessMetrics]:
        analyzer = PatternSafetyAnalyzer(rules)
        fairness = FairnessEngine(rules)
        if options.parallel_analysis:
            with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
                pattern_future = executor.submit(analyzer.analyze_schedule, assignments, roster, end)
                fairness_future = executor.submit(fairness.evaluate, assignments, roster)
                return pattern_future.result(), fairness_future.result()
        return analyzer.analyze_schedule(assignments, roster, end), fairness.evaluate(assignments, roster)

    @staticmethod
    def _stats(
        run: _Run,
        assignments: List[ScheduleAssignment],
        fairness: FairnessMetrics,
        patterns: Dict[str, EmployeePatternReport],
    ) -> Dict[str, Any]:
        total_required = sum(s.required_count for s in run.slots)
        total_filled = sum(s.actual_filled for s in run.slots)
        confidences = [a.confidence_score for a in assignments]
        return {
            "engine_version": ENGINE_VERSION,
            "slots": len(run.slots),
            "employees_in_scope": len(run.roster),
            "total_required": total_required,
            "total_filled": total_filled,
            "total_gaps": total_required - total_filled,
            "overrides": sum(1 for a in assignments if a.is_override),
            "average_confidence": round(sum(confidences) / len(confidences), 3) if confidences else None,
            "fairness_score": fairness.fairness_score,
            "overall_gini": fairness.overall_gini,
            "high_risk_employees": sorted(
                emp_id for emp_id, r in patterns.items() if r.risk_level in ("high", "critical")
            ),
        }

    def _commit(self, run: _Run, result: GenerationResult, tenant_id: str) -> None:
        """
        Persist the audit trail, then the assignments. Only reached on success.

        Every audit record is built before anything is written. The batch goes
        in whole or not at all; if the sink then refuses the schedule, the batch
        is withdrawn so a failed run leaves neither store holding any of it.
        """
        records = self._audit_records(run, result) if self.audit_tracker is not None else []
        if records:
            self.audit_tracker.record_many(records)
        if self.assignment_sink is None:
            return
        try:
            self.assignment_sink.save(result.schedule_id, tenant_id, result.assignments, result.stats)
        except Exception:
            if records:
                removed = self.audit_tracker.discard(records)
                logger.warning(f"Withdrew {removed} audit records for {result.schedule_id} after sink failure")
            raise

    def _audit_records(self, run: _Run, result: GenerationResult) -> List[Any]:
        breakdowns = {
            (d.breakdown.employee_id, d.requirement.date): d.breakdown for d in run.decisions
        }
        records = []
        for a in result.assignments:
            report = result.pattern_analysis.get(a.employee_id)
            days, nights = consecutive_counts(run.state.shifts_of(a.employee_id), a.date)
            pattern_ctx = {
                "consecutive_days": days,
                "consecutive_nights": nights,
                "safety_score": report.safety_score if report else 100.0,
                "risks": [r.risk_type for r in report.risks if r.covers(a.date)] if report else [],
            }
            records.append(self.audit_tracker.build_record(
                a,
                a.reasons,
                fairness_context(result.fairness_metrics, a.employee_id),
                pattern_ctx,
                a.confidence_score,
                scoring_breakdown=breakdowns[(a.employee_id, a.date)].to_dict(),
            ))
        return records

    def _fail(
        self,
        result: GenerationResult,
        control: RunControl,
        run: Optional[_Run],
        rules: RuleSet,
        error: SchedulingError,
    ) -> None:
        control.transition(ScheduleStatus.FAILED)
        result.status = control.status
        result.assignments = []
        if run is not None:
            result.partial_assignments = self._assignments(run, rules)
            result.slots = run.slots
            result.coverage_gaps = run.gaps
            result.coverage_rate = coverage_rate(run.slots)
        error.partial = result.partial_assignments
        result.error = ErrorDetail(kind=error.kind, message=error.message, detail=error.detail)
        result.exception = error
        logger.error(f"Generation {result.schedule_id} failed: {error.kind}: {error.message}")
        events.error("generation_failed", kind=error.kind, partial=len(result.partial_assignments))
