"""Tests for the scheduling engine."""
import logging
from datetime import timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import MONDAY, FakeClock, day, history, req
from rostering.audit.store import InMemoryAuditStore, SqliteAuditStore
from rostering.audit.tracker import AssignmentAuditTracker
from rostering.errors import ConstraintContradiction, GenerationTimeout, InvalidRange
from rostering.models.employee import Employee
from rostering.models.rules import GenerationOptions, RuleSet
from rostering.models.schedule import ReasonCategory, ScheduleStatus
from rostering.models.shift import rest_hours_between
from rostering.service import InMemoryAssignmentStore
from rostering.solver.base import CancellationToken
from rostering.solver.engine import SchedulingEngine, confidence_score, coverage_rate, validate_range
from rostering.solver.patterns import consecutive_counts
from rostering.solver.scoring import ScoreBreakdown, ScoringFactor

SHIFTS = ("day", "evening", "night")


def run(employees, coverage, end=1, rules=None, options=None, engine=None, **kwargs):
    engine = engine or SchedulingEngine(rules, clock=FakeClock(step=0))
    return engine.generate_schedule("s1", "t1", MONDAY, day(end), employees, coverage, options=options, **kwargs)


def rested_pair():
    """e1 is free; e2 and e3 work a day shift on d1, so a night on d0 breaks their rest."""
    return [
        Employee(id="e1"),
        Employee(id="e2", history=history((1, "day"))),
        Employee(id="e3", history=history((1, "day"))),
    ]


class FailingSink:
    def save(self, schedule_id, tenant_id, assignments, stats):
        raise RuntimeError("disk full")


class FailingAuditStore(InMemoryAuditStore):
    def append_many(self, records):
        raise OSError("audit volume full")


def breakdown(total):
    sub = {f: 0.0 for f in ScoringFactor}
    sub[ScoringFactor.HIERARCHY_MATCH] = total
    return ScoreBreakdown("e1", sub, dict(sub), dict(sub))


class TestHelpers:

    def test_validate_range(self):
        validate_range(day(0), day(1))
        with pytest.raises(InvalidRange):
            validate_range(day(0), day(0))
        with pytest.raises(InvalidRange):
            validate_range(day(1), day(0))

    def test_validate_range_limit(self):
        validate_range(day(0), day(90))
        with pytest.raises(InvalidRange) as exc:
            validate_range(day(0), day(91))
        assert exc.value.detail["max_days"] == 90
        validate_range(day(0), day(7), max_days=7)
        with pytest.raises(InvalidRange):
            validate_range(day(0), day(8), max_days=7)

    def test_coverage_rate(self):
        assert coverage_rate([]) == 1.0

    def test_confidence_blends_score_and_margin(self):
        assert confidence_score(breakdown(0.8), None, False) == pytest.approx(0.88)
        assert confidence_score(breakdown(0.8), 0.8, False) == pytest.approx(0.48)
        assert confidence_score(breakdown(0.8), 0.7, False) == pytest.approx(0.68)

    def test_confidence_bounds(self):
        assert confidence_score(breakdown(0.0), 0.0, False) == 0.1
        assert confidence_score(breakdown(1.0), None, True) == 0.3


class TestBasicScheduling:
    """Single-slot runs with a fully eligible roster."""

    def test_single_slot_tie_breaks_by_id(self, three_employees):
        result = run(three_employees, [req(0, "day")])
        assert result.success
        assert result.status == ScheduleStatus.DRAFT
        assert [a.employee_id for a in result.assignments] == ["e1"]
        assert result.coverage_rate == 1.0
        assert result.coverage_gaps == []
        assert result.stats["total_required"] == 1
        assert result.stats["employees_in_scope"] == 3
        assert result.stats["engine_version"] == "1.0"

    def test_idle_employees_lower_fairness(self, three_employees):
        result = run(three_employees, [req(0, "day")])
        assert result.fairness_metrics.overall_gini == pytest.approx(0.666667)
        assert result.stats["fairness_score"] == 33

    def test_reason_trail(self, three_employees):
        a = run(three_employees, [req(0, "day")]).assignments[0]
        categories = [r.category for r in a.reasons]
        assert categories == [ReasonCategory.COVERAGE, ReasonCategory.FAIRNESS, ReasonCategory.OPTIMIZATION]
        assert a.reason.score == 100.0
        priorities = [r.priority for r in a.reasons]
        assert priorities == sorted(priorities, reverse=True)
        optimization = a.reasons[-1].details
        assert optimization["dominant_factor"] == "hierarchy_match"
        assert optimization["runner_up_margin"] == 0.0
        assert "internal_score_calculation" in optimization

    def test_tied_confidence_uses_score_only(self, three_employees):
        a = run(three_employees, [req(0, "day")]).assignments[0]
        assert a.confidence_score == pytest.approx(0.6 * a.score, abs=1e-3)
        assert 0.1 <= a.confidence_score <= 1.0

    def test_preference_reason(self):
        employees = [Employee(id="e1"), Employee(id="e2", preference_pattern=["night"])]
        result = run(employees, [req(0, "night")])
        a = result.assignments[0]
        assert a.employee_id == "e2"
        assert ReasonCategory.PREFERENCE in [r.category for r in a.reasons]

    def test_zero_requirement_is_a_slot(self, three_employees):
        result = run(three_employees, [req(0, "day", 0)])
        assert result.success
        assert result.assignments == []
        assert result.coverage_rate == 1.0
        assert len(result.slots) == 1

    def test_team_scope(self, sample_team, week_coverage):
        result = run(sample_team, week_coverage, end=6, options=GenerationOptions(team_ids=["north"]))
        assert {a.employee_id for a in result.assignments} <= {"alice", "bob"}
        assert result.stats["employees_in_scope"] == 2

    def test_assignments_sorted(self, sample_team, week_coverage):
        result = run(sample_team, week_coverage, end=6)
        assert result.assignments == sorted(result.assignments, key=lambda a: a.sort_key)

    def test_parallel_post_pass_matches_sequential(self, sample_team, week_coverage):
        seq = run(sample_team, week_coverage, end=6)
        par = run(sample_team, week_coverage, end=6, options=GenerationOptions(parallel_analysis=True))
        assert seq.to_dict() == par.to_dict()


class TestCoverageGaps:
    """Slots that hard constraints leave under-staffed."""

    def test_gap_recorded(self):
        result = run(rested_pair(), [req(0, "night", 2)])
        assert result.success
        assert [a.employee_id for a in result.assignments] == ["e1"]
        assert len(result.coverage_gaps) == 1
        gap = result.coverage_gaps[0]
        assert gap.actual_filled == 1
        assert gap.gap_count == 1
        assert gap.excluded == {"already_assigned": ["e1"], "rest_hours": ["e2", "e3"]}
        assert gap.considered == ["e1", "e2", "e3"]
        assert result.coverage_rate == 0.5
        assert result.stats["total_gaps"] == 1

    def test_safety_reason_when_others_excluded(self):
        a = run(rested_pair(), [req(0, "night", 2)]).assignments[0]
        assert a.reason.category == ReasonCategory.PATTERN_SAFETY
        assert a.reason.details == {"excluded": {"rest_hours": 2}}

    def test_gap_logged(self, caplog):
        caplog.set_level(logging.WARNING, logger="rostering")
        run(rested_pair(), [req(0, "night", 2)])
        assert any("Coverage gap" in r.message for r in caplog.records)

    def test_no_partial_solutions(self):
        result = run(rested_pair(), [req(0, "night", 2)], rules=RuleSet(allow_partial_solutions=False))
        assert not result.success
        assert result.status == ScheduleStatus.FAILED
        assert result.error.kind == "constraint_contradiction"
        assert result.assignments == []
        assert [a.employee_id for a in result.partial_assignments] == ["e1"]
        with pytest.raises(ConstraintContradiction) as exc:
            result.raise_for_error()
        assert len(exc.value.partial) == 1

    def test_emergency_override(self):
        result = run(rested_pair(), [req(0, "night", 2)], rules=RuleSet(emergency_override_enabled=True))
        assert result.success
        assert result.coverage_gaps == []
        override = [a for a in result.assignments if a.is_override]
        assert [a.employee_id for a in override] == ["e2"]
        assert override[0].reason.category == ReasonCategory.CONSTRAINT
        assert override[0].reason.details == {"relaxed_constraints": ["rest_hours"]}
        assert override[0].confidence_score <= 0.3
        assert ReasonCategory.PATTERN_SAFETY not in [r.category for r in override[0].reasons]
        assert result.stats["overrides"] == 1

    def test_night_run_cap(self):
        result = run([Employee(id="e1")], [req(i, "night") for i in range(3)], end=2)
        assert [a.date for a in result.assignments] == [day(0), day(1)]
        assert result.coverage_gaps[0].date == day(2)
        assert result.coverage_gaps[0].excluded == {"consecutive_nights": ["e1"]}

    def test_history_counts_toward_night_run(self):
        employees = [Employee(id="e1", history=history((-2, "night"), (-1, "night"))), Employee(id="e2")]
        result = run(employees, [req(0, "night")])
        assert [a.employee_id for a in result.assignments] == ["e2"]

    def test_unavailable_employee_skipped(self):
        employees = [Employee(id="e1", unavailable_dates={day(0)}), Employee(id="e2")]
        result = run(employees, [req(0, "day")])
        assert [a.employee_id for a in result.assignments] == ["e2"]


class TestFailures:
    """Every failure comes back as a failed result."""

    def test_empty_roster(self):
        store = InMemoryAssignmentStore()
        engine = SchedulingEngine(assignment_sink=store, clock=FakeClock(step=0))
        result = run([], [req(0, "day")], engine=engine)
        assert result.status == ScheduleStatus.FAILED
        assert result.error.kind == "no_eligible_employees"
        assert "s1" not in store

    def test_all_inactive(self):
        result = run([Employee(id="e1", is_active=False)], [req(0, "day")])
        assert result.error.kind == "no_eligible_employees"

    def test_invalid_range(self, three_employees):
        assert run(three_employees, [], end=0).error.kind == "invalid_range"
        assert run(three_employees, [], end=91).error.kind == "invalid_range"
        assert run(three_employees, [req(0, "day")], end=90).success

    def test_requirement_outside_range(self, three_employees):
        assert run(three_employees, [req(5, "day")], end=1).error.kind == "invalid_range"

    def test_invalid_rules(self, three_employees):
        result = run(three_employees, [req(0, "day")], rules=RuleSet(min_rest_hours=4))
        assert result.error.kind == "config_validation"

    def test_duplicate_employee(self):
        result = run([Employee(id="e1"), Employee(id="e1")], [req(0, "day")])
        assert result.error.kind == "config_validation"

    def test_timeout_keeps_partial(self, three_employees):
        engine = SchedulingEngine(clock=FakeClock(step=1))
        result = run(
            three_employees,
            [req(0, shift) for shift in SHIFTS],
            engine=engine,
            options=GenerationOptions(deadline_seconds=2.5),
        )
        assert result.error.kind == "generation_timeout"
        assert len(result.partial_assignments) == 2
        assert result.error.detail["slots_resolved"] == 2
        assert result.error.detail["slots_total"] == 3
        with pytest.raises(GenerationTimeout):
            result.raise_for_error()

    def test_cancelled(self, three_employees):
        token = CancellationToken()
        token.cancel()
        result = run(three_employees, [req(0, "day")], cancel_token=token)
        assert result.error.kind == "generation_cancelled"
        assert result.partial_assignments == []

    def test_sink_failure_wrapped(self, three_employees):
        engine = SchedulingEngine(assignment_sink=FailingSink(), clock=FakeClock(step=0))
        result = run(three_employees, [req(0, "day")], engine=engine)
        assert result.error.kind == "generation_error"
        assert isinstance(result.exception.__cause__, RuntimeError)
        assert len(result.partial_assignments) == 1

    def test_failed_run_not_audited(self, three_employees):
        tracker = AssignmentAuditTracker()
        engine = SchedulingEngine(audit_tracker=tracker, assignment_sink=FailingSink(), clock=FakeClock(step=0))
        run(three_employees, [req(0, "day")], engine=engine)
        assert tracker.query(schedule_id="s1") == []

    def test_sink_failure_withdraws_only_its_audit_batch(self, three_employees, tmp_path):
        tracker = AssignmentAuditTracker(SqliteAuditStore(tmp_path / "audit.db"))
        earlier = SchedulingEngine(audit_tracker=tracker, clock=FakeClock(step=0))
        assert earlier.generate_schedule("s0", "t1", MONDAY, day(1), three_employees, [req(0, "day")]).success
        engine = SchedulingEngine(audit_tracker=tracker, assignment_sink=FailingSink(), clock=FakeClock(step=0))
        result = run(three_employees, [req(0, "day"), req(0, "evening")], engine=engine)
        assert result.error.kind == "generation_error"
        assert tracker.query(schedule_id="s1") == []
        assert len(tracker.query(schedule_id="s0")) == 1

    def test_audit_failure_leaves_sink_empty(self, three_employees):
        audit = FailingAuditStore()
        sink = InMemoryAssignmentStore()
        engine = SchedulingEngine(
            audit_tracker=AssignmentAuditTracker(audit), assignment_sink=sink, clock=FakeClock(step=0)
        )
        result = run(three_employees, [req(0, "day"), req(0, "evening")], engine=engine)
        assert result.status == ScheduleStatus.FAILED
        assert result.error.kind == "generation_error"
        assert isinstance(result.exception.__cause__, OSError)
        assert "s1" not in sink
        assert len(audit) == 0

    def test_audit_clash_on_second_record_commits_nothing(self, three_employees, tmp_path):
        coverage = [req(0, "day"), req(0, "evening")]
        first = run(three_employees, coverage)
        assert len(first.assignments) == 2
        tracker = AssignmentAuditTracker(SqliteAuditStore(tmp_path / "audit.db"))
        seeded = tracker.record(first.assignments[1], [], {}, {}, 0.5)

        sink = InMemoryAssignmentStore()
        engine = SchedulingEngine(audit_tracker=tracker, assignment_sink=sink, clock=FakeClock(step=0))
        result = run(three_employees, coverage, engine=engine)
        assert result.error.kind == "generation_error"
        assert isinstance(result.exception.__cause__, ValueError)
        assert "s1" not in sink
        assert tracker.query() == [seeded]


class TestCommit:

    def test_sink_receives_assignments(self, sample_team, week_coverage):
        store = InMemoryAssignmentStore()
        engine = SchedulingEngine(assignment_sink=store, clock=FakeClock(step=0))
        result = run(sample_team, week_coverage, end=6, engine=engine)
        assert store.get("s1") == result.assignments
        assert store.tenant_of("s1") == "t1"
        assert store.stats("s1")["total_filled"] == result.total_filled

    def test_every_assignment_audited(self, sample_team, week_coverage):
        tracker = AssignmentAuditTracker()
        engine = SchedulingEngine(audit_tracker=tracker, clock=FakeClock(step=0))
        result = run(sample_team, week_coverage, end=6, engine=engine)
        records = tracker.query(schedule_id="s1")
        assert len(records) == len(result.assignments)
        by_key = {(r.employee_id, r.date, r.shift_type): r for r in records}
        for a in result.assignments:
            record = by_key[(a.employee_id, a.date, a.shift_type)]
            assert record.confidence_score == a.confidence_score
            assert record.reasons == a.reasons
            assert record.scoring_breakdown["employee_id"] == a.employee_id
            assert "consecutive_nights" in record.pattern_context


def coverage_from_counts(counts):
    return [req(i // 3, SHIFTS[i % 3], n) for i, n in enumerate(counts)]


def team():
    return [
        Employee(id=f"e{i}", hierarchy_level=1 + i % 3, experience_years=i, team_id="ab"[i % 2])
        for i in range(5)
    ]


class TestEngineProperties:
    """Invariants over random coverage grids."""

    counts = st.lists(st.integers(min_value=0, max_value=2), min_size=21, max_size=21)

    @given(counts)
    @settings(max_examples=25, deadline=None)
    def test_no_double_booking(self, counts):
        result = run(team(), coverage_from_counts(counts), end=6)
        keys = [(a.employee_id, a.date) for a in result.assignments]
        assert len(keys) == len(set(keys))

    @given(counts)
    @settings(max_examples=25, deadline=None)
    def test_coverage_accounting(self, counts):
        result = run(team(), coverage_from_counts(counts), end=6)
        required = sum(counts)
        gaps = sum(g.gap_count for g in result.coverage_gaps)
        assert result.total_filled + gaps == required
        assert len(result.assignments) == result.total_filled
        expected = 1.0 if required == 0 else result.total_filled / required
        assert result.coverage_rate == pytest.approx(expected, abs=1e-6)

    @given(counts)
    @settings(max_examples=25, deadline=None)
    def test_rest_and_night_limits(self, counts):
        rules = RuleSet()
        result = run(team(), coverage_from_counts(counts), end=6, rules=rules)
        by_employee = {}
        for a in result.assignments:
            by_employee.setdefault(a.employee_id, {})[a.date] = a.shift_type
        for shifts in by_employee.values():
            for d, shift in shifts.items():
                following = shifts.get(d + timedelta(days=1))
                if following is not None:
                    assert rest_hours_between((d, shift), (d + timedelta(days=1), following)) >= rules.min_rest_hours
                assert consecutive_counts(shifts, d)[1] <= rules.max_consecutive_nights
                assert consecutive_counts(shifts, d)[0] <= rules.max_consecutive_days

    @given(counts)
    @settings(max_examples=25, deadline=None)
    def test_deterministic(self, counts):
        first = run(team(), coverage_from_counts(counts), end=6)
        second = run(list(reversed(team())), coverage_from_counts(counts), end=6)
        assert first.to_dict() == second.to_dict()
