"""Tests for dangerous-pattern detection."""
import pytest

from conftest import day
from rostering.models.employee import Employee
from rostering.models.rules import IndustryProfile, RuleSet, default_rules
from rostering.models.schedule import ScheduleAssignment
from rostering.models.shift import ShiftType
from rostering.solver.patterns import (
    PatternRisk,
    PatternSafetyAnalyzer,
    Severity,
    aggregate_risk,
    build_calendar,
    consecutive_counts,
    risk_level,
)

N, D, E = ShiftType.NIGHT, ShiftType.DAY, ShiftType.EVENING
EMP = Employee(id="e1")


def seq(*entries):
    """``seq((0, "night"), (1, "day"))`` → (date, shift) pairs."""
    return [(day(offset), shift) for offset, shift in entries]


def analyze(entries, rules=None, end_date=None):
    return PatternSafetyAnalyzer(rules or RuleSet()).analyze(EMP, seq(*entries), end_date)


def risk(score, risk_type="x"):
    return PatternRisk(risk_type, Severity.WARNING, "", day(0), day(0), score)


class TestCalendar:

    def test_fills_idle_days_with_off(self):
        calendar = build_calendar(seq((0, "day"), (2, "night")))
        assert calendar == [(day(0), D), (day(1), ShiftType.OFF), (day(2), N)]

    def test_extends_to_end_date(self):
        calendar = build_calendar(seq((0, "day")), end_date=day(2))
        assert [s for _, s in calendar] == [D, ShiftType.OFF, ShiftType.OFF]

    def test_empty(self):
        assert build_calendar([]) == []
        assert analyze([]) == []

    def test_consecutive_counts(self):
        shifts = {day(0): N, day(1): N, day(2): D}
        assert consecutive_counts(shifts, day(1)) == (2, 2)
        assert consecutive_counts(shifts, day(2)) == (3, 0)


class TestRunDetection:
    """Tests for night and work-day runs."""

    def test_night_run_at_cap_warns(self):
        risks = analyze([(0, "night"), (1, "night")])
        assert len(risks) == 1
        r = risks[0]
        assert r.risk_type == "consecutive_nights"
        assert r.severity == Severity.WARNING
        assert r.risk_score == 50
        assert (r.start_date, r.end_date) == (day(0), day(1))
        assert r.pattern is None

    def test_night_run_over_cap_is_critical(self):
        risks = analyze([(0, "night"), (1, "night"), (2, "night")])
        r = risks[0]
        assert r.severity == Severity.CRITICAL
        assert r.risk_score == 80
        assert r.pattern == "consecutive_nights"

    def test_longer_runs_score_higher(self):
        risks = analyze([(i, "night") for i in range(4)])
        nights = [r for r in risks if r.risk_type == "consecutive_nights"]
        assert nights[0].risk_score == 85

    def test_pattern_below_cap_warns(self):
        rules = RuleSet(max_consecutive_nights=4)
        risks = analyze([(0, "night"), (1, "night"), (2, "night")], rules=rules)
        assert risks[0].severity == Severity.WARNING
        assert risks[0].risk_score == 45
        assert risks[0].pattern == "consecutive_nights"

    def test_longer_runs_never_rank_lower(self):
        rank = [Severity.WARNING, Severity.DANGER, Severity.CRITICAL]
        rules = RuleSet(max_consecutive_nights=4)
        tiers = []
        for length in range(3, 8):
            [r] = [r for r in analyze([(i, "night") for i in range(length)], rules=rules)
                   if r.risk_type == "consecutive_nights"]
            tiers.append((rank.index(r.severity), r.risk_score))
        assert tiers == sorted(tiers)
        assert tiers[0] < tiers[1]

    def test_work_run_at_cap(self):
        risks = analyze([(i, "day") for i in range(5)])
        assert [r.risk_type for r in risks] == ["consecutive_work_days"]
        assert risks[0].risk_score == 40

    def test_short_runs_are_clean(self):
        assert analyze([(0, "night"), (2, "night"), (4, "day")]) == []


class TestSequenceDetection:
    """Tests for configured sequences and rotation checks."""

    def test_sequence_needs_trailing_off(self):
        rules = default_rules(IndustryProfile.NURSING)
        entries = [(0, "day"), (1, "night")]
        assert analyze(entries, rules=rules) == []
        risks = analyze(entries, rules=rules, end_date=day(2))
        assert [r.risk_type for r in risks] == ["dangerous_sequence"]
        assert risks[0].pattern == "day_night_off"
        assert risks[0].risk_score == 70
        assert risks[0].end_date == day(2)

    def test_triple_rotation(self):
        risks = analyze([(0, "day"), (1, "evening"), (2, "night")])
        assert [r.risk_type for r in risks] == ["triple_shift_rotation"]
        assert risks[0].severity == Severity.CRITICAL
        assert risks[0].risk_score == 95

    def test_double_without_rest(self):
        risks = analyze([(0, "day"), (1, "evening"), (3, "day")])
        assert [r.risk_type for r in risks] == ["double_without_rest"]
        assert risks[0].risk_score == 75
        assert (risks[0].start_date, risks[0].end_date) == (day(0), day(3))

    def test_excessive_nights(self):
        risks = analyze([(0, "night"), (2, "night"), (4, "night"), (6, "night"), (8, "day")])
        assert [r.risk_type for r in risks] == ["excessive_nights"]
        assert risks[0].risk_score == 60

    def test_friday_nights(self):
        risks = analyze([(4, "night"), (11, "night")])  # two Fridays
        assert [r.risk_type for r in risks] == ["friday_nights"]
        assert (risks[0].start_date, risks[0].end_date) == (day(4), day(11))


class TestAnalyzer:
    """Tests for determinism, aggregation and per-schedule reports."""

    def test_repeatable_and_order_independent(self):
        entries = [(0, "day"), (1, "evening"), (2, "night"), (3, "night"), (4, "night")]
        analyzer = PatternSafetyAnalyzer(RuleSet())
        first = analyzer.analyze(EMP, seq(*entries))
        again = analyzer.analyze(EMP, seq(*entries))
        reversed_ = analyzer.analyze(EMP, list(reversed(seq(*entries))))
        assert first == again == reversed_
        assert first == sorted(first, key=lambda r: (r.start_date, r.risk_type, r.end_date))

    def test_accepts_assignment_objects(self):
        assignments = [ScheduleAssignment("s1", "e1", day(i), N) for i in range(2)]
        risks = PatternSafetyAnalyzer(RuleSet()).analyze(EMP, assignments)
        assert risks[0].risk_type == "consecutive_nights"

    def test_aggregate_risk(self):
        assert aggregate_risk([]) == 0.0
        assert aggregate_risk([risk(80)]) == 80.0
        assert aggregate_risk([risk(95), risk(50), risk(70)]) == pytest.approx(84.5)

    @pytest.mark.parametrize("score,level", [(84.5, "critical"), (60, "high"), (30, "medium"), (10, "low")])
    def test_risk_level(self, score, level):
        assert risk_level(score) == level

    def test_report(self):
        report = PatternSafetyAnalyzer(RuleSet()).report(EMP, seq((0, "night"), (1, "night"), (2, "night")))
        assert report.risk_score == 80.0
        assert report.risk_level == "critical"
        assert report.safety_score == 20.0
        assert len(report.recommendations) == 1
        assert report.to_dict()["risks"][0]["severity"] == "critical"

    def test_analyze_schedule_covers_idle_employees(self):
        employees = [Employee(id="b"), Employee(id="a")]
        assignments = [ScheduleAssignment("s1", "a", day(i), N) for i in range(3)]
        reports = PatternSafetyAnalyzer(RuleSet()).analyze_schedule(assignments, employees)
        assert list(reports) == ["a", "b"]
        assert reports["a"].risk_level == "critical"
        assert reports["b"].risks == []
        assert reports["b"].risk_level == "low"
