"""Tests for I/O functionality."""
import json

import pandas as pd
import pytest

from conftest import MONDAY, day, req
from rostering.errors import ConfigValidation
from rostering.io.csv_loader import (
    load_coverage,
    load_history,
    load_roster,
    load_rules_file,
    roster_to_dataframe,
    save_roster,
)
from rostering.io.results_export import build_export, export_results
from rostering.models.employee import Employee
from rostering.models.rules import RuleSet
from rostering.models.shift import ShiftType
from rostering.solver.engine import SchedulingEngine
from rostering.solver.stats import calculate_employee_stats, stats_to_dataframe, team_summary


ROSTER_CSV = """id,name,hierarchy_level,experience_years,team_id,is_active,preference_pattern,avoid_weekdays,unavailable_dates
e1,Ann,2,4.5,north,1,day;night,6;7,2024-03-05
e2,Bob,,,south,0,,,
,Nobody,1,1,north,1,,,
"""


class TestCSVLoader:
    """Tests for CSV loading functionality."""

    def test_load_roster_from_file(self, tmp_path):
        path = tmp_path / "roster.csv"
        path.write_text(ROSTER_CSV, encoding="utf-8")
        employees = load_roster(path)

        assert [e.id for e in employees] == ["e1", "e2"]  # blank id skipped
        ann, bob = employees
        assert ann.hierarchy_level == 2
        assert ann.experience_years == 4.5
        assert ann.preference_pattern == [ShiftType.DAY, ShiftType.NIGHT]
        assert ann.avoid_weekdays == {6, 7}
        assert ann.unavailable_dates == {day(1)}
        assert bob.hierarchy_level == 1
        assert bob.is_active is False

    def test_load_roster_from_dataframe(self):
        df = pd.DataFrame({"id": ["a", "b"], "hierarchy_level": [3, 1], "is_active": [1, 1]})
        employees = load_roster(df)
        assert employees[0].hierarchy_level == 3
        assert employees[1].is_active is True

    def test_load_roster_missing_id_raises(self):
        with pytest.raises(ValueError, match="id"):
            load_roster(pd.DataFrame({"name": ["Alice"]}))

    def test_load_history(self, caplog):
        employees = load_roster(pd.DataFrame({"id": ["e1"]}))
        history = pd.DataFrame({
            "employee_id": ["e1", "e1", "ghost"],
            "date": ["2024-03-03", "2024-03-02", "2024-03-03"],
            "shift_type": ["night", "N", "day"],
        })
        load_history(history, employees)
        assert [r.shift_type for r in employees[0].history] == [ShiftType.NIGHT, ShiftType.NIGHT]
        assert "Skipped 1 history rows" in caplog.text

    def test_load_coverage(self, tmp_path):
        path = tmp_path / "coverage.csv"
        path.write_text(
            "date,shift_type,required_count,minimum_experience_level\n"
            "2024-03-04,day,2,\n"
            "2024-03-04,night,,3\n",
            encoding="utf-8",
        )
        coverage = load_coverage(path)
        assert coverage[0] == req(0, "day", 2)
        assert coverage[1].required_count == 1
        assert coverage[1].minimum_experience_level == 3.0

    def test_load_coverage_missing_columns(self):
        with pytest.raises(ValueError, match="shift_type"):
            load_coverage(pd.DataFrame({"date": ["2024-03-04"]}))

    def test_load_rules_file(self, tmp_path):
        good = tmp_path / "rules.json"
        good.write_text(json.dumps({"min_rest_hours": 12}), encoding="utf-8")
        assert load_rules_file(good).min_rest_hours == 12

        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"max_weekly_hours": 100}), encoding="utf-8")
        with pytest.raises(ConfigValidation):
            load_rules_file(bad)


class TestCSVSaver:
    """Tests for CSV saving functionality."""

    def test_roster_roundtrip(self, sample_team, tmp_path):
        path = tmp_path / "team.csv"
        save_roster(sample_team, path)
        assert load_roster(path) == sample_team

    def test_roster_to_dataframe(self, sample_team):
        df = roster_to_dataframe(sample_team)
        assert len(df) == len(sample_team)
        assert df.loc[df["id"] == "dave", "avoid_weekdays"].iloc[0] == "6;7"


@pytest.fixture
def finished_run(sample_team, week_coverage):
    rules = RuleSet()
    result = SchedulingEngine(rules).generate_schedule(
        "s1", "t1", MONDAY, day(6), sample_team, week_coverage
    )
    return result, sample_team, rules


class TestStats:
    """Tests for per-employee statistics."""

    def test_stats_match_assignments(self, finished_run):
        result, employees, _ = finished_run
        stats = calculate_employee_stats(result, employees)
        assert [s.employee_id for s in stats] == sorted(e.id for e in employees)
        assert sum(s.total for s in stats) == len(result.assignments)
        for s in stats:
            assert s.day + s.evening + s.night == s.total
            assert s.hours == s.total * 8

    def test_frames(self, finished_run):
        result, employees, _ = finished_run
        stats = calculate_employee_stats(result, employees)
        df = stats_to_dataframe(stats)
        assert df.index.name == "employee_id"
        assert list(team_summary(stats).index) == ["north", "south"]
        assert stats_to_dataframe([]).empty


class TestResultsExport:
    """Tests for JSON export."""

    def test_export_is_sanitized(self, finished_run):
        result, employees, rules = finished_run
        payload = build_export(result, employees, rules)
        details = [r["details"] for a in payload["result"]["assignments"] for r in a["reasons"]]
        assert details
        assert all("internal_score_calculation" not in d for d in details)
        assert all("algorithm_parameters" not in d for d in details)
        assert len(payload["employee_stats"]) == len(employees)
        json.dumps(payload)

    def test_export_writes_file(self, finished_run, tmp_path):
        result, employees, rules = finished_run
        path = export_results(result, employees, rules, run_name="week", output_dir=tmp_path)
        assert path == tmp_path / "week.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["meta"]["run_name"] == "week"
        assert data["result"]["status"] == "draft"
