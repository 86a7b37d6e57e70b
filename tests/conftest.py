"""Pytest configuration and fixtures."""
import sys
from datetime import date, timedelta
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from rostering.models.coverage import CoverageRequirement
from rostering.models.employee import Employee, ShiftRecord
from rostering.models.rules import RuleSet
from rostering.models.shift import ShiftType

MONDAY = date(2024, 3, 4)


def day(offset: int) -> date:
    """Date ``offset`` days after the reference Monday."""
    return MONDAY + timedelta(days=offset)


def req(offset: int, shift, count: int = 1, **kwargs) -> CoverageRequirement:
    return CoverageRequirement(date=day(offset), shift_type=shift, required_count=count, **kwargs)


def history(*entries) -> list:
    """``history((-1, "night"), (-2, "night"))`` → ShiftRecords relative to MONDAY."""
    return [ShiftRecord(day(offset), ShiftType.from_string(shift)) for offset, shift in entries]


class FakeClock:
    """Monotonic clock advancing ``step`` seconds per call."""

    def __init__(self, step: float = 1.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def start():
    return MONDAY


@pytest.fixture
def three_employees():
    """Three interchangeable employees."""
    return [Employee(id=f"e{i}", name=f"Employee {i}") for i in (1, 2, 3)]


@pytest.fixture
def sample_team():
    """A mixed team across two teams and levels."""
    return [
        Employee(id="alice", hierarchy_level=2, experience_years=6, team_id="north",
                 preference_pattern=["day"]),
        Employee(id="bob", hierarchy_level=1, experience_years=2, team_id="north",
                 preference_pattern=["night"]),
        Employee(id="carol", hierarchy_level=1, experience_years=3, team_id="south",
                 preference_pattern=["evening"]),
        Employee(id="dave", hierarchy_level=2, experience_years=8, team_id="south",
                 avoid_weekdays={6, 7}),
        Employee(id="erin", hierarchy_level=1, experience_years=1, team_id="south"),
    ]


@pytest.fixture
def week_coverage():
    """One day, one evening and one night slot per day for a week."""
    return [req(i, shift) for i in range(7) for shift in ("day", "evening", "night")]


@pytest.fixture
def default_rules():
    return RuleSet()


@pytest.fixture
def clock():
    return FakeClock()
