"""Employee model for roster members."""
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Set

from .shift import ShiftType, parse_date


@dataclass(frozen=True)
class ShiftRecord:
    """A committed shift outside the current run (history or pre-existing)."""
    date: date
    shift_type: ShiftType

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "shift_type": self.shift_type.value}

    @classmethod
    def from_dict(cls, d: dict) -> "ShiftRecord":
        return cls(date=parse_date(d["date"]), shift_type=ShiftType.from_string(d["shift_type"]))


@dataclass
class Employee:
    """Represents a roster member with their scheduling attributes."""

    id: str
    name: str = ""
    role: str = ""
    hierarchy_level: int = 1
    experience_years: float = 0.0
    team_id: str = ""
    is_active: bool = True
    skills: List[str] = field(default_factory=list)

    # Cyclic preferred shifts, indexed by day of week (Sunday = 0)
    preference_pattern: List[ShiftType] = field(default_factory=list)
    avoid_weekdays: Set[int] = field(default_factory=set)  # ISO weekdays, Monday = 1
    unavailable_dates: Set[date] = field(default_factory=set)

    history: List[ShiftRecord] = field(default_factory=list)
    tracked_fatigue: Optional[float] = None  # 0-10, from an external monitor

    def __post_init__(self):
        """Validate and normalize fields."""
        self.id = str(self.id).strip()
        if not self.id:
            raise ValueError("Employee id is required")
        self.name = str(self.name).strip() or self.id
        if self.hierarchy_level < 1:
            self.hierarchy_level = 1
        if self.experience_years < 0:
            self.experience_years = 0.0
        self.preference_pattern = [ShiftType.from_string(s) for s in self.preference_pattern]
        self.avoid_weekdays = {int(d) for d in self.avoid_weekdays if 1 <= int(d) <= 7}
        self.unavailable_dates = {parse_date(d) for d in self.unavailable_dates}
        if self.tracked_fatigue is not None:
            self.tracked_fatigue = min(10.0, max(0.0, float(self.tracked_fatigue)))

    def preferred_shift(self, day: date) -> Optional[ShiftType]:
        """Preferred shift for a date, or None without a pattern."""
        if not self.preference_pattern:
            return None
        dow = day.isoweekday() % 7
        return self.preference_pattern[dow % len(self.preference_pattern)]

    def is_available(self, day: date) -> bool:
        return self.is_active and day not in self.unavailable_dates

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "hierarchy_level": self.hierarchy_level,
            "experience_years": self.experience_years,
            "team_id": self.team_id,
            "is_active": self.is_active,
            "skills": list(self.skills),
            "preference_pattern": [s.value for s in self.preference_pattern],
            "avoid_weekdays": sorted(self.avoid_weekdays),
            "unavailable_dates": sorted(d.isoformat() for d in self.unavailable_dates),
            "history": [r.to_dict() for r in self.history],
            "tracked_fatigue": self.tracked_fatigue,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Employee":
        """Create from dictionary."""
        return cls(
            id=str(d.get("id", "")),
            name=str(d.get("name", "")),
            role=str(d.get("role", "")),
            hierarchy_level=int(d.get("hierarchy_level", 1)),
            experience_years=float(d.get("experience_years", 0)),
            team_id=str(d.get("team_id", "") or ""),
            is_active=bool(d.get("is_active", True)),
            skills=list(d.get("skills", [])),
            preference_pattern=list(d.get("preference_pattern", [])),
            avoid_weekdays=set(d.get("avoid_weekdays", [])),
            unavailable_dates=set(d.get("unavailable_dates", [])),
            history=[ShiftRecord.from_dict(r) for r in d.get("history", [])],
            tracked_fatigue=d.get("tracked_fatigue"),
        )
