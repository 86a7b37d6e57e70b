"""Shift type definitions, clock times and calendar helpers."""
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Tuple


class ShiftType(str, Enum):
    """Types of shifts in the scheduling system."""
    DAY = "day"          # 07:00-15:00
    EVENING = "evening"  # 15:00-23:00
    NIGHT = "night"      # 23:00-07:00 (+1)
    OFF = "off"          # Rest day

    @property
    def hours(self) -> int:
        """Hours worked for this shift type."""
        return 0 if self is ShiftType.OFF else 8

    @property
    def is_work(self) -> bool:
        """True if this is a working shift (not rest)."""
        return self is not ShiftType.OFF

    @property
    def fatigue(self) -> int:
        """Fatigue points accumulated by working this shift."""
        return {
            ShiftType.DAY: 1,
            ShiftType.EVENING: 2,
            ShiftType.NIGHT: 3,
        }.get(self, 0)

    @property
    def code(self) -> str:
        return {
            ShiftType.DAY: "D",
            ShiftType.EVENING: "E",
            ShiftType.NIGHT: "N",
            ShiftType.OFF: "O",
        }[self]

    @classmethod
    def from_string(cls, s: str) -> "ShiftType":
        """Parse shift from various string formats."""
        if isinstance(s, ShiftType):
            return s
        mapping = {
            "d": cls.DAY, "day": cls.DAY, "j": cls.DAY,
            "e": cls.EVENING, "evening": cls.EVENING, "s": cls.EVENING, "eve": cls.EVENING,
            "n": cls.NIGHT, "night": cls.NIGHT,
            "o": cls.OFF, "off": cls.OFF, "rest": cls.OFF, "-": cls.OFF, "": cls.OFF,
        }
        key = str(s).strip().lower()
        if key in mapping:
            return mapping[key]
        raise ValueError(f"Unknown shift type: {s!r}")


# Fixed enumeration order for coverage slots
SHIFT_ORDER = (ShiftType.DAY, ShiftType.EVENING, ShiftType.NIGHT)
WORK_SHIFTS = SHIFT_ORDER

# Clock times: (start, end, ends_next_day)
SHIFT_TIMES = {
    ShiftType.DAY: (time(7, 0), time(15, 0), False),
    ShiftType.EVENING: (time(15, 0), time(23, 0), False),
    ShiftType.NIGHT: (time(23, 0), time(7, 0), True),
}


def parse_date(value) -> date:
    """Accept a date, datetime or ISO string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def shift_rank(shift: ShiftType) -> int:
    """Position of a shift in the enumeration order (OFF sorts last)."""
    if shift in SHIFT_ORDER:
        return SHIFT_ORDER.index(shift)
    return len(SHIFT_ORDER)


def shift_window(day: date, shift: ShiftType) -> Tuple[datetime, datetime]:
    """Start and end datetimes of a work shift on ``day``."""
    if not shift.is_work:
        raise ValueError("OFF has no clock window")
    start, end, next_day = SHIFT_TIMES[shift]
    start_dt = datetime.combine(day, start)
    end_dt = datetime.combine(day + timedelta(days=1) if next_day else day, end)
    return start_dt, end_dt


def rest_hours_between(first: Tuple[date, ShiftType], second: Tuple[date, ShiftType]) -> float:
    """Hours between the end of ``first`` and the start of ``second``."""
    (d1, s1), (d2, s2) = sorted([first, second], key=lambda x: (x[0], shift_rank(x[1])))
    _, end_first = shift_window(d1, s1)
    start_second, _ = shift_window(d2, s2)
    return (start_second - end_first).total_seconds() / 3600.0


def day_of_week(day: date) -> int:
    """Day of week with Sunday = 0."""
    return day.isoweekday() % 7


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def is_friday(day: date) -> bool:
    return day.weekday() == 4


def date_range(start: date, end: date):
    """Inclusive iteration over calendar days."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
