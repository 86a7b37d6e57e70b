"""Coverage requirements and gaps."""
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

import pandas as pd

from rostering.errors import ConfigValidation, InvalidRange

from .shift import SHIFT_ORDER, ShiftType, parse_date, shift_rank


@dataclass(frozen=True)
class CoverageRequirement:
    """Staffing target for one (date, shift) slot."""
    date: date
    shift_type: ShiftType
    required_count: int
    minimum_experience_level: Optional[float] = None
    reference_level: Optional[int] = None  # hierarchy level the slot is staffed for

    def __post_init__(self):
        object.__setattr__(self, "date", parse_date(self.date))
        object.__setattr__(self, "shift_type", ShiftType.from_string(self.shift_type))
        if not self.shift_type.is_work:
            raise ConfigValidation(
                "Coverage requirement must target a work shift",
                detail={"date": self.date.isoformat(), "shift_type": self.shift_type.value},
            )
        if self.required_count < 0:
            raise ConfigValidation(
                "required_count must be >= 0",
                detail={"date": self.date.isoformat(), "required_count": self.required_count},
            )

    @property
    def key(self):
        return (self.date, self.shift_type)

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "shift_type": self.shift_type.value,
            "required_count": self.required_count,
            "minimum_experience_level": self.minimum_experience_level,
            "reference_level": self.reference_level,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "CoverageRequirement":
        min_exp = d.get("minimum_experience_level")
        ref = d.get("reference_level")
        return cls(
            date=d["date"],
            shift_type=d["shift_type"],
            required_count=int(d.get("required_count", 1)),
            minimum_experience_level=float(min_exp) if min_exp not in (None, "") else None,
            reference_level=int(ref) if ref not in (None, "") else None,
        )


@dataclass
class CoverageGap:
    """An under-staffed slot. Recorded on the result, never raised."""
    date: date
    shift_type: ShiftType
    required_count: int
    actual_filled: int
    reason: str = "no_eligible_candidate"
    considered: List[str] = field(default_factory=list)
    excluded: Dict[str, List[str]] = field(default_factory=dict)

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
            "reason": self.reason,
            "considered": list(self.considered),
            "excluded": {k: list(v) for k, v in sorted(self.excluded.items())},
        }


def expand_slots(
    requirements: Iterable[CoverageRequirement],
    start: date,
    end: date,
) -> List[CoverageRequirement]:
    """
    Order requirements for slot filling: date ascending, then day, evening, night.

    Raises:
        InvalidRange: a requirement falls outside [start, end]
        ConfigValidation: two requirements target the same (date, shift)
    """
    seen = {}
    for req in requirements:
        if req.date < start or req.date > end:
            raise InvalidRange(
                f"Coverage requirement {req.date.isoformat()}/{req.shift_type.value} outside range",
                detail={"date": req.date.isoformat(), "start": start.isoformat(), "end": end.isoformat()},
            )
        if req.key in seen:
            raise ConfigValidation(
                "Duplicate coverage requirement",
                detail={"date": req.date.isoformat(), "shift_type": req.shift_type.value},
            )
        seen[req.key] = req
    return sorted(seen.values(), key=lambda r: (r.date, shift_rank(r.shift_type)))


def coverage_frame(requirements: Iterable[CoverageRequirement]) -> pd.DataFrame:
    """Pivot of required counts: one row per date, one column per shift."""
    rows = [
        {"date": r.date, "shift_type": r.shift_type.value, "required_count": r.required_count}
        for r in requirements
    ]
    columns = [s.value for s in SHIFT_ORDER]
    if not rows:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame(rows)
    pivot = df.pivot_table(
        index="date", columns="shift_type", values="required_count", aggfunc="sum", fill_value=0
    )
    return pivot.reindex(columns=columns, fill_value=0)
