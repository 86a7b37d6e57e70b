"""
Scheduling Rules
================
Tenant rule sets, dangerous patterns, run options and industry profiles.

A ``RuleSet`` is a frozen value object. Build one through ``resolve_rules`` or
``load_rules`` so that bounds are checked (see ``rostering.models.validated``);
the engine re-validates whatever it is handed before a run starts.
"""
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .shift import ShiftType


class IndustryProfile(str, Enum):
    """Rule presets for tenants without an explicit override."""
    GENERAL = "general"
    NURSING = "nursing"


RUN_NIGHT = "night"
RUN_WORK = "work"


@dataclass(frozen=True)
class DangerousPattern:
    """
    A shift sequence to avoid.

    Either an exact day-by-day sequence (``sequence``, OFF allowed) or a run
    rule: ``min_run`` or more consecutive nights (``run_of="night"``) or work
    days (``run_of="work"``).
    """
    name: str
    sequence: Tuple[ShiftType, ...] = ()
    run_of: Optional[str] = None
    min_run: int = 0

    def __post_init__(self):
        object.__setattr__(self, "sequence", tuple(ShiftType.from_string(s) for s in self.sequence))
        if self.run_of is not None:
            if self.run_of not in (RUN_NIGHT, RUN_WORK):
                raise ValueError(f"run_of must be 'night' or 'work', got {self.run_of!r}")
            if self.min_run < 1:
                raise ValueError("min_run must be >= 1")
        elif not any(s.is_work for s in self.sequence):
            raise ValueError(f"Pattern {self.name!r} needs at least one work shift")

    @property
    def is_run(self) -> bool:
        return self.run_of is not None

    @property
    def trigger(self) -> Tuple[ShiftType, ...]:
        """Sequence without its trailing OFF days."""
        seq = list(self.sequence)
        while seq and not seq[-1].is_work:
            seq.pop()
        return tuple(seq)

    def describe(self) -> str:
        if self.run_of == RUN_NIGHT:
            return f"{self.min_run}+ consecutive night shifts"
        if self.run_of == RUN_WORK:
            return f"{self.min_run}+ consecutive work days"
        return "→".join(s.value for s in self.sequence)

    @classmethod
    def from_shifts(cls, shifts: Sequence, name: Optional[str] = None) -> "DangerousPattern":
        """
        Build from a plain shift list.

        A list made only of nights becomes a night-run rule, a list made only
        of day shifts becomes a work-day-run rule, anything else is an exact
        sequence.
        """
        parsed = [ShiftType.from_string(s) for s in shifts]
        if parsed and all(s is ShiftType.NIGHT for s in parsed):
            return cls(name=name or f"consecutive_nights_{len(parsed)}", run_of=RUN_NIGHT, min_run=len(parsed))
        if parsed and all(s is ShiftType.DAY for s in parsed):
            return cls(name=name or f"consecutive_work_days_{len(parsed)}", run_of=RUN_WORK, min_run=len(parsed))
        return cls(name=name or "_".join(s.value for s in parsed), sequence=tuple(parsed))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "sequence": [s.value for s in self.sequence],
            "run_of": self.run_of,
            "min_run": self.min_run,
        }

    @classmethod
    def from_dict(cls, d: Any) -> "DangerousPattern":
        if isinstance(d, (list, tuple)):
            return cls.from_shifts(d)
        return cls(
            name=str(d.get("name", "pattern")),
            sequence=tuple(d.get("sequence", ())),
            run_of=d.get("run_of"),
            min_run=int(d.get("min_run", 0)),
        )


def _general_patterns() -> Tuple[DangerousPattern, ...]:
    return (
        DangerousPattern("consecutive_nights", run_of=RUN_NIGHT, min_run=3),
        DangerousPattern("consecutive_work_days", run_of=RUN_WORK, min_run=6),
    )


def _nursing_patterns() -> Tuple[DangerousPattern, ...]:
    return (
        DangerousPattern("day_night_off", sequence=(ShiftType.DAY, ShiftType.NIGHT, ShiftType.OFF)),
        DangerousPattern("evening_day_night", sequence=(ShiftType.EVENING, ShiftType.DAY, ShiftType.NIGHT)),
        DangerousPattern("consecutive_nights", run_of=RUN_NIGHT, min_run=3),
        DangerousPattern("consecutive_work_days", run_of=RUN_WORK, min_run=5),
    )


@dataclass(frozen=True)
class RuleSet:
    """Tenant-scoped scheduling rules."""

    # Hard limits
    min_rest_hours: float = 11
    max_consecutive_nights: int = 2
    max_consecutive_days: int = 5
    max_weekly_hours: float = 52
    standard_weekly_hours: float = 40  # overtime threshold for fairness stats

    # Scoring emphasis (sum to 1.0)
    fairness_weight: float = 0.25
    preference_weight: float = 0.25
    seniority_weight: float = 0.25
    workload_weight: float = 0.25

    # Patterns
    dangerous_patterns: Tuple[DangerousPattern, ...] = field(default_factory=_general_patterns)
    avoid_dangerous_patterns: bool = True

    # Fairness
    target_gini: float = 0.3
    lookback_days: int = 14

    # Infeasible-slot policy
    allow_partial_solutions: bool = True
    emergency_override_enabled: bool = False

    # Identity
    profile: IndustryProfile = IndustryProfile.GENERAL
    tenant_id: Optional[str] = None
    version: int = 1

    def __post_init__(self):
        object.__setattr__(self, "dangerous_patterns", tuple(
            p if isinstance(p, DangerousPattern) else DangerousPattern.from_dict(p)
            for p in self.dangerous_patterns
        ))
        object.__setattr__(self, "profile", IndustryProfile(self.profile))

    @property
    def weights(self) -> Dict[str, float]:
        return {
            "fairness": self.fairness_weight,
            "preference": self.preference_weight,
            "seniority": self.seniority_weight,
            "workload": self.workload_weight,
        }

    def with_overrides(self, **changes) -> "RuleSet":
        """Return a validated next version with ``changes`` applied."""
        from .validated import validate_rules

        changes.setdefault("version", self.version + 1)
        return validate_rules(replace(self, **changes))

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        d = asdict(self)
        d["dangerous_patterns"] = [p.to_dict() for p in self.dangerous_patterns]
        d["profile"] = self.profile.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RuleSet":
        """Create from dictionary (unvalidated; see ``load_rules``)."""
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in d.items() if k in known}
        if "dangerous_patterns" in kwargs:
            kwargs["dangerous_patterns"] = tuple(
                DangerousPattern.from_dict(p) for p in kwargs["dangerous_patterns"]
            )
        return cls(**kwargs)


PROFILE_DEFAULTS: Dict[IndustryProfile, Dict[str, Any]] = {
    IndustryProfile.GENERAL: {
        "min_rest_hours": 8,
        "max_consecutive_nights": 2,
        "max_consecutive_days": 5,
        "max_weekly_hours": 52,
        "standard_weekly_hours": 40,
        "fairness_weight": 0.25,
        "preference_weight": 0.25,
        "seniority_weight": 0.25,
        "workload_weight": 0.25,
        "dangerous_patterns": _general_patterns(),
        "avoid_dangerous_patterns": False,
    },
    IndustryProfile.NURSING: {
        "min_rest_hours": 11,
        "max_consecutive_nights": 2,
        "max_consecutive_days": 4,
        "max_weekly_hours": 40,
        "standard_weekly_hours": 40,
        "fairness_weight": 0.3,
        "preference_weight": 0.3,
        "seniority_weight": 0.2,
        "workload_weight": 0.2,
        "dangerous_patterns": _nursing_patterns(),
        "avoid_dangerous_patterns": True,
    },
}


def default_rules(profile: IndustryProfile = IndustryProfile.GENERAL) -> RuleSet:
    """Unvalidated profile defaults."""
    profile = IndustryProfile(profile)
    return RuleSet(profile=profile, **PROFILE_DEFAULTS[profile])


def resolve_rules(
    profile: IndustryProfile = IndustryProfile.GENERAL,
    overrides: Optional[Dict[str, Any]] = None,
    tenant_id: Optional[str] = None,
) -> RuleSet:
    """
    Merge tenant overrides onto a profile and validate.

    Raises:
        ConfigValidation: if any merged value is out of range
    """
    from .validated import load_rules

    data = default_rules(profile).to_dict()
    data.update(overrides or {})
    if tenant_id is not None:
        data["tenant_id"] = tenant_id
    return load_rules(data)


@dataclass
class GenerationOptions:
    """Per-run toggles (generation_options)."""
    respect_preferences: bool = True
    minimize_consecutive_nights: bool = True
    balance_workload: bool = True
    avoid_dangerous_patterns: Optional[bool] = None  # None = inherit from RuleSet
    team_ids: Optional[List[str]] = None
    deadline_seconds: Optional[float] = None
    parallel_analysis: bool = False

    def avoids_patterns(self, rules: RuleSet) -> bool:
        if self.avoid_dangerous_patterns is None:
            return rules.avoid_dangerous_patterns
        return self.avoid_dangerous_patterns

    def caps_nights(self, rules: RuleSet) -> bool:
        return self.minimize_consecutive_nights or self.avoids_patterns(rules)

    def in_scope(self, team_id: str) -> bool:
        return not self.team_ids or team_id in self.team_ids

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "GenerationOptions":
        d = d or {}
        team_ids = d.get("team_ids")
        deadline = d.get("deadline_seconds")
        avoid = d.get("avoid_dangerous_patterns")
        return cls(
            respect_preferences=bool(d.get("respect_preferences", True)),
            minimize_consecutive_nights=bool(d.get("minimize_consecutive_nights", True)),
            balance_workload=bool(d.get("balance_workload", True)),
            avoid_dangerous_patterns=None if avoid is None else bool(avoid),
            team_ids=list(team_ids) if team_ids else None,
            deadline_seconds=float(deadline) if deadline is not None else None,
            parallel_analysis=bool(d.get("parallel_analysis", False)),
        )


def patterns_from_lists(lists: Iterable[Sequence]) -> Tuple[DangerousPattern, ...]:
    """Parse ``[["day", "night", "off"], ["night", "night", "night"]]`` style input."""
    return tuple(DangerousPattern.from_shifts(seq) for seq in lists)
