"""
Pydantic Validated Models
=========================
Validation layer for rule configuration.

Usage:
    from rostering.models.validated import load_rules

    rules = load_rules({"min_rest_hours": 11, "max_weekly_hours": 40})

Every failure surfaces as ``ConfigValidation`` with the pydantic error list in
``detail["errors"]``.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from rostering.errors import ConfigValidation

from .rules import DangerousPattern, IndustryProfile, RuleSet

WEIGHT_TOLERANCE = 1e-6


class ValidatedPattern(BaseModel):
    """A dangerous pattern as accepted at the configuration boundary."""
    name: str = Field(default="pattern", min_length=1)
    sequence: List[str] = Field(default_factory=list)
    run_of: Optional[str] = None
    min_run: int = Field(default=0, ge=0, le=31)

    @model_validator(mode="after")
    def validate_shape(self):
        self.to_pattern()  # raises ValueError on a bad shape
        return self

    def to_pattern(self) -> DangerousPattern:
        return DangerousPattern(
            name=self.name,
            sequence=tuple(self.sequence),
            run_of=self.run_of,
            min_run=self.min_run,
        )


class ValidatedRuleSet(BaseModel):
    """
    Pydantic-validated rule set.

    Use this for strict validation at configuration boundaries.
    Can be converted to/from the dataclass RuleSet.
    """
    min_rest_hours: float = Field(default=11, ge=8, le=24, description="Minimum rest between shifts")
    max_consecutive_nights: int = Field(default=2, ge=1, le=7)
    max_consecutive_days: int = Field(default=5, ge=1, le=14)
    max_weekly_hours: float = Field(default=52, ge=20, le=60)
    standard_weekly_hours: float = Field(default=40, ge=20, le=60)

    fairness_weight: float = Field(default=0.25, ge=0, le=1)
    preference_weight: float = Field(default=0.25, ge=0, le=1)
    seniority_weight: float = Field(default=0.25, ge=0, le=1)
    workload_weight: float = Field(default=0.25, ge=0, le=1)

    dangerous_patterns: Optional[List[ValidatedPattern]] = None  # None = RuleSet defaults
    avoid_dangerous_patterns: bool = True

    target_gini: float = Field(default=0.3, ge=0, le=1)
    lookback_days: int = Field(default=14, ge=1, le=56)

    allow_partial_solutions: bool = True
    emergency_override_enabled: bool = False

    profile: IndustryProfile = IndustryProfile.GENERAL
    tenant_id: Optional[str] = None
    version: int = Field(default=1, ge=1)

    @field_validator("dangerous_patterns", mode="before")
    @classmethod
    def parse_patterns(cls, v: Any) -> Any:
        """Accept plain shift lists alongside pattern dicts."""
        parsed = []
        if v is None:
            return None
        for item in v:
            if isinstance(item, DangerousPattern):
                parsed.append(item.to_dict())
            elif isinstance(item, (list, tuple)):
                parsed.append(DangerousPattern.from_shifts(item).to_dict())
            else:
                parsed.append(item)
        return parsed

    @model_validator(mode="after")
    def validate_model(self):
        """Cross-field validation."""
        total = self.fairness_weight + self.preference_weight + self.seniority_weight + self.workload_weight
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"weights must sum to 1.0 (got {total:.4f})")
        if self.max_consecutive_nights > self.max_consecutive_days:
            raise ValueError("max_consecutive_nights cannot exceed max_consecutive_days")
        if self.standard_weekly_hours > self.max_weekly_hours:
            raise ValueError("standard_weekly_hours cannot exceed max_weekly_hours")
        return self

    def to_dataclass(self) -> RuleSet:
        """Convert to dataclass RuleSet for the engine."""
        data = self.model_dump()
        if self.dangerous_patterns is None:
            data.pop("dangerous_patterns")
        else:
            data["dangerous_patterns"] = tuple(p.to_pattern() for p in self.dangerous_patterns)
        return RuleSet(**data)

    @classmethod
    def from_dataclass(cls, rules: RuleSet) -> "ValidatedRuleSet":
        """Create from dataclass RuleSet."""
        return cls(**rules.to_dict())


def _errors_of(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]) or "__root__", "message": err["msg"]}
        for err in exc.errors()
    ]


def load_rules(data: Dict[str, Any]) -> RuleSet:
    """
    Validate a mapping and build a RuleSet.

    Raises:
        ConfigValidation: on any out-of-range or malformed value
    """
    try:
        return ValidatedRuleSet(**data).to_dataclass()
    except ValidationError as e:
        errors = _errors_of(e)
        fields = ", ".join(err["field"] for err in errors)
        raise ConfigValidation(f"Invalid rule configuration: {fields}", detail={"errors": errors}) from e


def validate_rules(rules: RuleSet) -> RuleSet:
    """Check an existing RuleSet against the bounds, returning it unchanged."""
    load_rules(rules.to_dict())
    return rules
