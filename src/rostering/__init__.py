"""
Rostering Engine
================
Deterministic multi-tenant shift scheduling with explainable assignments,
fairness metrics and pattern safety analysis.
"""
from .errors import (
    ConfigValidation,
    ConstraintContradiction,
    GenerationCancelled,
    GenerationError,
    GenerationTimeout,
    InvalidRange,
    NoEligibleEmployees,
    SchedulingError,
)
from .models import (
    CoverageRequirement,
    Employee,
    GenerationOptions,
    GenerationResult,
    IndustryProfile,
    RuleSet,
    ScheduleAssignment,
    ShiftType,
    load_rules,
    resolve_rules,
)
from .solver import CancellationToken, SchedulingEngine, recommend_candidates

__version__ = "1.0.0"

__all__ = [
    "SchedulingEngine", "CancellationToken", "recommend_candidates",
    "Employee", "CoverageRequirement", "ShiftType", "RuleSet", "IndustryProfile",
    "GenerationOptions", "GenerationResult", "ScheduleAssignment",
    "load_rules", "resolve_rules",
    "SchedulingError", "ConfigValidation", "InvalidRange", "NoEligibleEmployees",
    "ConstraintContradiction", "GenerationTimeout", "GenerationCancelled", "GenerationError",
]
