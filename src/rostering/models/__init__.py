# rostering/models - Data models for the scheduling engine
from .coverage import CoverageGap, CoverageRequirement, coverage_frame, expand_slots
from .employee import Employee, ShiftRecord
from .rules import (
    DangerousPattern,
    GenerationOptions,
    IndustryProfile,
    RuleSet,
    default_rules,
    resolve_rules,
)
from .schedule import (
    AssignmentReason,
    ErrorDetail,
    GenerationResult,
    ReasonCategory,
    ScheduleAssignment,
    ScheduleStatus,
    SlotResult,
)
from .shift import SHIFT_ORDER, ShiftType
from .validated import ValidatedRuleSet, load_rules, validate_rules

__all__ = [
    "Employee", "ShiftRecord",
    "ShiftType", "SHIFT_ORDER",
    "CoverageRequirement", "CoverageGap", "expand_slots", "coverage_frame",
    "RuleSet", "DangerousPattern", "GenerationOptions", "IndustryProfile",
    "default_rules", "resolve_rules",
    "ValidatedRuleSet", "load_rules", "validate_rules",
    "ScheduleAssignment", "AssignmentReason", "ReasonCategory",
    "ScheduleStatus", "SlotResult", "ErrorDetail", "GenerationResult",
]
