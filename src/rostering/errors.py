"""
Error Taxonomy
==============
Exceptions raised by the rostering engine.

Every error carries a machine-readable ``kind``, a ``detail`` dict (slot,
constraint, employees considered...) and an optional ``partial`` payload with
whatever the run had produced before it stopped. Coverage gaps are not errors:
they are recorded on the result (see ``rostering.models.coverage.CoverageGap``).
"""
from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class for all engine errors."""

    kind = "scheduling_error"

    def __init__(
        self,
        message: str,
        detail: Optional[Dict[str, Any]] = None,
        partial: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.detail = dict(detail or {})
        self.partial = partial

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "detail": self.detail,
        }


class ConfigValidation(SchedulingError):
    """Rule values are malformed or out of range."""

    kind = "config_validation"

    @property
    def errors(self) -> list:
        return list(self.detail.get("errors", []))


class InvalidRange(SchedulingError):
    """Bad date span (start >= end, window too long, requirement out of range)."""

    kind = "invalid_range"


class NoEligibleEmployees(SchedulingError):
    """The scoped roster is empty."""

    kind = "no_eligible_employees"


class ConstraintContradiction(SchedulingError):
    """Hard constraints leave no candidate for a required slot and no relaxation is enabled."""

    kind = "constraint_contradiction"


class GenerationTimeout(SchedulingError):
    """The caller-supplied deadline expired before every slot was resolved."""

    kind = "generation_timeout"


class GenerationCancelled(SchedulingError):
    """The caller cancelled the run between slots."""

    kind = "generation_cancelled"


class GenerationError(SchedulingError):
    """Wraps an unexpected failure (collaborator or internal)."""

    kind = "generation_error"
