# rostering/solver - Scheduling engine and analysis
from .base import CancellationToken, RunBudget, RunControl
from .constraints import HardConstraints, RosterState
from .engine import AssignmentSink, SchedulingEngine, validate_range
from .fairness import FairnessEngine, FairnessMetrics, gini
from .patterns import EmployeePatternReport, PatternRisk, PatternSafetyAnalyzer
from .recommend import RankedCandidate, recommend_candidates
from .scoring import CandidateScorer, ScoreBreakdown, ScoringContext, ScoringFactor
from .stats import EmployeeStats, calculate_employee_stats, stats_to_dataframe

__all__ = [
    "SchedulingEngine", "AssignmentSink", "validate_range",
    "CancellationToken", "RunBudget", "RunControl",
    "HardConstraints", "RosterState",
    "CandidateScorer", "ScoreBreakdown", "ScoringContext", "ScoringFactor",
    "PatternSafetyAnalyzer", "PatternRisk", "EmployeePatternReport",
    "FairnessEngine", "FairnessMetrics", "gini",
    "recommend_candidates", "RankedCandidate",
    "EmployeeStats", "calculate_employee_stats", "stats_to_dataframe",
]
