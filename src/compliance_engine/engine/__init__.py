"""Rule engine orchestration and result models."""

from compliance_engine.engine.engine import RuleEngine, TaskStore
from compliance_engine.engine.models import PerformanceSummary, RuleEngineResult, RuleEvaluationResult

__all__ = [
    "RuleEngine",
    "TaskStore",
    "PerformanceSummary",
    "RuleEngineResult",
    "RuleEvaluationResult",
]
