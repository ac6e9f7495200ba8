"""
Rule engine result models.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from compliance_engine.context.models import UserContext
from compliance_engine.evaluation.models import ConditionResult, GeneratedTask, OutputModel


class RuleEvaluationResult(OutputModel):
    """Outcome of evaluating one rule for one subject."""

    rule_id: str
    matched: bool
    condition_results: List[ConditionResult] = Field(default_factory=list)
    generated_task: Optional[GeneratedTask] = None
    evaluated_at: datetime
    skip_reason: Optional[str] = None


class PerformanceSummary(OutputModel):
    rules_evaluated: int = 0
    rules_matched: int = 0
    tasks_generated: int = 0
    execution_time_ms: float = 0.0


class RuleEngineResult(OutputModel):
    """Everything one evaluation produced."""

    subject_id: str
    evaluated_at: datetime
    context: UserContext
    rule_results: List[RuleEvaluationResult] = Field(default_factory=list)
    generated_tasks: List[GeneratedTask] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    performance: Optional[PerformanceSummary] = None
    from_cache: bool = False
