"""
Evaluation output models: condition diagnostics and generated tasks.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from compliance_engine.context.models import VisaPhase
from compliance_engine.rules.models import RuleCondition, TaskPriority


class OutputModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConditionResult(OutputModel):
    """Diagnostic record for one evaluated condition or group."""

    condition: RuleCondition
    passed: bool
    actual_value: Any = None
    expected_value: Any = None
    reason: str = ""
    nested_results: List["ConditionResult"] = Field(default_factory=list)


class TaskContextData(OutputModel):
    """Why and how a task was generated."""

    user_phase: VisaPhase
    trigger_conditions: List[str] = Field(default_factory=list)
    smart_date_calculation: str = ""
    placeholder_values: Dict[str, Any] = Field(default_factory=dict)


class GeneratedTask(OutputModel):
    """A concrete obligation produced by a matched rule."""

    rule_id: str
    title: str
    description: str
    due_date: date
    deadline: datetime
    category: str
    priority: TaskPriority
    phase: VisaPhase
    completed: bool = False
    dependencies: List[str] = Field(default_factory=list)
    auto_complete_when: Optional[List[RuleCondition]] = None
    is_recurring: bool = False
    recurring_interval: Optional[str] = None
    reminder_days: List[int] = Field(default_factory=list)
    is_blocked: bool = False
    blocked_by: List[str] = Field(default_factory=list)
    context_data: TaskContextData
