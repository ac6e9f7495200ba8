"""
Rule definition models.

Rules are authored as camelCase JSON/YAML documents; every model accepts both
the camelCase wire names and the snake_case attribute names.

Core Components:
- RuleCondition: tagged union of LeafCondition and ConditionGroup
- SmartDateConfig: due-date strategy with a parsed offset
- RuleTaskTemplate: task text, priority, due date and prerequisites
- RuleDefinition: conditions plus template, scoped by visa type and phase
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from compliance_engine.context.models import VisaPhase, VisaType
from compliance_engine.core.offsets import Offset, parse_duration, parse_offset


class ConditionOperator(str, Enum):
    """Comparison operators available to leaf conditions"""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    LESS_THAN = "lessThan"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    IN = "in"
    NOT_IN = "notIn"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"
    BETWEEN = "between"
    REGEX = "regex"


class LogicOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class RuleGroup(str, Enum):
    """Topical grouping of rules"""
    VISA_STATUS = "visa_status"
    ACADEMIC = "academic"
    EMPLOYMENT = "employment"
    DOCUMENTS = "documents"
    DEADLINES = "deadlines"
    REPORTING = "reporting"
    TRAVEL = "travel"
    UNIVERSITY_SPECIFIC = "university_specific"
    EMERGENCY = "emergency"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DateType(str, Enum):
    """Due-date computation strategy"""
    FIXED = "fixed"
    RELATIVE = "relative"
    CALCULATED = "calculated"
    RECURRING = "recurring"


class RuleModel(BaseModel):
    """Base for rule models: camelCase wire names, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# CONDITIONS
# ============================================================================

class LeafCondition(RuleModel):
    """Single field comparison."""

    model_config = ConfigDict(extra="forbid")

    field: str = Field(..., min_length=1, description="Dot-separated context path")
    operator: ConditionOperator
    value: Any = None
    time_value: Optional[Offset] = Field(
        default=None, description="Compare dates against now + this duration"
    )
    # Chaining hint carried by rule files; top-level conditions always combine with AND.
    logic_operator: Optional[LogicOperator] = None

    @field_validator("time_value", mode="before")
    @classmethod
    def parse_time_value(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_serializer("time_value")
    def serialize_time_value(self, v: Optional[Offset]) -> Optional[str]:
        return str(v) if v is not None else None

    def describe(self) -> str:
        return f"{self.field} {self.operator.value} {self.value}"


class ConditionGroup(RuleModel):
    """Nested conditions combined with AND/OR, optionally negated."""

    model_config = ConfigDict(extra="forbid")

    nested: List["RuleCondition"] = Field(..., min_length=1)
    logic_operator: LogicOperator = LogicOperator.AND
    negate: bool = False

    def describe(self) -> str:
        joiner = f" {self.logic_operator.value} "
        inner = joiner.join(child.describe() for child in self.nested)
        return f"NOT ({inner})" if self.negate else f"({inner})"


def _condition_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "group" if "nested" in value else "leaf"
    return "group" if isinstance(value, ConditionGroup) else "leaf"


RuleCondition = Annotated[
    Union[
        Annotated[LeafCondition, Tag("leaf")],
        Annotated[ConditionGroup, Tag("group")],
    ],
    Discriminator(_condition_kind),
]

ConditionGroup.model_rebuild()


# ============================================================================
# TASK TEMPLATES
# ============================================================================

class SmartDateConfig(RuleModel):
    """How a task's due date is computed."""

    type: DateType
    base_date: Optional[str] = Field(default=None, description="Literal date or context field path")
    offset: Optional[Offset] = Field(default=None, description="Signed calendar offset, e.g. +90days")
    calculation: Optional[str] = Field(default=None, description="Named formula or recurrence cadence")
    business_days_only: bool = False
    exclude_holidays: bool = False
    min_date: Optional[date] = None
    max_date: Optional[date] = None

    @field_validator("offset", mode="before")
    @classmethod
    def parse_offset_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_offset(v)
        return v

    @field_serializer("offset")
    def serialize_offset(self, v: Optional[Offset]) -> Optional[str]:
        return str(v) if v is not None else None

    @model_validator(mode="after")
    def check_bounds(self) -> "SmartDateConfig":
        if self.min_date and self.max_date and self.min_date > self.max_date:
            raise ValueError("minDate must not be after maxDate")
        return self


class ReminderSchedule(RuleModel):
    intervals: List[int] = Field(default_factory=list, description="Days before the due date")
    custom_message: Optional[str] = None


class TaskTemplateOverride(RuleModel):
    """Partial template applied for one university."""

    title_template: Optional[str] = None
    description_template: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[TaskPriority] = None
    due_date_config: Optional[SmartDateConfig] = None
    depends_on: Optional[List[str]] = None
    reminder_schedule: Optional[ReminderSchedule] = None


class RuleTaskTemplate(RuleModel):
    """Blueprint for the task a matched rule generates."""

    title_template: str = Field(..., min_length=1)
    description_template: str = ""
    category: str = "general"
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date_config: Optional[SmartDateConfig] = None
    depends_on: List[str] = Field(default_factory=list)
    auto_complete_conditions: Optional[List[RuleCondition]] = None
    reminder_schedule: Optional[ReminderSchedule] = None
    university_overrides: Dict[str, TaskTemplateOverride] = Field(default_factory=dict)

    def with_override(self, override: TaskTemplateOverride) -> "RuleTaskTemplate":
        """Return a copy with the override's explicitly set fields applied."""
        changes = {
            name: getattr(override, name)
            for name in override.model_fields_set
            if getattr(override, name) is not None
        }
        return self.model_copy(update=changes)


# ============================================================================
# RULES
# ============================================================================

class RuleDefinition(RuleModel):
    """A declarative compliance rule."""

    id: str
    name: str
    description: str = ""
    rule_group: RuleGroup
    phases: List[VisaPhase] = Field(..., alias="phase")
    visa_types: List[VisaType]
    conditions: List[RuleCondition]
    task_template: RuleTaskTemplate
    priority: int = Field(default=50, ge=0, le=100)
    is_active: bool = True
    version: str = "1.0.0"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    university_specific: Optional[str] = Field(default=None, description="Restrict to one university id")
    tags: List[str] = Field(default_factory=list)

    @field_validator("phases", mode="before")
    @classmethod
    def wrap_single_phase(cls, v: Any) -> Any:
        if isinstance(v, (str, VisaPhase)):
            return [v]
        return v

    def is_applicable(
        self,
        visa_type: VisaType,
        phase: VisaPhase,
        university_id: Optional[str] = None,
    ) -> bool:
        """Active, matching visa type and phase, and inside its university scope."""
        if not self.is_active:
            return False
        if visa_type not in self.visa_types:
            return False
        if phase not in self.phases and VisaPhase.GENERAL not in self.phases:
            return False
        if self.university_specific and self.university_specific != university_id:
            return False
        return True
