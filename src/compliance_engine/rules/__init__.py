"""
Rule definitions.

Loading lives in ``compliance_engine.rules.loader`` and
``compliance_engine.rules.sources``; structural checks in
``compliance_engine.rules.validation``.
"""

from compliance_engine.rules.models import (
    ConditionGroup,
    ConditionOperator,
    DateType,
    LeafCondition,
    LogicOperator,
    ReminderSchedule,
    RuleCondition,
    RuleDefinition,
    RuleGroup,
    RuleTaskTemplate,
    SmartDateConfig,
    TaskPriority,
    TaskTemplateOverride,
)

__all__ = [
    "ConditionGroup",
    "ConditionOperator",
    "DateType",
    "LeafCondition",
    "LogicOperator",
    "ReminderSchedule",
    "RuleCondition",
    "RuleDefinition",
    "RuleGroup",
    "RuleTaskTemplate",
    "SmartDateConfig",
    "TaskPriority",
    "TaskTemplateOverride",
]
