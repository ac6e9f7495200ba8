"""Condition evaluation, due-date computation, template rendering and task ordering."""

from compliance_engine.evaluation.dates import DateCalculator, DateFormula, RecurrenceCadence
from compliance_engine.evaluation.dependencies import DependencyResolver, find_cycle
from compliance_engine.evaluation.evaluator import RuleEvaluator, resolve_path
from compliance_engine.evaluation.models import ConditionResult, GeneratedTask, TaskContextData
from compliance_engine.evaluation.templates import TemplateRenderer

__all__ = [
    "DateCalculator",
    "DateFormula",
    "RecurrenceCadence",
    "DependencyResolver",
    "find_cycle",
    "RuleEvaluator",
    "resolve_path",
    "ConditionResult",
    "GeneratedTask",
    "TaskContextData",
    "TemplateRenderer",
]
