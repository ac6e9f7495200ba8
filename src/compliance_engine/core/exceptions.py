"""
Custom exceptions for the compliance rule engine.

Exception hierarchy:
- RuleEngineError (base)
  ├── RuleLoadingError
  ├── InvalidRuleDefinitionError
  ├── ContextInvalidError
  ├── ConditionEvaluationError
  ├── DateCalculationError
  ├── TemplateRenderingError
  ├── DependencyCycleError
  ├── RuleEvaluationError
  └── TaskGenerationError
"""

from typing import Any, Dict, List, Optional


class RuleEngineError(Exception):
    """Base exception for all rule engine errors."""

    default_code: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        rule_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.rule_id = rule_id
        self.subject_id = subject_id
        self.context = context or {}
        if rule_id:
            self.context.setdefault("rule_id", rule_id)
        if subject_id:
            self.context.setdefault("subject_id", subject_id)

    def __str__(self) -> str:
        base_msg = self.message
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg = f"{base_msg} (Context: {context_str})"
        return base_msg


class RuleLoadingError(RuleEngineError):
    """A rule source could not be read or parsed."""

    default_code = "RULE_LOADING_FAILED"

    def __init__(self, message: str, source: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", None) or {}
        if source:
            context["source"] = source
        self.source = source
        super().__init__(message, context=context, **kwargs)


class InvalidRuleDefinitionError(RuleEngineError):
    """A rule definition failed structural validation."""

    default_code = "INVALID_RULE_DEFINITION"

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs: Any) -> None:
        self.errors = errors or []
        super().__init__(message, **kwargs)


class ContextInvalidError(RuleEngineError):
    """The subject context could not be built."""

    default_code = "USER_CONTEXT_INVALID"


class ConditionEvaluationError(RuleEngineError):
    """A condition could not be evaluated (bad operand shape, unsafe pattern)."""

    default_code = "CONDITION_EVALUATION_FAILED"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        operator: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if field:
            context["field"] = field
        if operator:
            context["operator"] = operator
        super().__init__(message, context=context, **kwargs)


class DateCalculationError(RuleEngineError):
    """A due date could not be computed."""

    default_code = "DATE_CALCULATION_FAILED"

    def __init__(self, message: str, date_type: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", None) or {}
        if date_type:
            context["date_type"] = date_type
        super().__init__(message, context=context, **kwargs)


class TemplateRenderingError(RuleEngineError):
    """A task template could not be rendered."""

    default_code = "TEMPLATE_RENDERING_FAILED"


class DependencyCycleError(RuleEngineError):
    """Task prerequisites form a cycle."""

    default_code = "DEPENDENCY_CYCLE_DETECTED"

    def __init__(self, message: str, cycle: Optional[List[str]] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", None) or {}
        self.cycle = cycle or []
        if self.cycle:
            context["cycle"] = " -> ".join(self.cycle)
        super().__init__(message, context=context, **kwargs)


class RuleEvaluationError(RuleEngineError):
    """A rule failed while being evaluated."""

    default_code = "RULE_EVALUATION_FAILED"


class TaskGenerationError(RuleEngineError):
    """A matched rule could not be turned into a task, or tasks could not be saved."""

    default_code = "TASK_GENERATION_FAILED"
