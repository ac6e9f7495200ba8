"""Core infrastructure: configuration, errors, logging and caching."""

from compliance_engine.core.cache import ResultCache, TTLCache
from compliance_engine.core.config import (
    ComplianceSettings,
    LoggingConfig,
    RuleEngineConfig,
    RuleLoaderConfig,
)
from compliance_engine.core.exceptions import (
    ConditionEvaluationError,
    ContextInvalidError,
    DateCalculationError,
    DependencyCycleError,
    InvalidRuleDefinitionError,
    RuleEngineError,
    RuleEvaluationError,
    RuleLoadingError,
    TaskGenerationError,
    TemplateRenderingError,
)
from compliance_engine.core.logging import configure_logging, get_logger

__all__ = [
    "ResultCache",
    "TTLCache",
    "ComplianceSettings",
    "LoggingConfig",
    "RuleEngineConfig",
    "RuleLoaderConfig",
    "RuleEngineError",
    "RuleLoadingError",
    "InvalidRuleDefinitionError",
    "ContextInvalidError",
    "ConditionEvaluationError",
    "DateCalculationError",
    "TemplateRenderingError",
    "DependencyCycleError",
    "RuleEvaluationError",
    "TaskGenerationError",
    "configure_logging",
    "get_logger",
]
