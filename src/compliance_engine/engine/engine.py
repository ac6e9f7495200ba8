"""
Rule Engine Core - compliance task generation

Orchestrates rule evaluation for a subject: builds the context, selects the
applicable rules, evaluates their conditions, turns matches into tasks with
computed due dates and rendered text, and orders the tasks by prerequisites.

Key Features:
- Explicit construction with injected collaborators
- Rule set replaced atomically and snapshotted per evaluation
- Per-rule failure isolation with errors collected on the result
- Dependency cycles degrade to the unordered batch
- Per-subject result caching with a TTL
- Concurrent evaluation of several subjects
"""

import asyncio
import time
from datetime import datetime, time as dt_time, timedelta
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable

from compliance_engine.context.builder import ContextBuilder
from compliance_engine.context.models import UserContext
from compliance_engine.core.cache import ResultCache, TTLCache
from compliance_engine.core.config import RuleEngineConfig
from compliance_engine.core.exceptions import (
    DependencyCycleError,
    InvalidRuleDefinitionError,
    RuleEngineError,
    RuleEvaluationError,
    TaskGenerationError,
)
from compliance_engine.core.logging import get_logger
from compliance_engine.engine.models import PerformanceSummary, RuleEngineResult, RuleEvaluationResult
from compliance_engine.evaluation.dates import DateCalculator
from compliance_engine.evaluation.dependencies import DependencyResolver
from compliance_engine.evaluation.evaluator import RuleEvaluator
from compliance_engine.evaluation.models import ConditionResult, GeneratedTask, TaskContextData
from compliance_engine.evaluation.templates import TemplateRenderer, extract_placeholders
from compliance_engine.rules.loader import RuleLoader, deduplicate_rules
from compliance_engine.rules.models import DateType, RuleDefinition, RuleTaskTemplate
from compliance_engine.rules.validation import RuleValidator

logger = get_logger("rule_engine")

END_OF_DAY = dt_time(23, 59, 59)


@runtime_checkable
class TaskStore(Protocol):
    """Persists generated tasks."""

    async def save_tasks(self, subject_id: str, tasks: List[GeneratedTask]) -> None:
        """
        Save a subject's generated tasks.

        Args:
            subject_id: Subject identifier
            tasks: Tasks in resolved order
        """
        ...


class RuleEngine:
    """
    Compliance rule engine.

    Args:
        context_builder: Builds subject contexts
        config: Feature gates and limits
        evaluator: Condition evaluator
        date_calculator: Due-date calculator
        template_renderer: Title/description renderer
        dependency_resolver: Task ordering
        validator: Structural rule validation
        cache: Result cache keyed by subject
        task_store: Optional persistence for generated tasks
        clock: Returns the current time; shared with default collaborators
    """

    def __init__(
        self,
        context_builder: ContextBuilder,
        config: Optional[RuleEngineConfig] = None,
        evaluator: Optional[RuleEvaluator] = None,
        date_calculator: Optional[DateCalculator] = None,
        template_renderer: Optional[TemplateRenderer] = None,
        dependency_resolver: Optional[DependencyResolver] = None,
        validator: Optional[RuleValidator] = None,
        cache: Optional[ResultCache] = None,
        task_store: Optional[TaskStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._clock = clock or datetime.now
        self.config = config or RuleEngineConfig()
        self.context_builder = context_builder
        self.evaluator = evaluator or RuleEvaluator(clock=self._clock)
        self.date_calculator = date_calculator or DateCalculator(clock=self._clock)
        self.template_renderer = template_renderer or TemplateRenderer(clock=self._clock)
        self.dependency_resolver = dependency_resolver or DependencyResolver()
        self.validator = validator or RuleValidator()
        self.cache = cache or TTLCache(ttl=self.config.cache_ttl_seconds)
        self.task_store = task_store

        self._rules: Mapping[str, RuleDefinition] = MappingProxyType({})

    @classmethod
    async def from_loader(
        cls, loader: RuleLoader, context_builder: ContextBuilder, **kwargs: Any
    ) -> "RuleEngine":
        """Build an engine and load every rule the loader provides."""
        engine = cls(context_builder, **kwargs)
        engine.load_rules(await loader.load_all())
        return engine

    # ========================================================================
    # RULE SET
    # ========================================================================

    def load_rules(self, definitions: Sequence[RuleDefinition]) -> int:
        """
        Validate definitions and replace the active rule set.

        Returns:
            Number of distinct rules now active

        Raises:
            InvalidRuleDefinitionError: If any definition is structurally invalid
        """
        for rule in definitions:
            report = self.validator.validate_rule(rule)
            if not report.is_valid:
                raise InvalidRuleDefinitionError(
                    f"Invalid rule {rule.id}: {'; '.join(report.errors)}",
                    errors=report.errors,
                    rule_id=rule.id,
                )

        ordered = sorted(deduplicate_rules(definitions), key=lambda rule: -rule.priority)
        self._rules = MappingProxyType({rule.id: rule for rule in ordered})
        self.cache.clear()

        logger.info("Rule set replaced", rules=len(ordered), received=len(definitions))
        return len(ordered)

    def get_rules_count(self) -> int:
        return len(self._rules)

    def get_rule(self, rule_id: str) -> Optional[RuleDefinition]:
        return self._rules.get(rule_id)

    def get_rules(self) -> List[RuleDefinition]:
        return list(self._rules.values())

    def clear_rules(self) -> None:
        self._rules = MappingProxyType({})
        self.cache.clear()

    def get_config(self) -> RuleEngineConfig:
        return self.config

    def update_config(self, **changes: Any) -> RuleEngineConfig:
        """Apply validated config changes and drop cached results."""
        self.config = RuleEngineConfig.model_validate({**self.config.model_dump(), **changes})
        self.cache.clear()
        return self.config

    def invalidate_cache(self, subject_id: Optional[str] = None) -> None:
        if subject_id is None:
            self.cache.clear()
        else:
            self.cache.invalidate(self._cache_key(subject_id))

    @staticmethod
    def _cache_key(subject_id: str) -> str:
        return f"evaluation:{subject_id}"

    def get_applicable_rules(
        self, context: UserContext, rules: Optional[Mapping[str, RuleDefinition]] = None
    ) -> List[RuleDefinition]:
        """Active rules matching the context's visa type, phase and university."""
        rules = self._rules if rules is None else rules
        return [
            rule for rule in rules.values()
            if rule.is_applicable(
                context.visa_type, context.current_phase, context.academic.university_id
            )
        ]

    # ========================================================================
    # EVALUATION
    # ========================================================================

    async def evaluate_for_subject(self, subject_id: str) -> RuleEngineResult:
        """
        Evaluate every applicable rule for one subject.

        Raises:
            ContextInvalidError: If the subject context cannot be built
        """
        rules = self._rules
        started = time.perf_counter()
        cache_key = self._cache_key(subject_id)

        if self.config.cache_evaluation_results:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Evaluation served from cache", subject_id=subject_id)
                return cached.model_copy(update={"from_cache": True})

        context = await self.context_builder.build(subject_id)
        evaluated_at = self._clock()
        applicable = self.get_applicable_rules(context, rules)

        rule_results: List[RuleEvaluationResult] = []
        tasks: List[GeneratedTask] = []
        errors: List[str] = []

        for rule in applicable:
            try:
                result = self.evaluate_rule(rule, context, evaluated_at)
            except RuleEvaluationError as e:
                errors.append(e.message)
                logger.warning("Rule evaluation failed", rule_id=rule.id, subject_id=subject_id, error=e.message)
                continue

            rule_results.append(result)
            if result.generated_task is not None:
                tasks.append(result.generated_task)

        if self.config.enable_dependencies and tasks:
            try:
                tasks = self.dependency_resolver.resolve(tasks)
            except DependencyCycleError as e:
                errors.append(f"Dependency resolution failed: {e.message}")
                logger.warning("Dependency resolution failed", subject_id=subject_id, cycle=e.cycle)

        tasks = tasks[: self.config.max_tasks_per_evaluation]

        performance = None
        if self.config.performance_tracking:
            performance = PerformanceSummary(
                rules_evaluated=len(applicable),
                rules_matched=sum(1 for result in rule_results if result.matched),
                tasks_generated=len(tasks),
                execution_time_ms=round((time.perf_counter() - started) * 1000, 3),
            )

        result = RuleEngineResult(
            subject_id=subject_id,
            evaluated_at=evaluated_at,
            context=context,
            rule_results=rule_results,
            generated_tasks=tasks,
            errors=errors,
            performance=performance,
        )

        if self.config.cache_evaluation_results:
            self.cache.set(cache_key, result, ttl=self.config.cache_ttl_seconds)

        logger.info(
            "Subject evaluated",
            subject_id=subject_id,
            phase=context.current_phase.value,
            rules=len(applicable),
            tasks=len(tasks),
            errors=len(errors),
        )
        return result

    async def evaluate_for_subjects(
        self, subject_ids: Sequence[str]
    ) -> Dict[str, Union[RuleEngineResult, RuleEngineError]]:
        """Evaluate several subjects concurrently; engine errors are returned per subject."""
        results = await asyncio.gather(
            *(self.evaluate_for_subject(subject_id) for subject_id in subject_ids),
            return_exceptions=True,
        )
        outcome: Dict[str, Union[RuleEngineResult, RuleEngineError]] = {}
        for subject_id, result in zip(subject_ids, results):
            if isinstance(result, BaseException) and not isinstance(result, RuleEngineError):
                raise result
            outcome[subject_id] = result
        return outcome

    def evaluate_rule(
        self, rule: RuleDefinition, context: UserContext, evaluated_at: Optional[datetime] = None
    ) -> RuleEvaluationResult:
        """
        Evaluate one rule and generate its task when every condition passes.

        Raises:
            RuleEvaluationError: Wrapping any failure while evaluating or generating the task
        """
        try:
            condition_results = self.evaluator.evaluate(rule.conditions, context)
            matched = all(result.passed for result in condition_results)
            task = self.generate_task(rule, context, condition_results) if matched else None
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            raise RuleEvaluationError(
                f"Rule {rule.id} evaluation failed: {message}",
                rule_id=rule.id,
                subject_id=context.user_id,
            ) from e

        if self.config.debug_mode:
            logger.debug(
                "Rule evaluated",
                rule_id=rule.id,
                matched=matched,
                reasons=[result.reason for result in condition_results],
            )

        return RuleEvaluationResult(
            rule_id=rule.id,
            matched=matched,
            condition_results=condition_results,
            generated_task=task,
            evaluated_at=evaluated_at or self._clock(),
            skip_reason=None if matched else "Conditions not met",
        )

    # ========================================================================
    # TASK GENERATION
    # ========================================================================

    def resolve_template(self, rule: RuleDefinition, context: UserContext) -> RuleTaskTemplate:
        template = rule.task_template
        university_id = context.academic.university_id
        if (
            self.config.enable_university_overrides
            and university_id
            and university_id in template.university_overrides
        ):
            return template.with_override(template.university_overrides[university_id])
        return template

    def generate_task(
        self,
        rule: RuleDefinition,
        context: UserContext,
        condition_results: Optional[List[ConditionResult]] = None,
    ) -> GeneratedTask:
        """
        Turn a matched rule into a task.

        Raises:
            DateCalculationError: If the due date cannot be computed
            TemplateRenderingError: If the title or description cannot be rendered
        """
        template = self.resolve_template(rule, context)
        date_config = template.due_date_config

        if self.config.enable_smart_dates and date_config is not None:
            due_date = self.date_calculator.compute_due_date(date_config, context)
            calculation = self.date_calculator.describe(date_config)
        else:
            due_date = self._clock().date() + timedelta(days=self.config.default_due_offset_days)
            calculation = f"default: +{self.config.default_due_offset_days} days"

        is_recurring = date_config is not None and date_config.type is DateType.RECURRING
        phase = context.current_phase if context.current_phase in rule.phases else rule.phases[0]

        return GeneratedTask(
            rule_id=rule.id,
            title=self.template_renderer.render(template.title_template, context),
            description=self.template_renderer.render(template.description_template, context),
            due_date=due_date,
            deadline=datetime.combine(due_date, END_OF_DAY),
            category=template.category,
            priority=template.priority,
            phase=phase,
            completed=rule.id in context.compliance.completed_rule_ids,
            dependencies=list(template.depends_on),
            auto_complete_when=(
                template.auto_complete_conditions if self.config.enable_auto_completion else None
            ),
            is_recurring=is_recurring,
            recurring_interval=date_config.calculation if is_recurring else None,
            reminder_days=list(template.reminder_schedule.intervals) if template.reminder_schedule else [],
            context_data=TaskContextData(
                user_phase=context.current_phase,
                trigger_conditions=[condition.describe() for condition in rule.conditions],
                smart_date_calculation=calculation,
                placeholder_values=self._placeholder_values(template, context),
            ),
        )

    def _placeholder_values(self, template: RuleTaskTemplate, context: UserContext) -> Dict[str, str]:
        placeholders = extract_placeholders(template.title_template)
        placeholders += extract_placeholders(template.description_template)
        return {
            placeholder: self.template_renderer.render(f"{{{placeholder}}}", context)
            for placeholder in dict.fromkeys(placeholders)
        }

    def check_auto_completion(self, task: GeneratedTask, context: UserContext) -> bool:
        """True when the task carries auto-completion conditions and all of them hold."""
        if not task.auto_complete_when:
            return False
        return self.evaluator.matches(task.auto_complete_when, context)

    async def save_tasks(self, result: RuleEngineResult) -> int:
        """
        Hand generated tasks to the task store.

        Raises:
            TaskGenerationError: If no store is configured or saving fails
        """
        if self.task_store is None:
            raise TaskGenerationError("No task store configured", subject_id=result.subject_id)
        try:
            await self.task_store.save_tasks(result.subject_id, list(result.generated_tasks))
        except Exception as e:
            raise TaskGenerationError(
                f"Saving tasks failed: {e}", subject_id=result.subject_id
            ) from e

        logger.info("Tasks saved", subject_id=result.subject_id, tasks=len(result.generated_tasks))
        return len(result.generated_tasks)
