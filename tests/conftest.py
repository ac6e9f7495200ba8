"""Shared fixtures for compliance engine tests."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytest

from compliance_engine.context.builder import ContextBuilder
from compliance_engine.context.models import (
    AcademicInfo,
    ComplianceSummary,
    EmploymentInfo,
    ImportantDates,
    LocationInfo,
    UserContext,
    VisaPhase,
    VisaType,
)
from compliance_engine.context.provider import InMemoryProfileProvider
from compliance_engine.evaluation.models import GeneratedTask, TaskContextData
from compliance_engine.rules.models import RuleDefinition, TaskPriority

FIXED_NOW = datetime(2024, 3, 1, 9, 0, 0)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_rule(
    rule_id: str,
    conditions: Optional[List[Dict[str, Any]]] = None,
    priority: int = 50,
    depends_on: Optional[List[str]] = None,
    phases: Optional[List[str]] = None,
    visa_types: Optional[List[str]] = None,
    due_date_config: Optional[Dict[str, Any]] = None,
    **template: Any,
) -> RuleDefinition:
    """Build a rule from camelCase wire data, the way rule files describe them."""
    task_template: Dict[str, Any] = {
        "titleTemplate": f"Task {rule_id}",
        "descriptionTemplate": f"Description for {rule_id}",
        "category": "general",
        "priority": "medium",
        "dependsOn": depends_on or [],
    }
    if due_date_config is not None:
        task_template["dueDateConfig"] = due_date_config
    task_template.update(template)

    return RuleDefinition.model_validate({
        "id": rule_id,
        "name": f"Rule {rule_id}",
        "ruleGroup": "visa_status",
        "phase": phases or ["during_program"],
        "visaTypes": visa_types or ["F1"],
        "conditions": conditions if conditions is not None else [
            {"field": "academic.university", "operator": "exists"}
        ],
        "taskTemplate": task_template,
        "priority": priority,
    })


def make_task(
    rule_id: str,
    dependencies: Optional[List[str]] = None,
    completed: bool = False,
    priority: TaskPriority = TaskPriority.HIGH,
) -> GeneratedTask:
    return GeneratedTask(
        rule_id=rule_id,
        title=f"Task {rule_id}",
        description=f"Do {rule_id}",
        due_date=date(2024, 4, 1),
        deadline=datetime(2024, 4, 1, 23, 59, 59),
        category="general",
        priority=priority,
        phase=VisaPhase.DURING_PROGRAM,
        completed=completed,
        dependencies=dependencies or [],
        context_data=TaskContextData(user_phase=VisaPhase.DURING_PROGRAM),
    )


def f1_profile(**overrides: Any) -> Dict[str, Any]:
    """F-1 student in the middle of their program as of FIXED_NOW."""
    profile = {
        "email": "ana@example.edu",
        "name": "Ana Student",
        "visa_type": "F-1",
        "us_entry_date": "2022-08-20",
        "course_start_date": "2022-08-25",
        "graduation_date": "2025-05-15",
        "passport_expiry_date": "2030-01-01",
        "university": "State University",
        "university_id": "univ-001",
        "field_of_study": "Computer Science",
        "is_stem": True,
        "address": "12 College Ave",
    }
    profile.update(overrides)
    return profile


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def provider() -> InMemoryProfileProvider:
    provider = InMemoryProfileProvider()
    provider.add_subject("student-1", f1_profile())
    return provider


@pytest.fixture
def context_builder(provider: InMemoryProfileProvider) -> ContextBuilder:
    return ContextBuilder(provider, clock=fixed_clock)


@pytest.fixture
def stem_context() -> UserContext:
    return UserContext(
        user_id="student-1",
        visa_type=VisaType.F1,
        current_phase=VisaPhase.DURING_PROGRAM,
        dates=ImportantDates(
            us_entry_date=date(2024, 1, 1),
            graduation_date=date(2024, 8, 15),
            passport_expiry_date=date(2024, 6, 1),
        ),
        academic=AcademicInfo(
            university="State University",
            university_id="univ-001",
            is_stem=True,
            previous_universities=["Old College"],
        ),
        employment=EmploymentInfo(unemployment_days_used=30, max_unemployment_days=90),
        documents={"passportValid": True, "eadValid": False},
        location=LocationInfo(current_address="12 College Ave", last_moved=date(2024, 2, 25)),
        compliance=ComplianceSummary(risk_score=85),
    )
