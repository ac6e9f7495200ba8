"""
Compliance Engine: rule-driven obligations for visa holders

Turns a snapshot of a person's immigration, academic and employment situation
into a personalized, time-ordered list of compliance tasks.

Main features:
- Declarative rules with nested AND/OR conditions
- Smart due dates: relative offsets, named formulas, recurrences
- Task templates with conditional and calculated placeholders
- Prerequisite ordering with cycle detection
- Pluggable rule sources: bundled, file, database, HTTP
"""

__version__ = "0.1.0"

from compliance_engine.context.builder import ContextBuilder
from compliance_engine.context.provider import InMemoryProfileProvider
from compliance_engine.core.config import ComplianceSettings, RuleEngineConfig
from compliance_engine.core.exceptions import RuleEngineError
from compliance_engine.engine.engine import RuleEngine
from compliance_engine.rules.loader import RuleLoader

__all__ = [
    "__version__",
    "ContextBuilder",
    "InMemoryProfileProvider",
    "ComplianceSettings",
    "RuleEngineConfig",
    "RuleEngineError",
    "RuleEngine",
    "RuleLoader",
]
