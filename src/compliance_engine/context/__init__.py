"""Subject context: models, providers and the context builder."""

from compliance_engine.context.builder import ContextBuilder, normalize_visa_type, parse_date
from compliance_engine.context.models import (
    AcademicInfo,
    ComplianceSummary,
    ContextFlags,
    DsoContact,
    EmploymentInfo,
    ImportantDates,
    LocationInfo,
    UserContext,
    VisaPhase,
    VisaType,
)
from compliance_engine.context.provider import InMemoryProfileProvider, ProfileProvider

__all__ = [
    "ContextBuilder",
    "normalize_visa_type",
    "parse_date",
    "AcademicInfo",
    "ComplianceSummary",
    "ContextFlags",
    "DsoContact",
    "EmploymentInfo",
    "ImportantDates",
    "LocationInfo",
    "UserContext",
    "VisaPhase",
    "VisaType",
    "InMemoryProfileProvider",
    "ProfileProvider",
]
