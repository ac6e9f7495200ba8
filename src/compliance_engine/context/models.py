"""
Subject context models.

A ``UserContext`` is the immutable snapshot of one subject's situation that
rules are evaluated against. Attribute names are snake_case; rule field paths
and templates address them by their camelCase aliases (``dates.usEntryDate``,
``academic.isSTEM``).
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class VisaType(str, Enum):
    """Immigration status categories"""
    F1 = "F1"
    J1 = "J1"
    H1B = "H1B"
    OPT = "OPT"
    STEM_OPT = "STEM_OPT"
    OTHER = "Other"


class VisaPhase(str, Enum):
    """Lifecycle stage of a subject's status"""
    PRE_ARRIVAL = "pre_arrival"
    INITIAL_ENTRY = "initial_entry"
    DURING_PROGRAM = "during_program"
    PRE_GRADUATION = "pre_graduation"
    POST_GRADUATION = "post_graduation"
    OPT_APPLICATION = "opt_application"
    OPT_ACTIVE = "opt_active"
    STEM_APPLICATION = "stem_application"
    STEM_ACTIVE = "stem_active"
    STATUS_CHANGE = "status_change"
    DEPARTURE_PREP = "departure_prep"
    GENERAL = "general"


class ContextRecord(BaseModel):
    """Base for immutable context records with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ImportantDates(ContextRecord):
    us_entry_date: Optional[date] = None
    visa_expiry_date: Optional[date] = None
    passport_expiry_date: Optional[date] = None
    course_start_date: Optional[date] = None
    graduation_date: Optional[date] = None
    employment_start_date: Optional[date] = None
    employment_end_date: Optional[date] = None
    opt_start_date: Optional[date] = None
    opt_end_date: Optional[date] = None
    stem_opt_end_date: Optional[date] = None
    i20_expiry_date: Optional[date] = None
    last_address_update: Optional[date] = None


class DsoContact(ContextRecord):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class AcademicInfo(ContextRecord):
    university: Optional[str] = None
    university_id: Optional[str] = None
    field_of_study: Optional[str] = None
    degree_level: Optional[str] = None
    cip_code: Optional[str] = None
    is_stem: bool = Field(default=False, alias="isSTEM")
    gpa: Optional[float] = None
    credits_completed: Optional[int] = None
    total_credits: Optional[int] = None
    is_transfer_student: bool = False
    previous_universities: List[str] = Field(default_factory=list)
    dso_contact: Optional[DsoContact] = None


class EmploymentInfo(ContextRecord):
    status: str = "Not Employed"
    employer: Optional[str] = None
    job_title: Optional[str] = None
    work_location: Optional[str] = None
    is_field_related: Optional[bool] = None
    authorization_type: Optional[str] = None
    ead_number: Optional[str] = None
    unemployment_days_used: int = 0
    max_unemployment_days: int = 0
    e_verify_compliant: Optional[bool] = None
    new_job_started: bool = False
    job_reported_to_dso: bool = Field(default=False, alias="jobReportedToDSO")
    opt_application_submitted: bool = False
    stem_opt_application_submitted: bool = False


class LocationInfo(ContextRecord):
    current_address: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    last_moved: Optional[date] = None
    address_reported_to_sevis: bool = False


class ComplianceSummary(ContextRecord):
    tasks_completed: int = 0
    tasks_overdue: int = 0
    last_compliance_check: Optional[date] = None
    risk_score: int = Field(default=0, ge=0, le=100)
    warnings_issued: int = 0
    completed_rule_ids: List[str] = Field(default_factory=list)


class ContextFlags(ContextRecord):
    has_unemployment_periods: bool = False
    has_transfer_history: bool = False
    is_first_time_opt: bool = True
    has_h1b_petition: bool = Field(default=False, alias="hasH1BPetition")
    planning_to_travel: bool = False
    address_change_recent: bool = False


class UserContext(ContextRecord):
    """Immutable snapshot of a subject's compliance situation."""

    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    visa_type: VisaType = VisaType.F1
    current_phase: VisaPhase = VisaPhase.GENERAL
    visa_status: Optional[str] = None
    sevis_id: Optional[str] = None
    i94_number: Optional[str] = None

    dates: ImportantDates = Field(default_factory=ImportantDates)
    academic: AcademicInfo = Field(default_factory=AcademicInfo)
    employment: EmploymentInfo = Field(default_factory=EmploymentInfo)
    documents: Dict[str, bool] = Field(default_factory=dict)
    location: LocationInfo = Field(default_factory=LocationInfo)
    compliance: ComplianceSummary = Field(default_factory=ComplianceSummary)
    flags: ContextFlags = Field(default_factory=ContextFlags)
    university_context: Dict[str, Any] = Field(default_factory=dict)

    def to_lookup(self) -> Dict[str, Any]:
        """Nested dict keyed by camelCase aliases, with native date values."""
        return self.model_dump(by_alias=True)
