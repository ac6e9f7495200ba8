"""
Context Builder - turns raw subject records into a ``UserContext``.

Key Features:
- Concurrent fetch of profile, documents and tasks through a provider
- Date parsing and visa type normalization
- Phase derivation from a fixed precedence table
- Document validity flags, task counters and risk scoring
- Secondary fetch failures degrade to empty lists
"""

import asyncio
import math
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

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
from compliance_engine.context.provider import (
    DocumentRecord,
    ProfileProvider,
    ProfileRecord,
    TaskRecord,
)
from compliance_engine.core.exceptions import ContextInvalidError
from compliance_engine.core.logging import get_logger

logger = get_logger("context_builder")

DOCUMENT_TYPES = ("passport", "visa", "i20", "ead", "i983", "i797")
INACTIVE_DOCUMENT_STATUSES = {"expired", "rejected"}

INITIAL_ENTRY_DAYS = 30
GRADUATION_WINDOW_DAYS = 90
STEM_APPLICATION_WINDOW_DAYS = 90
RECENT_MOVE_DAYS = 30
PASSPORT_RISK_DAYS = 180

OPT_UNEMPLOYMENT_DAYS = 90
STEM_OPT_UNEMPLOYMENT_DAYS = 150
RISK_SCORE_CAP = 100

_VISA_ALIASES = {
    "F1": VisaType.F1,
    "F-1": VisaType.F1,
    "J1": VisaType.J1,
    "J-1": VisaType.J1,
    "H1B": VisaType.H1B,
    "H-1B": VisaType.H1B,
    "OPT": VisaType.OPT,
    "STEM_OPT": VisaType.STEM_OPT,
    "STEM OPT": VisaType.STEM_OPT,
}


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date or timestamp; anything unparsable becomes None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def normalize_visa_type(value: Optional[str]) -> VisaType:
    """Map free-form visa strings onto ``VisaType``; missing means F1."""
    if not value:
        return VisaType.F1
    return _VISA_ALIASES.get(str(value).strip().upper(), VisaType.OTHER)


def days_between(start: date, end: date) -> int:
    """Signed whole days from start to end."""
    return (end - start).days


class ContextBuilder:
    """
    Builds immutable subject contexts from a ``ProfileProvider``.

    Args:
        provider: Source of profile, document and task records
        clock: Returns the current time; ``datetime.now`` by default
    """

    def __init__(
        self,
        provider: ProfileProvider,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.provider = provider
        self._clock = clock or datetime.now

    async def build(self, subject_id: str) -> UserContext:
        """
        Fetch and transform one subject's records.

        Raises:
            ContextInvalidError: If the profile is missing, cannot be fetched,
                or does not produce a valid context
        """
        try:
            profile = await self.provider.fetch_profile(subject_id)
        except Exception as e:
            raise ContextInvalidError(
                f"Failed to fetch user profile: {e}", subject_id=subject_id
            ) from e

        if not profile:
            raise ContextInvalidError("User profile not found", subject_id=subject_id)

        documents, tasks = await asyncio.gather(
            self._fetch_optional(self.provider.fetch_documents(subject_id), "documents", subject_id),
            self._fetch_optional(self.provider.fetch_tasks(subject_id), "tasks", subject_id),
        )

        return self.from_records(subject_id, profile, documents, tasks)

    async def _fetch_optional(
        self, fetch: Awaitable[List[Dict[str, Any]]], kind: str, subject_id: str
    ) -> List[Dict[str, Any]]:
        try:
            return list(await fetch or [])
        except Exception as e:
            logger.warning("Secondary fetch failed", kind=kind, subject_id=subject_id, error=str(e))
            return []

    def from_records(
        self,
        subject_id: str,
        profile: ProfileRecord,
        documents: Optional[List[DocumentRecord]] = None,
        tasks: Optional[List[TaskRecord]] = None,
    ) -> UserContext:
        """Transform raw records into a ``UserContext``."""
        documents = documents or []
        tasks = tasks or []
        today = self._clock().date()

        try:
            visa_type = normalize_visa_type(profile.get("visa_type"))
            dates = self._build_dates(profile)
            academic = self._build_academic(profile)
            employment = self._build_employment(profile, visa_type, academic.is_stem)
            location = self._build_location(profile)

            context = UserContext(
                user_id=subject_id,
                email=profile.get("email"),
                name=profile.get("name") or profile.get("full_name"),
                visa_type=visa_type,
                current_phase=self.determine_phase(profile, visa_type, dates, academic, today),
                visa_status=profile.get("visa_status"),
                sevis_id=profile.get("sevis_id"),
                i94_number=profile.get("i94_number"),
                dates=dates,
                academic=academic,
                employment=employment,
                documents=self.document_status(documents, today),
                location=location,
                compliance=self._build_compliance(profile, documents, tasks, dates, employment, today),
                flags=self._build_flags(profile, academic, employment, location, today),
                university_context=dict(profile.get("university_context") or {}),
            )
        except ValidationError as e:
            raise ContextInvalidError(
                f"Profile data is invalid: {e.error_count()} validation errors",
                subject_id=subject_id,
            ) from e

        logger.debug(
            "Context built",
            subject_id=subject_id,
            phase=context.current_phase.value,
            risk_score=context.compliance.risk_score,
        )
        return context

    # ========================================================================
    # SUB-RECORDS
    # ========================================================================

    def _build_dates(self, profile: ProfileRecord) -> ImportantDates:
        return ImportantDates(
            us_entry_date=parse_date(profile.get("us_entry_date")),
            visa_expiry_date=parse_date(profile.get("visa_expiry_date")),
            passport_expiry_date=parse_date(profile.get("passport_expiry_date")),
            course_start_date=parse_date(profile.get("course_start_date")),
            graduation_date=parse_date(profile.get("graduation_date")),
            employment_start_date=parse_date(profile.get("employment_start_date")),
            employment_end_date=parse_date(profile.get("employment_end_date")),
            opt_start_date=parse_date(profile.get("opt_start_date")),
            opt_end_date=parse_date(profile.get("opt_end_date")),
            stem_opt_end_date=parse_date(profile.get("stem_opt_end_date")),
            i20_expiry_date=parse_date(profile.get("i20_expiry_date")),
            last_address_update=parse_date(profile.get("last_address_update")),
        )

    def _build_academic(self, profile: ProfileRecord) -> AcademicInfo:
        dso = profile.get("dso_contact")
        return AcademicInfo(
            university=profile.get("university"),
            university_id=profile.get("university_id"),
            field_of_study=profile.get("field_of_study"),
            degree_level=profile.get("degree_level"),
            cip_code=profile.get("cip_code"),
            is_stem=bool(profile.get("is_stem")),
            gpa=profile.get("gpa"),
            credits_completed=profile.get("credits_completed"),
            total_credits=profile.get("total_credits"),
            is_transfer_student=bool(profile.get("is_transfer_student")),
            previous_universities=list(profile.get("previous_universities") or []),
            dso_contact=DsoContact(**dso) if isinstance(dso, dict) else None,
        )

    def _build_employment(
        self, profile: ProfileRecord, visa_type: VisaType, is_stem: bool
    ) -> EmploymentInfo:
        return EmploymentInfo(
            status=profile.get("employment_status") or "Not Employed",
            employer=profile.get("employer_name"),
            job_title=profile.get("job_title"),
            work_location=profile.get("work_location"),
            is_field_related=profile.get("is_field_related"),
            authorization_type=profile.get("auth_type"),
            ead_number=profile.get("ead_number"),
            unemployment_days_used=int(profile.get("unemployment_days") or 0),
            max_unemployment_days=self.max_unemployment_days(profile, visa_type, is_stem),
            e_verify_compliant=profile.get("e_verify_compliant"),
            new_job_started=bool(profile.get("new_job_started")),
            job_reported_to_dso=bool(profile.get("job_reported_to_dso")),
            opt_application_submitted=bool(profile.get("opt_application_submitted")),
            stem_opt_application_submitted=bool(profile.get("stem_opt_application_submitted")),
        )

    def _build_location(self, profile: ProfileRecord) -> LocationInfo:
        return LocationInfo(
            current_address=profile.get("address"),
            state=profile.get("state"),
            zip_code=profile.get("zip_code"),
            last_moved=parse_date(profile.get("last_moved_date")),
            address_reported_to_sevis=bool(profile.get("address_reported_to_sevis")),
        )

    def _build_compliance(
        self,
        profile: ProfileRecord,
        documents: List[DocumentRecord],
        tasks: List[TaskRecord],
        dates: ImportantDates,
        employment: EmploymentInfo,
        today: date,
    ) -> ComplianceSummary:
        completed = [task for task in tasks if task.get("is_completed")]
        overdue = [
            task for task in tasks
            if not task.get("is_completed") and self._is_past_due(task, today)
        ]
        expired_documents = sum(1 for doc in documents if self._is_expired(doc, today))

        return ComplianceSummary(
            tasks_completed=len(completed),
            tasks_overdue=len(overdue),
            last_compliance_check=parse_date(profile.get("last_compliance_check")),
            risk_score=self.risk_score(
                overdue_tasks=len(overdue),
                expired_documents=expired_documents,
                unemployment_days_used=employment.unemployment_days_used,
                max_unemployment_days=employment.max_unemployment_days,
                passport_expiry=dates.passport_expiry_date,
                today=today,
            ),
            warnings_issued=int(profile.get("warnings_issued") or 0),
            completed_rule_ids=[task["rule_id"] for task in completed if task.get("rule_id")],
        )

    def _build_flags(
        self,
        profile: ProfileRecord,
        academic: AcademicInfo,
        employment: EmploymentInfo,
        location: LocationInfo,
        today: date,
    ) -> ContextFlags:
        recent_move = (
            location.last_moved is not None
            and 0 <= days_between(location.last_moved, today) <= RECENT_MOVE_DAYS
        )
        return ContextFlags(
            has_unemployment_periods=employment.unemployment_days_used > 0,
            has_transfer_history=academic.is_transfer_student or bool(academic.previous_universities),
            is_first_time_opt=not profile.get("previous_opt_periods"),
            has_h1b_petition=bool(profile.get("h1b_petition_filed")),
            planning_to_travel=bool(profile.get("planning_travel")),
            address_change_recent=recent_move,
        )

    # ========================================================================
    # DERIVED VALUES
    # ========================================================================

    def determine_phase(
        self,
        profile: ProfileRecord,
        visa_type: VisaType,
        dates: ImportantDates,
        academic: AcademicInfo,
        today: date,
    ) -> VisaPhase:
        """Derive the lifecycle phase; the first matching row wins."""
        entry = dates.us_entry_date
        if entry is None or entry > today:
            return VisaPhase.PRE_ARRIVAL

        if days_between(entry, today) <= INITIAL_ENTRY_DAYS:
            return VisaPhase.INITIAL_ENTRY

        if visa_type is VisaType.F1:
            graduation = dates.graduation_date
            if graduation is not None:
                until_graduation = days_between(today, graduation)
                if 0 < until_graduation <= GRADUATION_WINDOW_DAYS:
                    return VisaPhase.PRE_GRADUATION
                opt_started = dates.opt_start_date is not None and dates.opt_start_date <= today
                if graduation <= today and not opt_started:
                    return VisaPhase.POST_GRADUATION
            if dates.course_start_date is not None and dates.course_start_date <= today:
                return VisaPhase.DURING_PROGRAM

        on_opt = (
            str(profile.get("employment_status") or "").upper() == "OPT"
            or dates.opt_start_date is not None
        )
        if on_opt:
            if str(profile.get("opt_type") or "").upper() == "STEM" or profile.get("is_stem_opt"):
                return VisaPhase.STEM_ACTIVE
            if (
                dates.opt_end_date is not None
                and 0 <= days_between(today, dates.opt_end_date) <= STEM_APPLICATION_WINDOW_DAYS
                and academic.is_stem
            ):
                return VisaPhase.STEM_APPLICATION
            return VisaPhase.OPT_ACTIVE

        if visa_type is VisaType.H1B or profile.get("h1b_petition_filed"):
            return VisaPhase.STATUS_CHANGE

        return VisaPhase.GENERAL

    @staticmethod
    def max_unemployment_days(profile: ProfileRecord, visa_type: VisaType, is_stem: bool) -> int:
        """Unemployment allowance: 90 days on OPT, 150 on STEM OPT, otherwise none."""
        if visa_type is VisaType.STEM_OPT or profile.get("is_stem_opt"):
            return STEM_OPT_UNEMPLOYMENT_DAYS
        if visa_type is VisaType.OPT:
            return STEM_OPT_UNEMPLOYMENT_DAYS if is_stem else OPT_UNEMPLOYMENT_DAYS
        return 0

    @staticmethod
    def document_status(documents: List[DocumentRecord], today: date) -> Dict[str, bool]:
        """``<type>Valid`` flags: any matching document that is not expired or rejected."""
        status: Dict[str, bool] = {}
        for doc_type in DOCUMENT_TYPES:
            status[f"{doc_type}Valid"] = any(
                doc_type in str(doc.get("category") or "").lower()
                and not ContextBuilder._is_expired(doc, today)
                and str(doc.get("status") or "").lower() not in INACTIVE_DOCUMENT_STATUSES
                for doc in documents
            )
        return status

    @staticmethod
    def _is_past_due(task: TaskRecord, today: date) -> bool:
        due = parse_date(task.get("due_date"))
        return due is not None and due < today

    @staticmethod
    def _is_expired(doc: DocumentRecord, today: date) -> bool:
        if str(doc.get("status") or "").lower() == "expired":
            return True
        expiry = parse_date(doc.get("expiry_date"))
        return expiry is not None and expiry < today

    @staticmethod
    def risk_score(
        overdue_tasks: int,
        expired_documents: int,
        unemployment_days_used: int,
        max_unemployment_days: int,
        passport_expiry: Optional[date],
        today: date,
    ) -> int:
        """Weighted risk score in [0, 100]."""
        score = overdue_tasks * 10 + expired_documents * 15
        if max_unemployment_days > 0:
            score += math.floor(unemployment_days_used / max_unemployment_days * 50)
        if passport_expiry is not None and days_between(today, passport_expiry) < PASSPORT_RISK_DAYS:
            score += 20
        return max(0, min(score, RISK_SCORE_CAP))
