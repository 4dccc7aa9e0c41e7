"""
Declared shape of every entity kind.

The tables here are the single source of truth for which fields a kind has,
in which order they are declared, which are required, which are matched by
substring in searches, and which columns an upload sheet carries. Field
order matters: spreadsheet imports map column A to the first import column,
column B to the second, and so on.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from gradadmin.errors import GradAdminError


ADMIN = "admin"
FACULTY = "faculty"
STUDENT = "student"
COURSE = "course"
SEMESTER = "semester"
JOB = "job"
GRADE = "grade"
FORM = "form"
NOTE = "note"
CS01 = "cs01"
COURSE_INFO = "course_info"
SEMESTER_REFERENCE = "semester_reference"

ENTITY_KINDS = (
    ADMIN, FACULTY, STUDENT, COURSE, SEMESTER, JOB, GRADE, FORM, NOTE, CS01, COURSE_INFO, SEMESTER_REFERENCE,
)

STR = "str"
INT = "int"
FLOAT = "float"
BOOL = "bool"
DATE = "date"
ENUM = "enum"
REF = "ref"
REF_LIST = "ref_list"

STUDENT_STATUSES = ("Active", "Inactive", "Leave", "Graduated", "Ineligible")
GENDERS = ("MALE", "FEMALE", "OTHER")
ETHNICITIES = ("AIAN", "ASIAN", "BLACK", "HISPANIC", "PACIFIC", "WHITE", "OTHER")
RESIDENCIES = ("YES", "NO", "APPLIED")
INTENDED_DEGREES = ("MASTERS", "PHD", "BOTH")
FUNDING_ELIGIBILITIES = ("NOT GUARANTEED", "GUARANTEED", "PROBATION")
SEASONS = ("FA", "SP", "S1", "S2")
COURSE_CATEGORIES = ("NA", "Theory", "Systems", "Appls")
JOB_POSITIONS = ("RA", "TA", "OTHER")
GRADES = ("H+", "H", "H-", "P+", "P", "P-", "L+", "L", "L-", "NA")
FORM_TITLES = (
    "Background Preparation Worksheet",
    "Course Waiver",
    "M.S. Program of Study",
    "Outside Review Option",
    "Request for Appointment of M.S. Committee",
    "Ph.D. Program of Study",
    "Report of Disapproval of Dissertation Proposal",
    "Technical Writing Requirement",
    "Report of Preliminary Research Presentation",
    "Teaching Requirement",
    "Report of Research Discussion",
    "Program Product Requirement",
    "Transfer Credit Request",
    "Student Progress Report",
    "Other",
)

STUDENT_MILESTONES = (
    "background_approved",
    "masters_awarded",
    "prp_passed",
    "background_prep_worksheet_approved",
    "program_of_study_approved",
    "research_planning_meeting",
    "committee_comp_approved",
    "phd_proposal_approved",
    "oral_exam_passed",
    "dissertation_defence_passed",
    "dissertation_submitted",
)

# Courses listed on the background preparation worksheet, in form order.
CS01_COURSES = (
    "comp283", "comp410", "comp411", "comp455", "comp521", "comp520", "comp530", "comp524",
    "comp541", "comp550", "math233", "math381", "math547", "math661", "stat435",
)


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str = STR
    choices: tuple = ()
    ref: Optional[str] = None
    default: Any = None

    @property
    def column(self) -> Optional[str]:
        """Mapped column holding the value; reference lists live in association tables."""
        if self.type == REF:
            return f"{self.name}_id"
        if self.type == REF_LIST:
            return None
        return self.name


def _f(name, type_=STR, **kw) -> FieldSpec:
    return FieldSpec(name, type_, **kw)


ENTITY_FIELDS: dict[str, tuple[FieldSpec, ...]] = {
    ADMIN: (
        _f("onyen"),
        _f("first_name"),
        _f("last_name"),
        _f("pid", INT),
    ),
    FACULTY: (
        _f("onyen"),
        _f("cs_id"),
        _f("first_name"),
        _f("last_name"),
        _f("pid", INT),
        _f("section_number", INT),
        _f("active", BOOL),
        _f("admin", BOOL),
    ),
    STUDENT: (
        _f("onyen"),
        _f("first_name"),
        _f("last_name"),
        _f("pid", INT),
        _f("status", ENUM, choices=STUDENT_STATUSES, default="Active"),
        _f("alternative_name"),
        _f("gender", ENUM, choices=GENDERS, default="OTHER"),
        _f("ethnicity", ENUM, choices=ETHNICITIES, default="OTHER"),
        _f("residency", ENUM, choices=RESIDENCIES, default="NO"),
        _f("entering_status"),
        _f("research_area"),
        _f("leave_extension"),
        _f("intended_degree", ENUM, choices=INTENDED_DEGREES, default="MASTERS"),
        _f("hours_completed", FLOAT),
        _f("citizenship", BOOL),
        _f("funding_eligibility", ENUM, choices=FUNDING_ELIGIBILITIES, default="NOT GUARANTEED"),
        *(_f(m, DATE) for m in STUDENT_MILESTONES),
        _f("job_history", REF_LIST, ref=JOB),
        _f("semester_started", REF, ref=SEMESTER),
        _f("advisor", REF, ref=FACULTY),
        _f("notes"),
        _f("grades", REF_LIST, ref=GRADE),
    ),
    FORM: (
        _f("title"),
        _f("student", REF, ref=STUDENT),
        _f("default_title", ENUM, choices=FORM_TITLES),
    ),
    SEMESTER: (
        _f("year", INT),
        _f("season", ENUM, choices=SEASONS),
    ),
    COURSE: (
        _f("department"),
        _f("number", INT),
        _f("univ_number", INT),
        _f("name"),
        _f("category", ENUM, choices=COURSE_CATEGORIES),
        _f("topic"),
        _f("hours", FLOAT),
        _f("section"),
        _f("faculty", REF, ref=FACULTY),
        _f("semester", REF, ref=SEMESTER),
    ),
    JOB: (
        _f("position", ENUM, choices=JOB_POSITIONS),
        _f("supervisor", REF, ref=FACULTY),
        _f("semester", REF, ref=SEMESTER),
        _f("course", REF, ref=COURSE),
        _f("description"),
        _f("hours", FLOAT),
        _f("funding_source"),
    ),
    GRADE: (
        _f("grade", ENUM, choices=GRADES, default="NA"),
        _f("course", REF, ref=COURSE),
    ),
    NOTE: (
        _f("student", REF, ref=STUDENT),
        _f("title"),
        _f("note"),
    ),
    CS01: (
        _f("student", REF, ref=STUDENT),
        _f("name"),
        _f("pid", INT),
        *(_f(f"{c}_{suffix}") for c in CS01_COURSES for suffix in ("covered", "date")),
        _f("student_signature"),
        _f("student_date_signed"),
        _f("advisor_signature"),
        _f("advisor_date_signed"),
    ),
    COURSE_INFO: (
        _f("number", INT),
        _f("name"),
        _f("hours", FLOAT),
    ),
    SEMESTER_REFERENCE: (
        _f("name"),
        _f("semester", REF, ref=SEMESTER),
    ),
}

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    ADMIN: ("onyen", "first_name", "last_name"),
    FACULTY: ("onyen", "first_name", "last_name"),
    STUDENT: ("onyen", "first_name", "last_name"),
    COURSE: ("department", "number", "name", "category", "hours", "faculty", "semester"),
    SEMESTER: ("year", "season"),
    JOB: ("position", "supervisor", "semester"),
    GRADE: ("grade", "course"),
    FORM: ("title", "student"),
    NOTE: ("title", "student"),
    CS01: ("student",),
    COURSE_INFO: ("number", "name"),
    SEMESTER_REFERENCE: ("name", "semester"),
}

# Fields matched case-insensitively by substring in list filters.
SEARCH_FIELDS: dict[str, tuple[str, ...]] = {
    ADMIN: ("first_name", "last_name"),
    FACULTY: ("first_name", "last_name"),
    STUDENT: ("first_name", "last_name"),
    COURSE: ("name",),
    JOB: ("position", "description"),
    FORM: ("title",),
    NOTE: ("title",),
    CS01: ("name",),
    COURSE_INFO: ("name",),
    SEMESTER_REFERENCE: ("name",),
}

# Field combinations no two records of a kind may share.
UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    FACULTY: ("onyen",),
    STUDENT: ("onyen",),
    SEMESTER: ("year", "season"),
    COURSE_INFO: ("number",),
}

# Kinds whose create refuses a record matching an existing one on every field.
EXACT_DUPLICATE_KINDS = (COURSE, JOB)

# Default listing order per kind.
ORDER_BY: dict[str, tuple[str, ...]] = {
    ADMIN: ("last_name", "first_name"),
    FACULTY: ("onyen",),
    STUDENT: ("last_name", "first_name"),
    COURSE: ("number",),
    SEMESTER: ("year", "season"),
    JOB: ("position",),
    GRADE: ("grade",),
    FORM: ("title",),
    NOTE: ("title",),
    CS01: ("name",),
    COURSE_INFO: ("number",),
    SEMESTER_REFERENCE: ("name",),
}

# Synthetic leading column of the job sheet: the onyen of the student holding the job.
JOB_STUDENT_COLUMN = "onyen"

# Positional column layout of upload sheets: column A is the first entry.
IMPORT_COLUMNS: dict[str, tuple[str, ...]] = {
    COURSE: (
        "department", "number", "univ_number", "name", "category",
        "topic", "hours", "section", "faculty", "semester",
    ),
    JOB: (
        JOB_STUDENT_COLUMN, "position", "supervisor", "semester", "course",
        "description", "hours", "funding_source",
    ),
    FACULTY: ("onyen", "cs_id", "first_name", "last_name", "pid", "section_number", "active", "admin"),
    SEMESTER: ("year", "season"),
    STUDENT: tuple(
        f.name for f in ENTITY_FIELDS[STUDENT] if f.type != REF_LIST
    ),
}


class FieldTableError(GradAdminError):
    def __init__(self, message: str):
        super().__init__(message, code="FIELD_TABLE_ERROR")


def field_map(kind: str) -> dict[str, FieldSpec]:
    return {f.name: f for f in ENTITY_FIELDS[kind]}


def field_names(kind: str) -> tuple[str, ...]:
    return tuple(f.name for f in ENTITY_FIELDS[kind])


def check_field_orders() -> None:
    """Verify every auxiliary table against the declared entity fields.

    Import columns must be declared fields of the kind and appear in
    declaration order, so a sheet laid out by declaration order lines up with
    the positional mapping.
    """
    for kind in ENTITY_KINDS:
        if kind not in ENTITY_FIELDS:
            raise FieldTableError(f"{kind} has no declared fields")
        names = field_names(kind)
        if len(set(names)) != len(names):
            raise FieldTableError(f"{kind} declares a field twice")
        for table_name, table in (
            ("REQUIRED_FIELDS", REQUIRED_FIELDS),
            ("SEARCH_FIELDS", SEARCH_FIELDS),
            ("UNIQUE_KEYS", UNIQUE_KEYS),
            ("ORDER_BY", ORDER_BY),
        ):
            unknown = [n for n in table.get(kind, ()) if n not in names]
            if unknown:
                raise FieldTableError(f"{table_name}[{kind}] names undeclared fields: {unknown}")

    for kind, columns in IMPORT_COLUMNS.items():
        declared = field_names(kind)
        if kind == JOB:
            if columns[0] != JOB_STUDENT_COLUMN:
                raise FieldTableError("job sheets must lead with the student onyen column")
            columns = columns[1:]
        positions = []
        for name in columns:
            if name not in declared:
                raise FieldTableError(f"IMPORT_COLUMNS[{kind}] names undeclared field {name!r}")
            positions.append(declared.index(name))
        if positions != sorted(positions):
            raise FieldTableError(f"IMPORT_COLUMNS[{kind}] is out of declaration order")
