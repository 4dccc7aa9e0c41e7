"""
Bulk import of upload sheets.

A sheet is a grid of cells (xlsx or csv). The first rows are header and
instruction rows and are discarded; the rest map positionally onto
IMPORT_COLUMNS[kind]. Each row is reconciled on its own: human-readable
faculty names, semester labels and course codes are resolved to
identifiers, category shorthand is expanded, and the record is inserted
unless an equivalent one exists. A bad row is recorded in the report and
never stops the rows after it.
"""
from __future__ import annotations

import csv
import io
import json
import logging
import re
import zipfile
from datetime import datetime
from typing import Any, Callable, Literal, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gradadmin.config import settings
from gradadmin.errors import (
    EntityNotFound,
    GradAdminError,
    InvalidFormat,
    MalformedImportRow,
    MissingRequiredField,
)
from gradadmin.fields import (
    COURSE,
    IMPORT_COLUMNS,
    JOB,
    JOB_STUDENT_COLUMN,
    SEMESTER,
    STUDENT,
)
from gradadmin.models import Course, Faculty, ImportJob, Semester
from gradadmin.projection import is_empty, project, require_fields
from gradadmin.store import EntityStore

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

IMPORTABLE_KINDS = tuple(IMPORT_COLUMNS)

CATEGORY_ALIASES = {
    "t": "Theory",
    "T": "Theory",
    "s": "Systems",
    "S": "Systems",
    "a": "Appls",
    "A": "Appls",
    "applications": "Appls",
    "Applications": "Appls",
}

# Reference fields given as text on a sheet, and how each one is resolved.
FACULTY_TEXT_FIELDS = {COURSE: "faculty", JOB: "supervisor", STUDENT: "advisor"}
SEMESTER_TEXT_FIELDS = {COURSE: "semester", JOB: "semester", STUDENT: "semester_started"}

_COMMA = re.compile(r"\s*,\s*")
_SEPARATORS = re.compile(r"[\s,]+")


class RowResult(BaseModel):
    row: int
    status: Literal["created", "duplicate", "error"]
    entity_id: Optional[str] = None
    inserted: bool = False
    message: Optional[str] = None
    code: Optional[str] = None


class ImportReport(BaseModel):
    kind: str
    filename: Optional[str] = None
    total_rows: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    results: list[RowResult] = Field(default_factory=list)

    @property
    def errors(self) -> list[RowResult]:
        return [r for r in self.results if r.status == "error"]

    def add(self, result: RowResult) -> None:
        self.results.append(result)
        self.total_rows += 1
        if result.inserted:
            self.created += 1
        if result.status == "duplicate":
            self.skipped += 1
        elif result.status == "error":
            self.failed += 1


# ----------------------------------------------------------------------
# sheets
# ----------------------------------------------------------------------

def load_sheet(data: bytes, filename: str = "") -> list[list[Any]]:
    """Read the first worksheet of an xlsx file, or a csv file, into rows of cell values."""
    if filename.lower().endswith(".csv"):
        try:
            text = data.decode("utf-8-sig")
            return [list(r) for r in csv.reader(io.StringIO(text))]
        except (UnicodeDecodeError, csv.Error) as exc:
            raise InvalidFormat("file", f"Could not read {filename}: {exc}") from exc
    try:
        wb = load_workbook(io.BytesIO(data), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise InvalidFormat("file", f"Could not read {filename or 'upload'} as an xlsx workbook") from exc
    try:
        ws = wb.worksheets[0]
        return [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def sheet_records(rows: list[list[Any]], kind: str, preamble: Optional[int] = None) -> list[tuple[int, dict]]:
    """Map sheet rows to field dicts by column position.

    Returns (sheet row number, record) pairs; preamble and blank rows are skipped.
    """
    if kind not in IMPORT_COLUMNS:
        raise GradAdminError(f"{kind} cannot be imported from a sheet", code="UNSUPPORTED_IMPORT")
    if preamble is None:
        preamble = settings.IMPORT_PREAMBLE_ROWS
    columns = IMPORT_COLUMNS[kind]
    out = []
    for idx, row in enumerate(rows[preamble:], start=preamble + 1):
        if all(is_empty(c) for c in row):
            continue
        record = {name: row[i] for i, name in enumerate(columns) if i < len(row) and not is_empty(row[i])}
        out.append((idx, record))
    return out


# ----------------------------------------------------------------------
# reconciliation
# ----------------------------------------------------------------------

def normalize_category(value: Any) -> Any:
    if isinstance(value, str):
        return CATEGORY_ALIASES.get(value.strip(), value)
    return value


def resolve_faculty(db: Session, text: Any) -> str:
    """'Last, First' -> faculty id; names compare case-insensitively."""
    parts = _COMMA.split(str(text).strip(), maxsplit=1)
    if len(parts) != 2 or not all(parts):
        raise MalformedImportRow("the faculty is incorrect", field="faculty")
    last, first = parts
    stmt = select(Faculty.id).where(
        func.lower(Faculty.last_name) == last.lower(),
        func.lower(Faculty.first_name) == first.lower(),
    )
    faculty_id = db.scalars(stmt.limit(1)).first()
    if faculty_id is None:
        raise MalformedImportRow("the faculty is incorrect", field="faculty")
    return faculty_id


def parse_semester_label(text: Any) -> tuple[str, int]:
    parts = _SEPARATORS.split(str(text).strip())
    if len(parts) != 2:
        raise MalformedImportRow("the semester is incorrect", field="semester")
    try:
        year = int(float(parts[1]))
    except ValueError:
        raise MalformedImportRow("the semester is incorrect", field="semester") from None
    return parts[0].upper(), year


def resolve_semester(db: Session, text: Any) -> str:
    """'SEASON YEAR' (e.g. 'FA 2024') -> semester id."""
    season, year = parse_semester_label(text)
    stmt = select(Semester.id).where(Semester.season == season, Semester.year == year)
    semester_id = db.scalars(stmt.limit(1)).first()
    if semester_id is None:
        raise MalformedImportRow("the semester is incorrect", field="semester")
    return semester_id


def resolve_course(db: Session, text: Any, faculty_id: str, semester_id: str) -> str:
    """'DEPT NUMBER SECTION' taught by the given faculty in the given semester -> course id."""
    parts = _SEPARATORS.split(str(text).strip())
    if len(parts) < 2:
        raise MalformedImportRow("the course/faculty/semester is incorrect", field="course")
    try:
        number = int(float(parts[1]))
    except ValueError:
        raise MalformedImportRow("the course/faculty/semester is incorrect", field="course") from None
    stmt = select(Course.id).where(
        func.lower(Course.department) == parts[0].lower(),
        Course.number == number,
        Course.faculty_id == faculty_id,
        Course.semester_id == semester_id,
    )
    if len(parts) > 2:
        stmt = stmt.where(Course.section == parts[2])
    course_id = db.scalars(stmt.limit(1)).first()
    if course_id is None:
        raise MalformedImportRow("the course/faculty/semester is incorrect", field="course")
    return course_id


def row_label(kind: str, element: dict) -> str:
    if kind == COURSE:
        return str(element.get("name"))
    if kind == JOB:
        return f"{element.get('position')} {element.get('supervisor')}"
    if kind == SEMESTER:
        return f"{element.get('season')} {element.get('year')}"
    return str(element.get("onyen"))


def resolve_references(db: Session, kind: str, element: dict) -> dict:
    """Replace the text reference fields of a row with identifiers."""
    resolved = dict(element)
    faculty_field = FACULTY_TEXT_FIELDS.get(kind)
    if faculty_field and not is_empty(resolved.get(faculty_field)):
        resolved[faculty_field] = resolve_faculty(db, resolved[faculty_field])
    semester_field = SEMESTER_TEXT_FIELDS.get(kind)
    if semester_field and not is_empty(resolved.get(semester_field)):
        resolved[semester_field] = resolve_semester(db, resolved[semester_field])
    if kind == JOB and not is_empty(resolved.get("course")):
        resolved["course"] = resolve_course(db, resolved["course"], resolved["supervisor"], resolved["semester"])
    return resolved


def reconcile_row(db: Session, kind: str, row: int, element: dict) -> RowResult:
    store = EntityStore(db)
    label = row_label(kind, element)

    def failed(reason: str, code: str, entity_id: Optional[str] = None, inserted: bool = False) -> RowResult:
        message = f"{label} did not save because {reason}."
        logger.warning("Import row %s (%s): %s", row, kind, message)
        return RowResult(row=row, status="error", message=message, code=code, entity_id=entity_id, inserted=inserted)

    try:
        require_fields(element, kind)
    except MissingRequiredField as exc:
        return failed("it is missing a field", exc.code)

    try:
        record = resolve_references(db, kind, element)
    except MalformedImportRow as exc:
        return failed(exc.message, exc.code)

    if kind == COURSE and "category" in record:
        record["category"] = normalize_category(record["category"])
    if kind == JOB:
        record["position"] = str(record["position"]).strip().upper()

    try:
        record = project(record, kind)
        existing = store.find_duplicate(kind, record)
        if existing is None:
            entity = store.insert(kind, record)
            entity_id, inserted = entity.id, True
        else:
            entity_id, inserted = existing.id, False
    except Exception as exc:
        db.rollback()
        code = exc.code if isinstance(exc, GradAdminError) else "INSERT_FAILED"
        logger.debug("Import row %s insert failed: %s", row, exc)
        return failed("something is wrong with it", code)

    if kind == JOB:
        # a blank onyen never matches a student
        onyen = "" if is_empty(element.get(JOB_STUDENT_COLUMN)) else str(element[JOB_STUDENT_COLUMN]).strip()
        try:
            store.assign_job_by_onyen(onyen, entity_id)
        except EntityNotFound as exc:
            message = f"Student {onyen or '(blank)'} did not save job {record.get('position')} because student was not found."
            logger.warning("Import row %s (%s): %s", row, kind, message)
            return RowResult(
                row=row, status="error", message=message, code=exc.code, entity_id=entity_id, inserted=inserted
            )

    status = "created" if inserted else "duplicate"
    return RowResult(row=row, status=status, entity_id=entity_id, inserted=inserted)


def import_rows(session_factory: SessionFactory, records: list[tuple[int, dict]], kind: str, filename: Optional[str] = None) -> ImportReport:
    """Reconcile every row in its own session and collect the per-row results."""
    report = ImportReport(kind=kind, filename=filename)
    for row, element in records:
        with session_factory() as db:
            try:
                result = reconcile_row(db, kind, row, element)
            except Exception as exc:
                db.rollback()
                logger.exception("Import row %s (%s) failed unexpectedly", row, kind)
                result = RowResult(
                    row=row,
                    status="error",
                    message=f"{row_label(kind, element)} did not save because something is wrong with it.",
                    code=getattr(exc, "code", "INTERNAL_ERROR"),
                )
        report.add(result)
    logger.info(
        "Imported %s sheet %s: %s rows, %s created, %s skipped, %s failed",
        kind, filename or "-", report.total_rows, report.created, report.skipped, report.failed,
    )
    return report


def import_sheet(session_factory: SessionFactory, data: bytes, filename: str, kind: str) -> ImportReport:
    return import_rows(session_factory, sheet_records(load_sheet(data, filename), kind), kind, filename=filename)


# ----------------------------------------------------------------------
# background jobs
# ----------------------------------------------------------------------

def start_import_job(db: Session, kind: str, filename: Optional[str], total_rows: int) -> ImportJob:
    job = ImportJob(kind=kind, filename=filename, status="PENDING", total_rows=total_rows)
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Queued %s import %s (%s rows)", kind, job.id, total_rows)
    return job


def run_import_job(session_factory: SessionFactory, job_id: str, records: list[tuple[int, dict]], kind: str) -> None:
    with session_factory() as db:
        job = db.get(ImportJob, job_id)
        job.status = "RUNNING"
        db.commit()
        filename = job.filename
    try:
        report = import_rows(session_factory, records, kind, filename=filename)
    except Exception as exc:
        logger.exception("Import job %s failed", job_id)
        with session_factory() as db:
            job = db.get(ImportJob, job_id)
            job.status = "FAILED"
            job.error = str(exc)
            job.finished_at = datetime.utcnow()
            db.commit()
        return
    with session_factory() as db:
        job = db.get(ImportJob, job_id)
        job.status = "DONE"
        job.total_rows = report.total_rows
        job.created = report.created
        job.skipped = report.skipped
        job.failed = report.failed
        job.report_json = report.model_dump_json()
        job.finished_at = datetime.utcnow()
        db.commit()


def import_job_status(job: ImportJob) -> dict:
    out = {
        "job_id": job.id,
        "kind": job.kind,
        "filename": job.filename,
        "status": job.status,
        "total_rows": job.total_rows,
        "created": job.created,
        "skipped": job.skipped,
        "failed": job.failed,
        "error": job.error,
        "created_at": job.created_at,
        "finished_at": job.finished_at,
    }
    if job.report_json:
        out["report"] = json.loads(job.report_json)
    return out
