import json

import pytest
from openpyxl import Workbook
from sqlalchemy import func, select

from gradadmin.errors import InvalidFormat, MalformedImportRow
from gradadmin.fields import COURSE, FACULTY, JOB, SEMESTER, STUDENT
from gradadmin.importer import (
    import_rows,
    import_sheet,
    load_sheet,
    normalize_category,
    resolve_faculty,
    run_import_job,
    sheet_records,
    start_import_job,
)
from gradadmin.models import Course, ImportJob, Job, Student

COURSE_HEADER = ["Department", "Number", "Univ Number", "Name", "Category", "Topic", "Hours", "Section", "Faculty", "Semester"]
JOB_HEADER = ["Onyen", "Position", "Supervisor", "Semester", "Course", "Description", "Hours", "Funding Source"]


def write_xlsx(path, header, rows):
    wb = Workbook()
    ws = wb.active
    ws.append(["Fill in one row per record. Do not change the column order."])
    ws.append(header)
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path.read_bytes()


def count(session_factory, model):
    with session_factory() as s:
        return s.scalar(select(func.count()).select_from(model))


FOUNDATIONS = ["COMP", 410, None, "Foundations", "s", None, 3, None, "Smith, Jane", "FA 2024"]


def test_course_sheet_resolves_faculty_and_semester(tmp_path, session_factory, faculty, semester):
    data = write_xlsx(tmp_path / "courses.xlsx", COURSE_HEADER, [FOUNDATIONS])

    report = import_sheet(session_factory, data, "courses.xlsx", COURSE)

    assert (report.created, report.skipped, report.failed) == (1, 0, 0)
    assert report.results[0].row == 3
    with session_factory() as s:
        courses = s.scalars(select(Course)).all()
        assert len(courses) == 1
        assert courses[0].category == "Systems"
        assert courses[0].faculty_id == faculty.id
        assert courses[0].semester_id == semester.id


def test_course_sheet_with_unknown_faculty_creates_nothing(tmp_path, session_factory, semester):
    data = write_xlsx(tmp_path / "courses.xlsx", COURSE_HEADER, [FOUNDATIONS])

    report = import_sheet(session_factory, data, "courses.xlsx", COURSE)

    assert report.created == 0
    assert len(report.errors) == 1
    assert "faculty is incorrect" in report.errors[0].message
    assert report.errors[0].message == "Foundations did not save because the faculty is incorrect."
    assert count(session_factory, Course) == 0


def test_reimporting_a_course_sheet_skips_existing_rows(tmp_path, session_factory, faculty, semester):
    data = write_xlsx(tmp_path / "courses.xlsx", COURSE_HEADER, [FOUNDATIONS])
    import_sheet(session_factory, data, "courses.xlsx", COURSE)

    report = import_sheet(session_factory, data, "courses.xlsx", COURSE)

    assert (report.created, report.skipped, report.failed) == (0, 1, 0)
    assert count(session_factory, Course) == 1


def test_bad_rows_do_not_stop_the_sheet(tmp_path, session_factory, faculty, semester):
    rows = [
        ["COMP", 521, None, "Compilers", "S", None, None, None, "Smith, Jane", "FA 2024"],
        ["COMP", 530, None, "Operating Systems", "S", None, 3, None, "Smith, Jane", "SP 1999"],
        [None] * 10,
        ["COMPSCI", 541, None, "Digital Logic", "S", None, 3, None, "Smith, Jane", "FA 2024"],
        ["COMP", 455, None, "Models of Languages", "t", None, 3, None, "smith, JANE", "fa 2024"],
    ]
    data = write_xlsx(tmp_path / "courses.xlsx", COURSE_HEADER, rows)

    report = import_sheet(session_factory, data, "courses.xlsx", COURSE)

    assert [r.row for r in report.results] == [3, 4, 6, 7]
    assert [r.status for r in report.results] == ["error", "error", "error", "created"]
    assert report.results[0].message == "Compilers did not save because it is missing a field."
    assert report.results[1].message == "Operating Systems did not save because the semester is incorrect."
    assert report.results[2].message == "Digital Logic did not save because something is wrong with it."
    with session_factory() as s:
        assert s.scalars(select(Course.category)).all() == ["Theory"]


def test_job_import_is_idempotent(tmp_path, session_factory, student, course):
    row = ["alice", "ta", "Smith, Jane", "FA 2024", "COMP 410 001", "Grading", 10, None]
    data = write_xlsx(tmp_path / "jobs.xlsx", JOB_HEADER, [row])

    first = import_sheet(session_factory, data, "jobs.xlsx", JOB)
    second = import_sheet(session_factory, data, "jobs.xlsx", JOB)

    assert first.results[0].status == "created"
    assert second.results[0].status == "duplicate"
    assert first.results[0].entity_id == second.results[0].entity_id
    assert count(session_factory, Job) == 1
    with session_factory() as s:
        job = s.scalars(select(Job)).one()
        assert job.position == "TA"
        assert job.course_id == course.id
        alice = s.get(Student, student.id)
        assert [j.id for j in alice.job_history] == [job.id]


def test_job_row_for_unknown_student_still_creates_job(tmp_path, session_factory, faculty, semester):
    data = write_xlsx(tmp_path / "jobs.xlsx", JOB_HEADER, [["bob", "RA", "Smith, Jane", "FA 2024"]])

    report = import_sheet(session_factory, data, "jobs.xlsx", JOB)

    result = report.results[0]
    assert result.status == "error"
    assert result.inserted
    assert result.message == "Student bob did not save job RA because student was not found."
    assert report.created == 1
    assert count(session_factory, Job) == 1


def test_job_row_with_blank_onyen_is_reported(tmp_path, session_factory, faculty, semester):
    data = write_xlsx(tmp_path / "jobs.xlsx", JOB_HEADER, [[None, "RA", "Smith, Jane", "FA 2024"]])

    report = import_sheet(session_factory, data, "jobs.xlsx", JOB)

    result = report.results[0]
    assert result.status == "error"
    assert result.code == "ENTITY_NOT_FOUND"
    assert result.inserted
    assert result.entity_id is not None
    assert result.message == "Student (blank) did not save job RA because student was not found."
    assert count(session_factory, Job) == 1


def test_job_row_with_unknown_course(tmp_path, session_factory, student, course):
    data = write_xlsx(tmp_path / "jobs.xlsx", JOB_HEADER, [["alice", "TA", "Smith, Jane", "FA 2024", "COMP 999"]])

    report = import_sheet(session_factory, data, "jobs.xlsx", JOB)

    assert report.errors[0].message == "TA Smith, Jane did not save because the course/faculty/semester is incorrect."
    assert count(session_factory, Job) == 0


def test_student_sheet_from_csv(session_factory, faculty, semester):
    text = (
        "Student upload,,,\n"
        "onyen,first_name,last_name,pid\n"
        "alice,Alice,Ng,730001234\n"
        ",,,\n"
        "alice,Alice,Ng,730001234\n"
    )
    report = import_sheet(session_factory, text.encode("utf-8"), "students.csv", STUDENT)

    assert (report.created, report.skipped, report.failed) == (1, 1, 0)
    with session_factory() as s:
        alice = s.scalars(select(Student)).one()
        assert alice.pid == 730001234
        assert alice.status == "Active"


def test_semester_and_faculty_sheets(session_factory):
    semesters = import_rows(session_factory, [(3, {"year": 2025, "season": "SP"})], SEMESTER)
    faculty = import_rows(
        session_factory,
        [(3, {"onyen": "kbrown", "first_name": "Kim", "last_name": "Brown", "active": "TRUE"})],
        FACULTY,
    )
    assert semesters.created == 1
    assert faculty.created == 1


@pytest.mark.parametrize("raw,expected", [
    ("t", "Theory"),
    ("T", "Theory"),
    ("s", "Systems"),
    ("S", "Systems"),
    ("a", "Appls"),
    ("A", "Appls"),
    ("applications", "Appls"),
    ("Applications", "Appls"),
    ("Theory", "Theory"),
    ("Numerics", "Numerics"),
])
def test_normalize_category(raw, expected):
    assert normalize_category(raw) == expected


def test_resolve_faculty_needs_last_comma_first(db, faculty):
    assert resolve_faculty(db, "Smith ,  Jane") == faculty.id
    with pytest.raises(MalformedImportRow):
        resolve_faculty(db, "Jane Smith")


def test_sheet_records_drop_preamble_and_blank_rows():
    rows = [["title"], ["header"], [2024, "FA"], [None, ""], ["2025", "SP", "extra"]]
    assert sheet_records(rows, SEMESTER) == [
        (3, {"year": 2024, "season": "FA"}),
        (5, {"year": "2025", "season": "SP"}),
    ]


def test_unreadable_workbook():
    with pytest.raises(InvalidFormat):
        load_sheet(b"not a workbook", "courses.xlsx")


def test_background_job_records_report(session_factory, db, faculty, semester):
    records = [(3, {"year": 2026, "season": "FA"}), (4, {"year": 2024, "season": "FA"})]
    job = start_import_job(db, SEMESTER, "semesters.xlsx", len(records))
    assert job.status == "PENDING"

    run_import_job(session_factory, job.id, records, SEMESTER)

    with session_factory() as s:
        done = s.get(ImportJob, job.id)
        assert done.status == "DONE"
        assert (done.created, done.skipped, done.failed) == (1, 1, 0)
        assert json.loads(done.report_json)["results"][1]["status"] == "duplicate"
