from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gradadmin.db import Base
from gradadmin.fields import (
    ADMIN,
    COURSE,
    CS01,
    COURSE_INFO,
    ENTITY_FIELDS,
    FACULTY,
    FORM,
    GRADE,
    JOB,
    NOTE,
    REF,
    REF_LIST,
    SEMESTER,
    SEMESTER_REFERENCE,
    STUDENT,
    FieldTableError,
)


def new_id() -> str:
    return str(uuid.uuid4())


# Reference lists on Student. The composite primary key gives set semantics.
student_jobs = Table(
    "student_jobs",
    Base.metadata,
    Column("student_id", String, ForeignKey("students.id"), primary_key=True),
    Column("job_id", String, ForeignKey("jobs.id"), primary_key=True),
)

student_grades = Table(
    "student_grades",
    Base.metadata,
    Column("student_id", String, ForeignKey("students.id"), primary_key=True),
    Column("grade_id", String, ForeignKey("grades.id"), primary_key=True),
)


class Admin(Base):
    __tablename__ = "admins"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    onyen: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class Faculty(Base):
    __tablename__ = "faculty"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    onyen: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    cs_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    pid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    section_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    admin: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class Semester(Base):
    __tablename__ = "semesters"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    season: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class Course(Base):
    __tablename__ = "courses"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    department: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    number: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)
    univ_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    section: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    faculty_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("faculty.id"), index=True, nullable=True)
    semester_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("semesters.id"), index=True, nullable=True)

    faculty: Mapped[Optional[Faculty]] = relationship(foreign_keys=[faculty_id])
    semester: Mapped[Optional[Semester]] = relationship(foreign_keys=[semester_id])


class CourseInfo(Base):
    """Catalog entry for a course number, independent of any offering."""

    __tablename__ = "course_info"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    number: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class Job(Base):
    __tablename__ = "jobs"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    position: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    supervisor_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("faculty.id"), index=True, nullable=True)
    semester_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("semesters.id"), index=True, nullable=True)
    course_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("courses.id"), index=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    funding_source: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    supervisor: Mapped[Optional[Faculty]] = relationship(foreign_keys=[supervisor_id])
    semester: Mapped[Optional[Semester]] = relationship(foreign_keys=[semester_id])
    course: Mapped[Optional[Course]] = relationship(foreign_keys=[course_id])


class Grade(Base):
    __tablename__ = "grades"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    grade: Mapped[Optional[str]] = mapped_column(String, default="NA", nullable=True)
    course_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("courses.id"), index=True, nullable=True)

    course: Mapped[Optional[Course]] = relationship(foreign_keys=[course_id])


class Student(Base):
    __tablename__ = "students"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    onyen: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    pid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String, default="Active", nullable=True)
    alternative_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String, default="OTHER", nullable=True)
    ethnicity: Mapped[Optional[str]] = mapped_column(String, default="OTHER", nullable=True)
    residency: Mapped[Optional[str]] = mapped_column(String, default="NO", nullable=True)
    entering_status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    research_area: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    leave_extension: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    intended_degree: Mapped[Optional[str]] = mapped_column(String, default="MASTERS", nullable=True)
    hours_completed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    citizenship: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    funding_eligibility: Mapped[Optional[str]] = mapped_column(String, default="NOT GUARANTEED", nullable=True)
    background_approved: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    masters_awarded: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    prp_passed: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    background_prep_worksheet_approved: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    program_of_study_approved: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    research_planning_meeting: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    committee_comp_approved: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    phd_proposal_approved: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    oral_exam_passed: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    dissertation_defence_passed: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    dissertation_submitted: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    semester_started_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("semesters.id"), nullable=True)
    advisor_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("faculty.id"), index=True, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    semester_started: Mapped[Optional[Semester]] = relationship(foreign_keys=[semester_started_id])
    advisor: Mapped[Optional[Faculty]] = relationship(foreign_keys=[advisor_id])
    job_history: Mapped[list[Job]] = relationship(secondary=student_jobs)
    grades: Mapped[list[Grade]] = relationship(secondary=student_grades)


class Form(Base):
    __tablename__ = "forms"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    student_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("students.id"), index=True, nullable=True)
    default_title: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    student: Mapped[Optional[Student]] = relationship(foreign_keys=[student_id])


class SemesterReference(Base):
    __tablename__ = "semester_references"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    semester_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("semesters.id"), index=True, nullable=True)

    semester: Mapped[Optional[Semester]] = relationship(foreign_keys=[semester_id])


class Note(Base):
    __tablename__ = "notes"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    student_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("students.id"), index=True, nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    student: Mapped[Optional[Student]] = relationship(foreign_keys=[student_id])


class CS01Form(Base):
    """Background preparation worksheet: which prerequisite courses are covered, and when."""

    __tablename__ = "cs01_forms"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    student_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("students.id"), index=True, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pid: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comp283_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp283_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp410_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp410_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp411_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp411_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp455_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp455_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp521_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp521_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp520_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp520_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp530_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp530_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp524_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp524_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp541_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp541_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp550_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    comp550_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math233_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math233_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math381_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math381_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math547_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math547_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math661_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    math661_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    stat435_covered: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    stat435_date: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    student_signature: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    student_date_signed: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    advisor_signature: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    advisor_date_signed: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    student: Mapped[Optional[Student]] = relationship(foreign_keys=[student_id])


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    actor: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str] = mapped_column(String)
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ImportJob(Base):
    """A sheet upload processed in the background; polled by id."""

    __tablename__ = "import_jobs"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    kind: Mapped[str] = mapped_column(String)
    filename: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="PENDING")
    total_rows: Mapped[int] = mapped_column(Integer, default=0)
    created: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    report_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


MODELS = {
    ADMIN: Admin,
    FACULTY: Faculty,
    STUDENT: Student,
    COURSE: Course,
    SEMESTER: Semester,
    JOB: Job,
    GRADE: Grade,
    FORM: Form,
    NOTE: Note,
    CS01: CS01Form,
    COURSE_INFO: CourseInfo,
    SEMESTER_REFERENCE: SemesterReference,
}


def check_models() -> None:
    """Every declared field must be backed by a mapped column or relationship."""
    for kind, model in MODELS.items():
        mapper = model.__mapper__
        columns = {c.key for c in mapper.column_attrs}
        relationships = {r.key for r in mapper.relationships}
        for spec in ENTITY_FIELDS[kind]:
            if spec.column and spec.column not in columns:
                raise FieldTableError(f"{model.__name__} has no column {spec.column!r}")
            if spec.type in (REF, REF_LIST) and spec.name not in relationships:
                raise FieldTableError(f"{model.__name__} has no relationship {spec.name!r}")
