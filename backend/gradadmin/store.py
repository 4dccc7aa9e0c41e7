"""
Entity store: create/read/update/delete over every entity kind.

Works on a SQLAlchemy session, one store per request. Filters are plain
mappings of field name to value; `ref.field` reaches one relationship away
(e.g. `course.semester` on jobs) and a reference-list field matches when the
list contains the given identifier.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradadmin.errors import DuplicateEntity, EntityNotFound, InvalidFormat
from gradadmin.fields import (
    ENTITY_FIELDS,
    EXACT_DUPLICATE_KINDS,
    JOB,
    ORDER_BY,
    REF,
    REF_LIST,
    SEARCH_FIELDS,
    STUDENT,
    GRADE,
    UNIQUE_KEYS,
    field_map,
)
from gradadmin.integrity import DeleteCheck, can_delete, ensure_deletable
from gradadmin.models import MODELS, Job, Student
from gradadmin.projection import coerce, prepare_record, validate_record

logger = logging.getLogger(__name__)


def serialize(instance, kind: str, depth: int = 0) -> dict:
    """Flatten an entity to a dict keyed by field name.

    References are identifiers at depth 0 and nested records below that.
    """
    out: dict[str, Any] = {"id": instance.id}
    for spec in ENTITY_FIELDS[kind]:
        if spec.type == REF:
            related = getattr(instance, spec.name) if depth > 0 else None
            if related is not None:
                out[spec.name] = serialize(related, spec.ref, depth - 1)
            else:
                out[spec.name] = getattr(instance, spec.column)
        elif spec.type == REF_LIST:
            items = getattr(instance, spec.name)
            if depth > 0:
                out[spec.name] = [serialize(i, spec.ref, depth - 1) for i in items]
            else:
                out[spec.name] = [i.id for i in items]
        else:
            out[spec.name] = getattr(instance, spec.column)
    return out


class EntityStore:
    """Data access for every entity kind"""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def _condition(self, kind: str, key: str, value: Any, substring: bool = False):
        model = MODELS[kind]
        specs = field_map(kind)
        head, _, rest = key.partition(".")
        spec = specs.get(head)
        if spec is None:
            raise InvalidFormat(key, f"{kind} has no field {head!r}")

        if rest:
            if spec.type not in (REF, REF_LIST) or "." in rest:
                raise InvalidFormat(key, f"cannot filter {kind} through {key!r}")
            inner = self._condition(spec.ref, rest, value)
            rel = getattr(model, spec.name)
            return rel.any(inner) if spec.type == REF_LIST else rel.has(inner)

        if spec.type == REF_LIST:
            target = MODELS[spec.ref]
            if isinstance(value, (list, tuple)):
                return getattr(model, spec.name).any(target.id.in_([str(v) for v in value]))
            return getattr(model, spec.name).any(target.id == str(value))

        column = getattr(model, spec.column)
        if value is None:
            return column.is_(None)
        value = coerce(kind, head, value)
        if substring and head in SEARCH_FIELDS.get(kind, ()):
            return column.icontains(value, autoescape=True)
        return column == value

    def _select(self, kind: str, filters: Mapping[str, Any], substring: bool = False):
        model = MODELS[kind]
        stmt = select(model)
        for key, value in filters.items():
            stmt = stmt.where(self._condition(kind, key, value, substring=substring))
        return stmt

    def find_entities(
        self,
        kind: str,
        filters: Optional[Mapping[str, Any]] = None,
        substring: bool = True,
        order_by: Optional[Sequence[str]] = None,
    ) -> list:
        model = MODELS[kind]
        specs = field_map(kind)
        stmt = self._select(kind, filters or {}, substring=substring)
        if order_by is None:
            order_by = ORDER_BY.get(kind, ())
        order = []
        for name in order_by:
            desc = name.startswith("-")
            spec = specs.get(name.lstrip("-"))
            if spec is None or spec.column is None:
                raise InvalidFormat("order_by", f"cannot order {kind} by {name!r}")
            column = getattr(model, spec.column)
            order.append(column.desc() if desc else column)
        stmt = stmt.order_by(*order, model.id)
        return list(self.session.scalars(stmt).all())

    def find(
        self,
        kind: str,
        filters: Optional[Mapping[str, Any]] = None,
        depth: int = 1,
        order_by: Optional[Sequence[str]] = None,
    ) -> list[dict]:
        """List records matching `filters`; name/title fields match by substring.

        `order_by` names fields, `-field` for descending.
        """
        return [serialize(e, kind, depth) for e in self.find_entities(kind, filters, order_by=order_by)]

    def exists(self, kind: str, filters: Mapping[str, Any]) -> bool:
        stmt = self._select(kind, filters).limit(1)
        return self.session.scalars(stmt).first() is not None

    def get_entity(self, kind: str, entity_id: str):
        entity = self.session.get(MODELS[kind], entity_id)
        if entity is None:
            raise EntityNotFound(kind, entity_id)
        return entity

    def get(self, kind: str, entity_id: str, depth: int = 1) -> dict:
        return serialize(self.get_entity(kind, entity_id), kind, depth)

    def find_exact(self, kind: str, record: Mapping[str, Any]):
        """First record whose every scalar/reference field equals `record`'s.

        Fields absent from `record` must be empty on the match too.
        """
        filters = {}
        for spec in ENTITY_FIELDS[kind]:
            if spec.type == REF_LIST:
                continue
            filters[spec.name] = record.get(spec.name)
        stmt = self._select(kind, filters).limit(1)
        return self.session.scalars(stmt).first()

    def find_unique_conflict(self, kind: str, record: Mapping[str, Any], exclude_id: Optional[str] = None):
        keys = UNIQUE_KEYS.get(kind)
        if not keys or any(record.get(k) is None for k in keys):
            return None
        stmt = self._select(kind, {k: record[k] for k in keys})
        if exclude_id is not None:
            stmt = stmt.where(MODELS[kind].id != exclude_id)
        return self.session.scalars(stmt.limit(1)).first()

    def find_duplicate(self, kind: str, record: Mapping[str, Any]):
        if kind in EXACT_DUPLICATE_KINDS:
            return self.find_exact(kind, record)
        return self.find_unique_conflict(kind, record)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def _apply(self, entity, kind: str, record: Mapping[str, Any]) -> None:
        for spec in ENTITY_FIELDS[kind]:
            if spec.type == REF_LIST:
                if spec.name in record:
                    target = MODELS[spec.ref]
                    items = []
                    for ident in record[spec.name]:
                        item = self.session.get(target, ident)
                        if item is None:
                            raise EntityNotFound(spec.ref, ident)
                        items.append(item)
                    setattr(entity, spec.name, items)
                continue
            if spec.name in record:
                value = record[spec.name]
                if spec.type == REF and self.session.get(MODELS[spec.ref], value) is None:
                    raise EntityNotFound(spec.ref, value)
                setattr(entity, spec.column, value)
            else:
                setattr(entity, spec.column, spec.default)

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def insert(self, kind: str, record: Mapping[str, Any]):
        """Validate and persist an already-projected record, skipping the duplicate check."""
        validate_record(record, kind)
        entity = MODELS[kind]()
        self._apply(entity, kind, record)
        self.session.add(entity)
        self._commit()
        self.session.refresh(entity)
        logger.info("Created %s %s", kind, entity.id)
        return entity

    def create(self, kind: str, raw: Mapping[str, Any]):
        """Create a record from a raw field mapping; every required field must be present."""
        record = prepare_record(raw, kind)
        existing = self.find_duplicate(kind, record)
        if existing is not None:
            logger.warning("Refusing duplicate %s (matches %s)", kind, existing.id)
            raise DuplicateEntity(kind, existing.id)
        return self.insert(kind, record)

    def update(self, kind: str, entity_id: str, raw: Mapping[str, Any]):
        """Replace every declared field of an existing record.

        Reference lists are left alone unless the payload carries them.
        """
        entity = self.get_entity(kind, entity_id)
        record = prepare_record(raw, kind)
        conflict = self.find_unique_conflict(kind, record, exclude_id=entity_id)
        if conflict is not None:
            raise DuplicateEntity(kind, conflict.id)
        try:
            self._apply(entity, kind, record)
        except EntityNotFound:
            self.session.rollback()
            raise
        self._commit()
        self.session.refresh(entity)
        logger.info("Updated %s %s", kind, entity_id)
        return entity

    def can_delete(self, kind: str, entity_id: str, aggregate: bool = False) -> DeleteCheck:
        return can_delete(self, kind, entity_id, aggregate=aggregate)

    def delete(self, kind: str, entity_id: str, aggregate: bool = False) -> None:
        entity = self.get_entity(kind, entity_id)
        ensure_deletable(self, kind, entity_id, aggregate=aggregate)
        if kind == STUDENT:
            # the student's list links go with it; the jobs and grades stay
            entity.job_history = []
            entity.grades = []
        self.session.delete(entity)
        self._commit()
        logger.info("Deleted %s %s", kind, entity_id)

    # ------------------------------------------------------------------
    # reference lists
    # ------------------------------------------------------------------

    def _add_to_list(self, student: Student, list_name: str, item) -> bool:
        items = getattr(student, list_name)
        if any(i.id == item.id for i in items):
            return False
        items.append(item)
        self._commit()
        return True

    def _remove_from_list(self, student: Student, list_name: str, item_id: str) -> bool:
        items = getattr(student, list_name)
        kept = [i for i in items if i.id != item_id]
        if len(kept) == len(items):
            return False
        setattr(student, list_name, kept)
        self._commit()
        return True

    def assign_job(self, student_id: str, job_id: str) -> bool:
        """Add a job to a student's history; False when it was already there."""
        student = self.get_entity(STUDENT, student_id)
        job = self.get_entity(JOB, job_id)
        added = self._add_to_list(student, "job_history", job)
        if added:
            logger.info("Assigned job %s to student %s", job_id, student_id)
        return added

    def find_student_by_onyen(self, onyen: str) -> Optional[Student]:
        stmt = select(Student).where(Student.onyen == str(onyen).strip()).limit(1)
        return self.session.scalars(stmt).first()

    def assign_job_by_onyen(self, onyen: str, job_id: str) -> bool:
        student = self.find_student_by_onyen(onyen)
        if student is None:
            raise EntityNotFound(STUDENT, onyen)
        return self.assign_job(student.id, job_id)

    def unassign_job(self, student_id: str, job_id: str) -> bool:
        student = self.get_entity(STUDENT, student_id)
        return self._remove_from_list(student, "job_history", job_id)

    def students_with_job(self, job_id: str) -> list[Student]:
        self.get_entity(JOB, job_id)
        return self.find_entities(STUDENT, {"job_history": job_id}, substring=False)

    def jobs_of_student(self, student_id: str) -> list[Job]:
        return list(self.get_entity(STUDENT, student_id).job_history)

    def add_grade(self, student_id: str, grade_id: str) -> bool:
        student = self.get_entity(STUDENT, student_id)
        grade = self.get_entity(GRADE, grade_id)
        return self._add_to_list(student, "grades", grade)

    def remove_grade(self, student_id: str, grade_id: str) -> bool:
        student = self.get_entity(STUDENT, student_id)
        return self._remove_from_list(student, "grades", grade_id)
