"""
Referential-integrity guard consulted before every delete.

DEPENDENTS lists, per entity kind, the (dependent kind, reference path)
pairs that may point at a record of that kind. Paths use the store's filter
syntax: `course` is a reference field, `job_history` a reference list and
`grades.course` a reference one relationship away. Checks run in the
declared order; by default the first non-empty check wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from gradadmin.errors import ReferentialIntegrityViolation
from gradadmin.fields import COURSE, CS01, FACULTY, FORM, GRADE, JOB, NOTE, SEMESTER, SEMESTER_REFERENCE, STUDENT

logger = logging.getLogger(__name__)


class Dependency(NamedTuple):
    kind: str
    path: str


DEPENDENTS: dict[str, tuple[Dependency, ...]] = {
    COURSE: (
        Dependency(STUDENT, "grades.course"),
        Dependency(JOB, "course"),
        Dependency(GRADE, "course"),
    ),
    JOB: (
        Dependency(STUDENT, "job_history"),
    ),
    FACULTY: (
        Dependency(STUDENT, "advisor"),
        Dependency(COURSE, "faculty"),
        Dependency(JOB, "supervisor"),
    ),
    SEMESTER: (
        Dependency(STUDENT, "semester_started"),
        Dependency(COURSE, "semester"),
        Dependency(JOB, "semester"),
        Dependency(SEMESTER_REFERENCE, "semester"),
    ),
    STUDENT: (
        Dependency(FORM, "student"),
        Dependency(NOTE, "student"),
        Dependency(CS01, "student"),
    ),
    GRADE: (
        Dependency(STUDENT, "grades"),
    ),
}


@dataclass
class DeleteCheck:
    allowed: bool
    blocking_kind: Optional[str] = None
    blocking: list[str] = field(default_factory=list)


def can_delete(store, kind: str, entity_id: str, aggregate: bool = False) -> DeleteCheck:
    """Report whether `entity_id` of `kind` can be deleted.

    `store` is anything with `exists(kind, filters)`. With aggregate=True
    every blocking kind is collected instead of stopping at the first.
    """
    blocking: list[str] = []
    for dep in DEPENDENTS.get(kind, ()):
        if not store.exists(dep.kind, {dep.path: entity_id}):
            continue
        if dep.kind not in blocking:
            blocking.append(dep.kind)
        if not aggregate:
            break
    if blocking:
        return DeleteCheck(allowed=False, blocking_kind=blocking[0], blocking=blocking)
    return DeleteCheck(allowed=True)


def ensure_deletable(store, kind: str, entity_id: str, aggregate: bool = False) -> None:
    check = can_delete(store, kind, entity_id, aggregate=aggregate)
    if not check.allowed:
        logger.warning("Refusing to delete %s %s: referenced by %s", kind, entity_id, ", ".join(check.blocking))
        raise ReferentialIntegrityViolation(kind, entity_id, check.blocking_kind, check.blocking)
