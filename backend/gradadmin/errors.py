"""
Error types for the administration backend
==========================================

Single-record operations raise these and abort with nothing written. The HTTP
layer turns them into JSON responses; the import reconciler records them as
row-level errors and moves on to the next row.

Usage:
    from gradadmin.errors import EntityNotFound

    course = db.get(Course, course_id)
    if not course:
        raise EntityNotFound("course", course_id)
"""

from typing import Any, Dict, Iterable, Optional


class GradAdminError(Exception):
    """Base exception for all administration errors"""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class MissingRequiredField(GradAdminError):
    """A create/update payload lacks one or more required fields"""

    def __init__(self, kind: str, fields: Iterable[str]):
        fields = list(fields)
        super().__init__(
            f"Required field(s) missing for {kind}: {', '.join(fields)}",
            code="MISSING_REQUIRED_FIELD",
            details={"kind": kind, "fields": fields}
        )


class InvalidFormat(GradAdminError):
    """A raw value could not be parsed or violates a format rule"""

    def __init__(self, field: str, message: str):
        super().__init__(message, code="INVALID_FORMAT", details={"field": field})


class EntityNotFound(GradAdminError):
    """Update/delete target, or a referenced entity, does not exist"""

    status_code = 404

    def __init__(self, kind: str, entity_id: Any):
        super().__init__(
            f"{kind} with ID '{entity_id}' not found",
            code="ENTITY_NOT_FOUND",
            details={"kind": kind, "entity_id": entity_id}
        )


class DuplicateEntity(GradAdminError):
    """An equivalent record already exists"""

    status_code = 409

    def __init__(self, kind: str, existing_id: Optional[str] = None):
        super().__init__(
            f"This {kind} already exists.",
            code="DUPLICATE_ENTITY",
            details={"kind": kind, "existing_id": existing_id}
        )


class ReferentialIntegrityViolation(GradAdminError):
    """Delete refused because another record references the target"""

    status_code = 409

    def __init__(self, kind: str, entity_id: str, blocking_kind: str, blocking: Optional[list] = None):
        self.blocking_kind = blocking_kind
        super().__init__(
            f"Could not delete {kind} because {blocking_kind} is referencing it.",
            code="REFERENTIAL_INTEGRITY_VIOLATION",
            details={
                "kind": kind,
                "entity_id": entity_id,
                "blocking_kind": blocking_kind,
                "blocking": blocking or [blocking_kind],
            }
        )


class MalformedImportRow(GradAdminError):
    """An import row references a faculty/semester/course/student that does not resolve"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, code="MALFORMED_IMPORT_ROW", details={"field": field})
