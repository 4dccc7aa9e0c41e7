"""
Projection of raw field mappings onto an entity kind's declared shape.

Raw mappings come from JSON bodies, query strings and spreadsheet rows, so a
value may be a string, a number, a date or a list. `project` runs them
through the kind's pydantic input model: only the declared fields survive,
blank values are dropped and each value is parsed into its declared type.
The same projected record feeds searches (partial) and creates/updates
(after `require_fields`).
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from gradadmin.errors import InvalidFormat, MissingRequiredField
from gradadmin.fields import COURSE, REF_LIST, REQUIRED_FIELDS, field_map
from gradadmin.schemas import is_blank, parse

DEPARTMENT_CODE_LENGTH = 4


def is_empty(value: Any) -> bool:
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return is_blank(value)


def project(raw: Mapping[str, Any], kind: str) -> dict[str, Any]:
    """Keep the declared, non-blank fields of `raw`, parsed to their declared types.

    Unknown keys are dropped silently. A reference list given as an empty
    list is kept, so a payload can clear it. Raises InvalidFormat when a
    value cannot be parsed.
    """
    return parse(kind, dict(raw))


def coerce(kind: str, name: str, value: Any) -> Any:
    """Parse a single filter value for field `name` of `kind`."""
    return project({name: value}, kind).get(name)


def missing_required_fields(raw: Mapping[str, Any], kind: str) -> list[str]:
    return [name for name in REQUIRED_FIELDS[kind] if is_empty(raw.get(name))]


def all_required_fields_present(raw: Mapping[str, Any], kind: str) -> bool:
    return not missing_required_fields(raw, kind)


def require_fields(raw: Mapping[str, Any], kind: str) -> None:
    missing = missing_required_fields(raw, kind)
    if missing:
        raise MissingRequiredField(kind, missing)


def validate_department(value: Any) -> None:
    if value is None:
        return
    if len(str(value)) != DEPARTMENT_CODE_LENGTH:
        raise InvalidFormat("department", "Please input four letter department code")


def validate_record(record: Mapping[str, Any], kind: str) -> None:
    """Check enum membership, non-negative hours and per-kind format rules on a projected record."""
    parse(kind, dict(record), strict=True)
    if kind == COURSE:
        validate_department(record.get("department"))


def prepare_record(raw: Mapping[str, Any], kind: str) -> dict[str, Any]:
    """Gate a create/update payload: format checks, required fields, then projection."""
    if kind == COURSE and not is_empty(raw.get("department")):
        validate_department(str(raw["department"]).strip())
    require_fields(raw, kind)
    record = project(raw, kind)
    validate_record(record, kind)
    return record


def search_filter(raw: Mapping[str, Any], kind: str, extra_keys: Iterable[str] = ()) -> dict[str, Any]:
    """Project a partial record for list filtering; no field is required.

    Keys in `extra_keys` (nested `ref.field` filters) pass through as text.
    """
    specs = field_map(kind)
    out = {k: v for k, v in project(raw, kind).items() if not (specs[k].type == REF_LIST and not v)}
    for key in extra_keys:
        if key in raw and not is_empty(raw[key]):
            out[key] = str(raw[key]).strip()
    return out
