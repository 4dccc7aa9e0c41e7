"""
Pydantic input models, one per entity kind, built from the field tables.

Two models exist per kind. `INPUT_MODELS[kind]` (e.g. `CourseIn`) parses raw
values into their declared types and is what request bodies, query filters
and sheet rows go through. `RECORD_MODELS[kind]` (e.g. `CourseRecord`) adds
the rules a stored record must satisfy: enum membership and non-negative
hours. Both drop unknown keys, and treat None and blank strings as absent.
"""
from datetime import date
from typing import Annotated, Any, List, Literal, Optional, Sequence

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, create_model, model_validator

from gradadmin.errors import InvalidFormat
from gradadmin.fields import BOOL, DATE, ENTITY_FIELDS, ENTITY_KINDS, ENUM, FLOAT, INT, REF_LIST, FieldSpec

NON_NEGATIVE_FIELDS = ("hours", "hours_completed")


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def as_text(value: Any) -> Any:
    # spreadsheet cells hand back 410.0 for a typed 410
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, date)) and not isinstance(value, bool):
        return str(value)
    return value


def as_id_list(value: Any) -> Any:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        return value
    out: List[str] = []
    for v in value:
        if is_blank(v):
            continue
        ident = str(v).strip()
        if ident not in out:
            out.append(ident)
    return out


Text = Annotated[str, BeforeValidator(as_text)]
IdList = Annotated[List[str], BeforeValidator(as_id_list)]

BASE_TYPES = {INT: int, FLOAT: float, BOOL: bool, DATE: date, REF_LIST: IdList}


class EntityIn(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def drop_blank_values(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if not is_blank(v)}
        return data


def field_annotation(spec: FieldSpec, strict: bool):
    if strict and spec.type == ENUM:
        annotation = Literal[spec.choices]
    else:
        annotation = BASE_TYPES.get(spec.type, Text)
    if strict and spec.name in NON_NEGATIVE_FIELDS:
        annotation = Annotated[annotation, Field(ge=0)]
    return Optional[annotation]


def model_name(kind: str, suffix: str) -> str:
    return "".join(part.capitalize() for part in kind.split("_")) + suffix


def build_model(kind: str, strict: bool = False) -> type[EntityIn]:
    fields = {spec.name: (field_annotation(spec, strict), None) for spec in ENTITY_FIELDS[kind]}
    return create_model(model_name(kind, "Record" if strict else "In"), __base__=EntityIn, **fields)


INPUT_MODELS = {kind: build_model(kind) for kind in ENTITY_KINDS}
RECORD_MODELS = {kind: build_model(kind, strict=True) for kind in ENTITY_KINDS}


def invalid_format(errors: Sequence[dict]) -> InvalidFormat:
    """The first validation error, as InvalidFormat naming the offending field."""
    error = errors[0]
    names = [str(part) for part in error["loc"] if isinstance(part, str)]
    field = names[-1] if names else "body"
    return InvalidFormat(field, f"{field}: {error['msg']}")


def parse(kind: str, raw: Any, strict: bool = False) -> dict:
    models = RECORD_MODELS if strict else INPUT_MODELS
    try:
        parsed = models[kind].model_validate(raw)
    except ValidationError as exc:
        raise invalid_format(exc.errors()) from None
    return parsed.model_dump(exclude_unset=True)


class AssignmentIn(BaseModel):
    """Body of /jobs/{id}/assign and /unassign: a student id or an onyen."""

    model_config = ConfigDict(str_strip_whitespace=True)

    student: Optional[Text] = None
    onyen: Optional[Text] = None
