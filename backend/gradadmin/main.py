import json
import logging
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from gradadmin import __version__
from gradadmin.config import settings
from gradadmin.db import Base, SessionLocal, engine, get_db
from gradadmin.errors import GradAdminError
from gradadmin.fields import (
    ADMIN,
    COURSE,
    COURSE_INFO,
    CS01,
    ENTITY_FIELDS,
    ENTITY_KINDS,
    ENUM,
    FACULTY,
    FORM,
    GRADE,
    JOB,
    NOTE,
    SEMESTER,
    SEMESTER_REFERENCE,
    STUDENT,
    check_field_orders,
)
from gradadmin.importer import (
    IMPORTABLE_KINDS,
    import_job_status,
    import_rows,
    load_sheet,
    run_import_job,
    sheet_records,
    start_import_job,
)
from gradadmin.logging_config import setup_logging
from gradadmin.models import AuditLog, ImportJob, check_models
from gradadmin.projection import search_filter
from gradadmin.schemas import INPUT_MODELS, AssignmentIn, invalid_format
from gradadmin.store import EntityStore, serialize

logger = logging.getLogger(__name__)

COLLECTIONS = {
    "admins": ADMIN,
    "faculty": FACULTY,
    "students": STUDENT,
    "courses": COURSE,
    "semesters": SEMESTER,
    "jobs": JOB,
    "grades": GRADE,
    "forms": FORM,
    "notes": NOTE,
    "cs01": CS01,
    "course_info": COURSE_INFO,
    "semester_references": SEMESTER_REFERENCE,
}

# Job listings show the course's semester as well as the job's own.
LIST_DEPTH = {JOB: 2}

RESERVED_QUERY_PARAMS = {"depth", "order_by", "aggregate"}

app = FastAPI(title=settings.APP_NAME, version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_session_factory():
    """Session factory for work that outlives the request session (imports)."""
    return SessionLocal


def collection_kind(collection: str) -> str:
    kind = COLLECTIONS.get(collection)
    if kind is None:
        raise HTTPException(status_code=404, detail=f"Unsupported entity '{collection}'")
    return kind


def write_audit(db: Session, action: str, entity: str, entity_id: str, payload: Optional[Any] = None) -> None:
    if payload is not None and not isinstance(payload, str):
        payload = json.dumps(payload, default=str)
    db.add(AuditLog(actor=settings.AUDIT_ACTOR, action=action, entity_type=entity, entity_id=entity_id, payload=payload))
    db.commit()


def serialize_row(instance):
    return {c.name: getattr(instance, c.name) for c in instance.__table__.columns}


@app.exception_handler(GradAdminError)
async def gradadmin_error_handler(request: Request, exc: GradAdminError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.to_dict()},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return await gradadmin_error_handler(request, invalid_format(exc.errors()))


@app.on_event("startup")
def startup():
    setup_logging()
    check_field_orders()
    check_models()
    Base.metadata.create_all(engine)
    logger.info("%s %s started (%s)", settings.APP_NAME, __version__, settings.ENVIRONMENT)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/meta/enums")
def enum_options():
    out = {}
    for kind in ENTITY_KINDS:
        choices = {spec.name: list(spec.choices) for spec in ENTITY_FIELDS[kind] if spec.type == ENUM}
        if choices:
            out[kind] = choices
    return out


@app.get("/audit")
def audit_feed(limit: int = Query(200, ge=1, le=1000), db: Session = Depends(get_db)):
    return [serialize_row(a) for a in db.scalars(select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)).all()]


@app.get("/imports/{job_id}")
def get_import_job(job_id: str, db: Session = Depends(get_db)):
    job = db.get(ImportJob, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Import job not found")
    return import_job_status(job)


# ----------------------------------------------------------------------
# job assignment and grades
# ----------------------------------------------------------------------

@app.post("/jobs/{job_id}/assign")
def assign_job(job_id: str, payload: AssignmentIn, db: Session = Depends(get_db)):
    """Add the job to a student's history; the student is given by `student` id or `onyen`."""
    store = EntityStore(db)
    if payload.student:
        student_id = payload.student
        added = store.assign_job(student_id, job_id)
    elif payload.onyen:
        student = store.find_student_by_onyen(payload.onyen)
        if student is None:
            raise HTTPException(status_code=404, detail=f"Student {payload.onyen} not found")
        student_id = student.id
        added = store.assign_job(student_id, job_id)
    else:
        raise HTTPException(status_code=400, detail="student or onyen is required")
    if added:
        write_audit(db, "ASSIGN", JOB, job_id, {"student": student_id})
    return {"job": job_id, "student": student_id, "added": added}


@app.post("/jobs/{job_id}/unassign")
def unassign_job(job_id: str, payload: AssignmentIn, db: Session = Depends(get_db)):
    if not payload.student:
        raise HTTPException(status_code=400, detail="student is required")
    student_id = payload.student
    removed = EntityStore(db).unassign_job(student_id, job_id)
    if removed:
        write_audit(db, "UNASSIGN", JOB, job_id, {"student": student_id})
    return {"job": job_id, "student": student_id, "removed": removed}


@app.get("/jobs/{job_id}/students")
def list_job_students(job_id: str, db: Session = Depends(get_db)):
    return [serialize(s, STUDENT) for s in EntityStore(db).students_with_job(job_id)]


@app.get("/students/{student_id}/jobs")
def list_student_jobs(student_id: str, db: Session = Depends(get_db)):
    return [serialize(j, JOB, depth=2) for j in EntityStore(db).jobs_of_student(student_id)]


@app.post("/students/{student_id}/grades/{grade_id}")
def add_student_grade(student_id: str, grade_id: str, db: Session = Depends(get_db)):
    added = EntityStore(db).add_grade(student_id, grade_id)
    if added:
        write_audit(db, "ADD_GRADE", STUDENT, student_id, {"grade": grade_id})
    return {"student": student_id, "grade": grade_id, "added": added}


@app.delete("/students/{student_id}/grades/{grade_id}")
def remove_student_grade(student_id: str, grade_id: str, db: Session = Depends(get_db)):
    removed = EntityStore(db).remove_grade(student_id, grade_id)
    if removed:
        write_audit(db, "REMOVE_GRADE", STUDENT, student_id, {"grade": grade_id})
    return {"student": student_id, "grade": grade_id, "removed": removed}


# ----------------------------------------------------------------------
# sheet uploads
# ----------------------------------------------------------------------

@app.post("/{collection}/upload")
def upload_sheet(
    collection: str,
    response: Response,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    background: bool = Query(False),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Import an xlsx/csv sheet.

    Small sheets are reconciled in the request and the per-row report is
    returned. Large sheets (or background=true) are queued as an import job;
    the response is 202 with the job handle to poll at /imports/{job_id}.
    """
    kind = collection_kind(collection)
    if kind not in IMPORTABLE_KINDS:
        raise HTTPException(status_code=400, detail=f"{collection} cannot be imported from a sheet")
    filename = file.filename or ""
    records = sheet_records(load_sheet(file.file.read(), filename), kind)

    if background or len(records) > settings.IMPORT_SYNC_MAX_ROWS:
        job = start_import_job(db, kind, filename, len(records))
        background_tasks.add_task(run_import_job, session_factory, job.id, records, kind)
        write_audit(db, "IMPORT", kind, job.id, {"filename": filename, "rows": len(records), "background": True})
        response.status_code = 202
        return import_job_status(job)

    report = import_rows(session_factory, records, kind, filename=filename)
    write_audit(
        db,
        "IMPORT",
        kind,
        "-",
        {"filename": filename, "created": report.created, "skipped": report.skipped, "failed": report.failed},
    )
    return report.model_dump()


# ----------------------------------------------------------------------
# CRUD, one group per entity kind
# ----------------------------------------------------------------------

def create_route(kind: str):
    body_model = INPUT_MODELS[kind]

    def create_entity(payload: body_model, db: Session = Depends(get_db)):
        entity = EntityStore(db).create(kind, payload.model_dump(exclude_unset=True))
        out = serialize(entity, kind)
        write_audit(db, "CREATE", kind, entity.id, out)
        return out

    return create_entity


def update_route(kind: str):
    body_model = INPUT_MODELS[kind]

    def update_entity(entity_id: str, payload: body_model, db: Session = Depends(get_db)):
        entity = EntityStore(db).update(kind, entity_id, payload.model_dump(exclude_unset=True))
        out = serialize(entity, kind)
        write_audit(db, "UPDATE", kind, entity_id, out)
        return out

    return update_entity


# Create/update bodies are typed per kind, so each collection gets its own routes.
for _collection, _kind in COLLECTIONS.items():
    app.add_api_route(f"/{_collection}", create_route(_kind), methods=["POST"], status_code=201, name=f"create_{_kind}")
    app.add_api_route(f"/{_collection}/{{entity_id}}", update_route(_kind), methods=["PUT"], name=f"update_{_kind}")


@app.get("/{collection}")
def list_entities(
    collection: str,
    request: Request,
    depth: Optional[int] = Query(None, ge=0, le=3),
    order_by: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Query-string filters: field=value, or ref.field=value one reference away."""
    kind = collection_kind(collection)
    raw = {k: v for k, v in request.query_params.items() if k not in RESERVED_QUERY_PARAMS}
    nested = [k for k in raw if "." in k]
    filters = search_filter(raw, kind, extra_keys=nested)
    order = [o.strip() for o in order_by.split(",") if o.strip()] if order_by else None
    if depth is None:
        depth = LIST_DEPTH.get(kind, 1)
    return EntityStore(db).find(kind, filters, depth=depth, order_by=order)


@app.get("/{collection}/{entity_id}")
def get_entity(collection: str, entity_id: str, depth: int = Query(1, ge=0, le=3), db: Session = Depends(get_db)):
    kind = collection_kind(collection)
    return EntityStore(db).get(kind, entity_id, depth=depth)


@app.delete("/{collection}/{entity_id}")
def delete_entity(collection: str, entity_id: str, aggregate: bool = Query(False), db: Session = Depends(get_db)):
    kind = collection_kind(collection)
    EntityStore(db).delete(kind, entity_id, aggregate=aggregate)
    write_audit(db, "DELETE", kind, entity_id)
    return {"status": "deleted"}
