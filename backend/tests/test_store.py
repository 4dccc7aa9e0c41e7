import pytest

from gradadmin.errors import DuplicateEntity, EntityNotFound, InvalidFormat, MissingRequiredField
from gradadmin.fields import COURSE, FACULTY, GRADE, JOB, SEMESTER, STUDENT
from gradadmin.models import Course, Student


def course_payload(faculty, semester, **overrides):
    payload = {
        "department": "COMP",
        "number": 550,
        "name": "Algorithms and Analysis",
        "category": "Theory",
        "hours": 3,
        "faculty": faculty.id,
        "semester": semester.id,
    }
    payload.update(overrides)
    return payload


def test_create_and_get_populated(store, faculty, semester):
    course = store.create(COURSE, course_payload(faculty, semester))
    record = store.get(COURSE, course.id)
    assert record["name"] == "Algorithms and Analysis"
    assert record["faculty"]["last_name"] == "Smith"
    assert record["semester"]["season"] == "FA"

    flat = store.get(COURSE, course.id, depth=0)
    assert flat["faculty"] == faculty.id


def test_create_missing_required_field_persists_nothing(store, faculty, semester):
    payload = course_payload(faculty, semester)
    del payload["hours"]
    with pytest.raises(MissingRequiredField):
        store.create(COURSE, payload)
    assert store.session.query(Course).count() == 0


def test_bad_department_rejected_even_when_other_fields_missing(store):
    with pytest.raises(InvalidFormat):
        store.create(COURSE, {"department": "CS"})


def test_exact_duplicate_course_rejected(store, faculty, semester):
    first = store.create(COURSE, course_payload(faculty, semester))
    with pytest.raises(DuplicateEntity) as exc_info:
        store.create(COURSE, course_payload(faculty, semester))
    assert exc_info.value.message == "This course already exists."
    assert exc_info.value.details["existing_id"] == first.id


@pytest.mark.parametrize("override", [{"number": 551}, {"section": "002"}, {"topic": "Graph algorithms"}])
def test_course_differing_in_one_field_is_created(store, faculty, semester, override):
    store.create(COURSE, course_payload(faculty, semester))
    store.create(COURSE, course_payload(faculty, semester, **override))
    assert len(store.find(COURSE)) == 2


def test_exact_duplicate_job_rejected(store, faculty, semester):
    payload = {"position": "RA", "supervisor": faculty.id, "semester": semester.id}
    store.create(JOB, payload)
    with pytest.raises(DuplicateEntity):
        store.create(JOB, payload)
    store.create(JOB, dict(payload, hours=10))
    assert len(store.find(JOB)) == 2


def test_unique_keys(store, faculty, semester):
    with pytest.raises(DuplicateEntity):
        store.create(FACULTY, {"onyen": "jsmith", "first_name": "Janet", "last_name": "Smythe"})
    with pytest.raises(DuplicateEntity):
        store.create(SEMESTER, {"year": "2024", "season": "FA"})
    store.create(SEMESTER, {"year": 2025, "season": "SP"})


def test_reference_must_exist(store, semester):
    with pytest.raises(EntityNotFound) as exc_info:
        store.create(JOB, {"position": "TA", "supervisor": "no-such-faculty", "semester": semester.id})
    assert exc_info.value.details["kind"] == FACULTY


def test_student_defaults(store, student):
    record = store.get(STUDENT, student.id)
    assert record["status"] == "Active"
    assert record["gender"] == "OTHER"
    assert record["intended_degree"] == "MASTERS"
    assert record["job_history"] == []


def test_update_replaces_whole_record_but_keeps_lists(store, student, job):
    store.assign_job(student.id, job.id)
    store.update(STUDENT, student.id, {
        "onyen": "alice",
        "first_name": "Alicia",
        "last_name": "Ng",
        "status": "Leave",
    })
    record = store.get(STUDENT, student.id, depth=0)
    assert record["first_name"] == "Alicia"
    assert record["status"] == "Leave"
    assert record["research_area"] is None
    assert record["job_history"] == [job.id]


def test_update_with_empty_list_clears_it(store, student, job):
    store.assign_job(student.id, job.id)
    store.update(STUDENT, student.id, {
        "onyen": "alice",
        "first_name": "Alice",
        "last_name": "Ng",
        "job_history": [],
    })
    assert store.get(STUDENT, student.id, depth=0)["job_history"] == []
    assert store.students_with_job(job.id) == []


def test_update_missing_entity(store):
    with pytest.raises(EntityNotFound):
        store.update(FACULTY, "missing", {"onyen": "x", "first_name": "X", "last_name": "Y"})


def test_update_cannot_take_another_records_unique_key(store, faculty):
    other = store.create(FACULTY, {"onyen": "kbrown", "first_name": "Kim", "last_name": "Brown"})
    with pytest.raises(DuplicateEntity):
        store.update(FACULTY, other.id, {"onyen": "jsmith", "first_name": "Kim", "last_name": "Brown"})
    store.update(FACULTY, faculty.id, {"onyen": "jsmith", "first_name": "Jane", "last_name": "Smith-Lee"})


def test_find_matches_names_by_substring(store, faculty):
    store.create(FACULTY, {"onyen": "kbrown", "first_name": "Kim", "last_name": "Brown"})
    assert [f["onyen"] for f in store.find(FACULTY, {"last_name": "smi"})] == ["jsmith"]
    assert store.find(FACULTY, {"onyen": "jsm"}) == []


def test_find_jobs_by_course_semester(store, faculty, semester, job):
    spring = store.create(SEMESTER, {"year": 2025, "season": "SP"})
    store.create(JOB, {"position": "RA", "supervisor": faculty.id, "semester": spring.id})

    found = store.find(JOB, {"course.semester": semester.id}, depth=2)
    assert [j["id"] for j in found] == [job.id]
    assert found[0]["course"]["semester"]["year"] == 2024
    assert len(store.find(JOB, {"semester": spring.id})) == 1


def test_find_rejects_unknown_fields(store):
    with pytest.raises(InvalidFormat):
        store.find(JOB, {"course.semester.year": 2024})
    with pytest.raises(InvalidFormat):
        store.find(JOB, {"colour": "red"})


def test_find_order_by(store):
    store.create(SEMESTER, {"year": 2023, "season": "SP"})
    store.create(SEMESTER, {"year": 2025, "season": "FA"})
    years = [s["year"] for s in store.find(SEMESTER, order_by=["-year"])]
    assert years == [2025, 2023]


def test_assign_job_has_set_semantics(store, student, job):
    assert store.assign_job(student.id, job.id) is True
    assert store.assign_job(student.id, job.id) is False
    assert [j.id for j in store.jobs_of_student(student.id)] == [job.id]
    assert [s.id for s in store.students_with_job(job.id)] == [student.id]


def test_assign_job_by_unknown_onyen(store, job):
    with pytest.raises(EntityNotFound):
        store.assign_job_by_onyen("nobody", job.id)


def test_grades_attach_and_detach(store, student, course):
    grade = store.create(GRADE, {"grade": "P", "course": course.id})
    assert store.add_grade(student.id, grade.id)
    assert store.get(STUDENT, student.id, depth=0)["grades"] == [grade.id]
    assert store.remove_grade(student.id, grade.id)
    assert not store.remove_grade(student.id, grade.id)


def test_deleting_student_keeps_jobs(store, student, job):
    student_id, job_id = student.id, job.id
    store.assign_job(student_id, job_id)
    store.delete(STUDENT, student_id)
    assert store.session.get(Student, student_id) is None
    assert store.get(JOB, job_id)["position"] == "TA"
