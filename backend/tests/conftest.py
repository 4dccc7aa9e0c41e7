"""
Test configuration and fixtures
"""
import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# Set testing environment before the app reads its settings
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['LOG_JSON'] = 'false'

from gradadmin.db import Base, get_db, make_engine  # noqa: E402
from gradadmin.fields import COURSE, FACULTY, JOB, SEMESTER, STUDENT  # noqa: E402
from gradadmin.main import app, get_session_factory  # noqa: E402
from gradadmin.store import EntityStore  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite database file per test; imports open their own connections to it"""
    engine = make_engine(f"sqlite:///{tmp_path / 'gradadmin_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def store(db):
    return EntityStore(db)


@pytest.fixture
def client(session_factory):
    """Test client with the request session and import session factory pointed at the test database"""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def faculty(store):
    return store.create(FACULTY, {"onyen": "jsmith", "first_name": "Jane", "last_name": "Smith"})


@pytest.fixture
def semester(store):
    return store.create(SEMESTER, {"year": 2024, "season": "FA"})


@pytest.fixture
def student(store):
    return store.create(STUDENT, {"onyen": "alice", "first_name": "Alice", "last_name": "Ng"})


@pytest.fixture
def course(store, faculty, semester):
    return store.create(COURSE, {
        "department": "COMP",
        "number": 410,
        "name": "Data Structures",
        "category": "Theory",
        "hours": 3,
        "section": "001",
        "faculty": faculty.id,
        "semester": semester.id,
    })


@pytest.fixture
def job(store, faculty, semester, course):
    return store.create(JOB, {
        "position": "TA",
        "supervisor": faculty.id,
        "semester": semester.id,
        "course": course.id,
    })
