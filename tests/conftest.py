import os
import tempfile

os.environ.setdefault("SEED_DEMO_USER", "false")
os.environ.setdefault("BACKUP_SCHEDULER_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app import models  # noqa: E402,F401  ensure models are imported
from app.sessions import SessionStore  # noqa: E402
from app.store import RecordStore  # noqa: E402


@pytest.fixture(scope="session")
def engine():
    fd, path = tempfile.mkstemp()
    os.close(fd)
    test_db_url = f"sqlite:///{path}"
    engine = create_engine(
        test_db_url, connect_args={"check_same_thread": False}
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    yield engine
    engine.dispose()
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture(scope="session")
def SessionTesting(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def prepare_db(engine, SessionTesting):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(SessionTesting):
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def sessions(db_session):
    store = SessionStore(db_session)
    assert store.register("owner@test.com", "secret", "Owner", "Owner Co")
    return store


@pytest.fixture
def store(db_session, sessions):
    return RecordStore(db_session, sessions.identity)


@pytest.fixture
def auth_headers(client):
    resp = client.post(
        "/auth/register",
        json={"email": "api@test.com", "password": "secret", "name": "Api", "company": "Api Co"},
    )
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}
