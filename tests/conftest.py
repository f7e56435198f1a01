import base64
import os
from unittest.mock import patch

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.db import Base, get_db
from app.main import app as fastapi_app
from app.models.user import User
from app.services.organization import organizations
from app.services.user import hash_password

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

ADMIN_PASSWORD = "Admin1234"
USER_PASSWORD = "Alice1234"


@pytest.fixture(autouse=True)
def process_event_delay():
    """Keeps events off the broker; tests that care assert on the mock."""
    with patch("app.tasks.events.process_event.delay") as mocked:
        yield mocked


@pytest.fixture()
def db_session():
    Base.metadata.create_all(engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture()
def default_org(db_session):
    org = organizations.ensure_default_org(db_session)
    db_session.commit()
    return org


@pytest.fixture()
def admin(db_session, default_org):
    user = User(
        username="admin",
        admin=True,
        password_hash=hash_password(ADMIN_PASSWORD),
        custom={},
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def user(db_session, default_org):
    member = User(
        username="alice",
        admin=False,
        password_hash=hash_password(USER_PASSWORD),
        fname="Alice",
        custom={},
    )
    db_session.add(member)
    db_session.commit()
    db_session.refresh(member)
    return member


@pytest.fixture()
def other_user(db_session, default_org):
    member = User(
        username="bob",
        admin=False,
        password_hash=hash_password(USER_PASSWORD),
        custom={},
    )
    db_session.add(member)
    db_session.commit()
    db_session.refresh(member)
    return member


@pytest.fixture()
def org(db_session, admin):
    created = organizations.create(
        db_session, admin, {"id": "council", "name": "Council"}
    )[0]
    db_session.commit()
    return created


@pytest.fixture()
def project(db_session, admin, org):
    from app.services.project import projects

    created = projects.create(
        db_session, admin, org.id, {"id": "prtlgn", "name": "Portal Gun"}
    )[0]
    db_session.commit()
    return created


@pytest.fixture()
def client(db_session):
    def override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


def _basic(username: str, password: str) -> dict:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture()
def auth_headers(admin):
    return _basic(admin.username, ADMIN_PASSWORD)


@pytest.fixture()
def user_headers(user):
    return _basic(user.username, USER_PASSWORD)
