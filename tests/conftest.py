"""
Shared fixtures: an isolated SQLite database per test, seeded users
and a lifecycle manager bound to one session.
"""

import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SESSION_SECRET", "test-secret")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from db import create_db_and_tables, get_session, make_engine  # noqa: E402
from identity import Caller  # noqa: E402
from lifecycle import ResourceLifecycleManager  # noqa: E402
from models import User, UserRole  # noqa: E402
from routers.auth import hash_password  # noqa: E402

PASSWORD = "secret123"


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'resource_share.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def _add_user(engine, email: str, name: str, role: UserRole, is_active: bool = True) -> Caller:
    with Session(engine) as session:
        user = User(
            email=email,
            name=name,
            role=role,
            is_active=is_active,
            password_hash=hash_password(PASSWORD),
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return Caller(user_id=user.id, role=user.role)


@pytest.fixture
def donor(engine) -> Caller:
    return _add_user(engine, "dana@example.com", "Dana Donor", UserRole.DONOR)


@pytest.fixture
def other_donor(engine) -> Caller:
    return _add_user(engine, "omar@example.com", "Omar Donor", UserRole.DONOR)


@pytest.fixture
def receiver(engine) -> Caller:
    return _add_user(engine, "rita@example.com", "Rita Receiver", UserRole.RECEIVER)


@pytest.fixture
def other_receiver(engine) -> Caller:
    return _add_user(engine, "rex@example.com", "Rex Receiver", UserRole.RECEIVER)


@pytest.fixture
def admin(engine) -> Caller:
    return _add_user(engine, "ada@example.com", "Ada Admin", UserRole.ADMIN)


@pytest.fixture
def resource_payload() -> dict:
    return {
        "title": "Winter jackets",
        "description": "Three kids' jackets, size 8-10, lightly used",
        "category": "CLOTHING",
        "latitude": 4.6097,
        "longitude": -74.0817,
        "address": "Calle 10 #5-20",
    }


@pytest.fixture
def manager(session) -> ResourceLifecycleManager:
    return ResourceLifecycleManager(session)


@pytest.fixture
def published(manager, donor, resource_payload):
    return manager.publish(donor, resource_payload)


@pytest.fixture
def make_client(engine):
    """Build TestClients that talk to the per-test database."""
    from main import app

    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    def factory() -> TestClient:
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


@pytest.fixture
def login(make_client):
    """Return a TestClient holding a session cookie for the given email."""

    def _login(email: str) -> TestClient:
        client = make_client()
        response = client.post("/auth/login", json={"email": email, "password": PASSWORD})
        assert response.status_code == 200, response.text
        return client

    return _login
