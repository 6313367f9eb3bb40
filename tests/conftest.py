"""
Shared fixtures: in-memory SQLite schema, FastAPI client with get_db overridden,
Celery dispatch captured instead of sent to the broker.
"""
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-0123456789abcdef")
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.setdefault("MOCK_MIN_DELAY_SECONDS", "0")
os.environ.setdefault("MOCK_MAX_DELAY_SECONDS", "0")
os.environ.setdefault("MOCK_FAILURE_RATE", "0")
os.environ.setdefault("STORAGE_BASE_PATH", tempfile.mkdtemp(prefix="uploads-"))
os.environ.setdefault("STORAGE_PUBLIC_URL", "http://testserver/media")

from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models import app_settings, audit_log, file, image, notification, payment, token_package, token_transaction  # noqa: F401
from app.models.user import ROLE_ADMIN, ROLE_SUPER_ADMIN, User
from app.services.auth.jwt import create_access_token, hash_password


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def send_task():
    with patch("app.core.celery_app.celery_app.send_task") as mocked:
        yield mocked


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(tokens: int = 0, role: str = "user", password: str = "secret123", **fields) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=fields.pop("name", f"User {n}"),
            username=fields.pop("username", f"user{n}"),
            email=fields.pop("email", f"user{n}@example.com"),
            password_hash=hash_password(password),
            tokens=tokens,
            role=role,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role=ROLE_ADMIN, username="admin", email="admin@example.com")


@pytest.fixture
def super_admin(make_user):
    return make_user(role=ROLE_SUPER_ADMIN, username="root", email="root@example.com")


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': user.id, 'role': user.role})}"}

    return _headers


@pytest.fixture
def client(engine):
    from fastapi.testclient import TestClient

    from app.db.session import get_db
    from app.main import app

    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with patch("app.api.routes.auth.check_login_rate_limit", return_value=True), \
            patch("app.api.routes.auth.reset_login_attempts"):
        yield TestClient(app)
    app.dependency_overrides.clear()
