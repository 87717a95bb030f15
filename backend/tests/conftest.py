import os
import tempfile

# Settings are read once at import time, so pin the test environment first.
os.environ.update(
    {
        "ENVIRONMENT": "test",
        "DATABASE_URL": "sqlite://",
        "JWT_ACCESS_SECRET": "test-access-secret-0123456789abcdef0123456789",
        "JWT_REFRESH_SECRET": "test-refresh-secret-0123456789abcdef012345678",
        "BCRYPT_ROUNDS": "4",
        "DB_INIT_MODE": "off",
        "RUN_EMBEDDED_CLEANUP_WORKER": "false",
        "SMTP_HOST": "",
        "GOOGLE_CLIENT_ID": "",
        "GOOGLE_CLIENT_SECRET": "",
        "LOG_FILE": os.path.join(tempfile.gettempdir(), "lms-auth-tests", "app.log"),
    }
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.security import hash_password
from app.main import app
from app.models.user import User
from app.services.rate_limiter import rate_limiter

STRONG_PASSWORD = "Secret1!"


def make_session_factory(url: str = "sqlite://"):
    """SQLite session factory with the auth tables created."""
    if url == "sqlite://":
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_user(db, email="alice@example.com", password=STRONG_PASSWORD, **fields) -> User:
    user = User(
        email=email,
        password_hash=hash_password(password) if password else None,
        full_name=fields.pop("full_name", "Alice"),
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def session_factory():
    return make_session_factory()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    rate_limiter.reset()
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        rate_limiter.reset()
