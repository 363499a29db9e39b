"""Pytest configuration and fixtures."""

import json
import os
from fnmatch import fnmatch

# Settings are read at import time, so the test environment goes first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from usermgmt.core.security import create_access_token, hash_password
from usermgmt.db.base import Base
from usermgmt.db.seeds.seed_notification_types import seed_notification_types
from usermgmt.db.seeds.seed_roles import seed_roles
from usermgmt.db.session import get_db
from usermgmt.main import app
from usermgmt.models import Role, User
from usermgmt.services.cache_service import get_cache
from usermgmt.services.permission_service import PermissionGraph

# Test database URL (in-memory SQLite shared across threads)
TEST_DATABASE_URL = "sqlite://"

DEFAULT_PASSWORD = "password123"


class FakeCache:
    """Dict-backed stand-in for CacheService."""

    def __init__(self):
        self.store: dict[str, str] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ttl_seconds=600):
        self.store[key] = value

    def get_json(self, key):
        raw = self.store.get(key)
        return json.loads(raw) if raw else None

    def set_json(self, key, value, ttl_seconds=600):
        self.store[key] = json.dumps(value, default=str)

    def delete(self, key):
        self.store.pop(key, None)

    def invalidate_pattern(self, pattern):
        for key in [k for k in self.store if fnmatch(k, pattern)]:
            del self.store[key]

    def health_check(self):
        return True


def auth_headers(token: str) -> dict:
    """Create authorization headers."""
    return {"Authorization": f"Bearer {token}"}


def make_user(db, email: str, role: str = "user", password: str = DEFAULT_PASSWORD, **fields) -> User:
    """Insert a user directly, bypassing the service layer."""
    role_obj = db.query(Role).filter(Role.name == role).one()
    user = User(
        email=email,
        hashed_password=hash_password(password),
        full_name=fields.pop("full_name", email.split("@")[0].title()),
        role_id=role_obj.id,
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def token_for(user: User) -> str:
    return create_access_token({"sub": str(user.id), "email": user.email})


@pytest.fixture(scope="function")
def test_engine():
    """Create test database engine with fresh tables."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    """Session factory over a seeded database."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    db = factory()
    try:
        seed_roles(db)
        seed_notification_types(db)
    finally:
        db.close()
    return factory


@pytest.fixture(scope="function")
def db(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def cache():
    return FakeCache()


@pytest.fixture(scope="function")
def graph(db, cache) -> PermissionGraph:
    return PermissionGraph(db, cache)


@pytest.fixture(scope="function")
def client(session_factory, cache):
    """Create test HTTP client with overridden dependencies."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    previous_factory = app.state.session_factory
    app.state.session_factory = session_factory

    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.session_factory = previous_factory


@pytest.fixture(scope="function")
def admin_user(db) -> User:
    """Create admin user for testing."""
    return make_user(db, "admin@test.com", role="admin", full_name="Admin User", email_verified=True)


@pytest.fixture(scope="function")
def moderator_user(db) -> User:
    """Create moderator user for testing."""
    return make_user(db, "moderator@test.com", role="moderator", full_name="Moderator User")


@pytest.fixture(scope="function")
def regular_user(db) -> User:
    """Create standard user for testing."""
    return make_user(db, "alice@test.com", full_name="Alice Smith")


@pytest.fixture(scope="function")
def other_user(db) -> User:
    """A second standard user."""
    return make_user(db, "bob@example.org", full_name="Bob Jones")


@pytest.fixture(scope="function")
def admin_token(admin_user) -> str:
    return token_for(admin_user)


@pytest.fixture(scope="function")
def moderator_token(moderator_user) -> str:
    return token_for(moderator_user)


@pytest.fixture(scope="function")
def user_token(regular_user) -> str:
    return token_for(regular_user)


@pytest.fixture(scope="function")
def other_token(other_user) -> str:
    return token_for(other_user)
