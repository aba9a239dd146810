import os
import tempfile

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ARGON2_TIME_COST"] = "1"
os.environ["ARGON2_MEMORY_COST"] = "1024"
os.environ["ARGON2_PARALLELISM"] = "1"
os.environ["CSRF_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ATTACHMENT_DIR"] = tempfile.mkdtemp(prefix="messaging-attachments-")

import pytest
from fastapi.testclient import TestClient

from community_messaging.core.errors import StorageUnavailable
from community_messaging.core.security import create_access_token
from community_messaging.crud.users import create_user
from community_messaging.db.base import Base
from community_messaging.db.session import SessionLocal, engine, get_db
from community_messaging.main import app
from community_messaging.models.user import UserRole
from community_messaging.security.rate_limiter import get_rate_limiter
from community_messaging.storage.blob_store import BlobStore, get_blob_store

PASSWORD = "Sup3r-Secret-Pass!"


class MemoryBlobStore(BlobStore):
    def __init__(self):
        self.blobs = {}
        self.deleted = []
        self._seq = 0

    def put(self, data, filename, content_type):
        self._seq += 1
        reference = f"blob-{self._seq}"
        self.blobs[reference] = data
        return reference

    def get(self, reference):
        return self.blobs[reference]

    def delete(self, reference):
        self.deleted.append(reference)
        self.blobs.pop(reference, None)


class FailingBlobStore(MemoryBlobStore):
    """Refuses every write, or only writes of the named files."""

    def __init__(self, fail_on=None):
        super().__init__()
        self.fail_on = set(fail_on or ())

    def put(self, data, filename, content_type):
        if not self.fail_on or filename in self.fail_on:
            raise StorageUnavailable("Attachment storage is unavailable", details={"filename": filename})
        return super().put(data, filename, content_type)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    get_rate_limiter().reset()
    yield
    get_rate_limiter().reset()


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def blob_store():
    return MemoryBlobStore()


@pytest.fixture()
def failing_blob_store():
    return FailingBlobStore()


@pytest.fixture()
def blob_store_failing_on():
    return FailingBlobStore


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(username=None, role=UserRole.REGISTERED, badge=False):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        return create_user(
            db,
            username=username,
            email=f"{username}@example.com",
            password=PASSWORD,
            role=role,
            has_membership_badge=badge,
        )

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("admin", role=UserRole.ADMIN)


@pytest.fixture()
def alice(make_user):
    return make_user("alice", role=UserRole.PAID)


@pytest.fixture()
def bob(make_user):
    return make_user("bob", role=UserRole.PAID)


@pytest.fixture()
def client(db, blob_store):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _headers(user):
        token = create_access_token(subject=str(user.id), extra={"role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _headers
